"""
Newsletter draft generation from retrieved knowledge-base context.
"""
from __future__ import annotations

import html
import logging
from typing import Any, Dict, List, Optional

from app.models.database_models import VoiceProfile
from app.services.llm_client import LLMClient

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Prompt templates
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = """You are an expert newsletter writer. Create engaging, well-structured newsletter content.
{voice_instructions}
Guidelines:
- Write compelling headlines and subheadings
- Use clear, concise language
- Include relevant insights from the provided sources
- Format content with proper HTML structure (h1, h2, p, ul, li, blockquote)
- Add a brief introduction and conclusion
- Keep paragraphs short and scannable
- Include calls-to-action where appropriate"""

_USER_PROMPT = """Create a newsletter about: "{topic}"

{context_block}

Generate:
1. An engaging title
2. A compelling email subject line
3. Well-structured HTML content for the newsletter body

Respond in JSON format:
{{
  "title": "Newsletter Title",
  "subject_line": "Email Subject Line",
  "content_html": "<h1>...</h1><p>...</p>..."
}}"""

_NO_CONTEXT = "No specific sources provided. Create general content about the topic."

_UNAVAILABLE_NOTICE = (
    "AI generation unavailable. Please configure your OpenAI or Anthropic API key "
    "in Settings to enable AI-powered content generation."
)


# ---------------------------------------------------------------------------
# Prompt building
# ---------------------------------------------------------------------------

def build_context_text(context: List[Dict[str, Any]]) -> str:
    """Number each retrieved chunk and separate them with horizontal rules."""
    return "\n\n---\n\n".join(
        f"[Source {i}: {c.get('source_title') or 'Unknown'}]\n{c.get('content', '')}"
        for i, c in enumerate(context, start=1)
    )


def build_voice_instructions(voice: Optional[VoiceProfile]) -> str:
    """
    A trained ``voice_prompt`` is used verbatim. Otherwise guidelines are
    assembled from tone markers and vocabulary preferences with neutral
    defaults.
    """
    if voice is None:
        return ""
    if voice.voice_prompt:
        return f"\nVOICE STYLE GUIDELINES (Follow these exactly):\n{voice.voice_prompt}\n"

    tone = voice.tone_markers or {}
    vocab = voice.vocabulary_preferences or {}
    lines = [
        "",
        "Writing Style Guidelines:",
        f"- Formality: {tone.get('formality', 'semi-formal')}",
        f"- Tone: {tone.get('sentiment', 'balanced')}",
        f"- Energy: {tone.get('energy', 'medium')}",
        f"- Approach: {tone.get('approach', 'direct')}",
    ]
    phrases = vocab.get("common_phrases") or []
    if phrases:
        lines.append(f"- Use phrases like: {', '.join(phrases[:5])}")
    words = vocab.get("preferred_words") or []
    if words:
        lines.append(f"- Preferred vocabulary: {', '.join(words[:10])}")
    return "\n".join(lines) + "\n"


def build_citations(context: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "chunk_id": c.get("chunk_id") if c.get("chunk_id") is not None else "unknown",
            "text": (c.get("content") or "")[:100],
        }
        for c in context
    ]


def template_newsletter(topic: str, context: List[Dict[str, Any]]) -> Dict[str, str]:
    """Deterministic draft used when no provider is configured or all fail."""
    safe_topic = html.escape(topic)
    if context:
        highlights = "\n".join(
            '<div class="insight">\n'
            f'  <h3>{i}. From "{html.escape(c.get("source_title") or "Unknown")}"</h3>\n'
            f"  <p>{html.escape((c.get('content') or '')[:300])}"
            f"{'...' if len(c.get('content') or '') > 300 else ''}</p>\n"
            "</div>"
            for i, c in enumerate(context, start=1)
        )
    else:
        highlights = (
            "<p>No specific insights available. Add more content to your knowledge "
            "base for personalized newsletters.</p>"
        )

    content_html = (
        f"<h1>{safe_topic}</h1>\n"
        f"<p><em>{_UNAVAILABLE_NOTICE}</em></p>\n"
        "<h2>Key Highlights</h2>\n"
        f"{highlights}\n"
        "<hr>\n"
        "<p><em>Generated from your knowledge base by Newsletter Wizard.</em></p>"
    )
    return {
        "title": topic,
        "subject_line": f"{topic} - Your Latest Update",
        "content_html": content_html,
    }


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class ContentGenerator:
    """Turns a topic plus retrieved context into a newsletter draft."""

    def __init__(self, llm: Optional[LLMClient] = None) -> None:
        self.llm = llm or LLMClient()

    async def generate(
        self,
        topic: str,
        context: Optional[List[Dict[str, Any]]] = None,
        voice: Optional[VoiceProfile] = None,
    ) -> Dict[str, Any]:
        """
        Returns:
            Dict with title, subject_line, content_html, citations and
            ai_generated (True when a provider wrote the draft).
        """
        context = context or []
        context_text = build_context_text(context)
        context_block = (
            f"Use these sources for context and insights:\n\n{context_text}"
            if context_text
            else _NO_CONTEXT
        )

        generated, provider = await self.llm.generate_json(
            _SYSTEM_PROMPT.format(voice_instructions=build_voice_instructions(voice)),
            _USER_PROMPT.format(topic=topic, context_block=context_block),
        )

        draft: Dict[str, str]
        if generated and generated.get("content_html"):
            draft = {
                "title": str(generated.get("title") or topic),
                "subject_line": str(generated.get("subject_line") or generated.get("title") or topic),
                "content_html": str(generated["content_html"]),
            }
            logger.info("Generated newsletter for %r via %s", topic[:80], provider)
        else:
            provider = None
            draft = template_newsletter(topic, context)
            logger.info("Using template newsletter for %r", topic[:80])

        return {
            **draft,
            "citations": build_citations(context),
            "ai_generated": provider is not None,
        }
