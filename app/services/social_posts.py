"""
Repurpose a newsletter into posts for ten social platforms, or remix a
single post for one of the platforms in PLATFORM_GUIDES.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from app.services.llm_client import LLMClient
from app.utils.helpers import strip_html

logger = logging.getLogger(__name__)

PLATFORMS = [
    "twitter",
    "linkedin",
    "facebook",
    "instagram",
    "tiktok",
    "youtube_shorts",
    "threads",
    "reddit",
    "pinterest",
    "snapchat",
]

TWITTER_MAX_LENGTH = 280
INSTAGRAM_MAX_HASHTAGS = 30
MAX_SOURCE_CHARS = 5000

PLATFORM_GUIDES = {
    "twitter": "Twitter/X: max 280 chars, punchy and direct, use 1-2 hashtags, strong hook in first line",
    "threads": "Threads: conversational and personal, 500 char limit, less formal than Twitter",
    "linkedin": "LinkedIn: professional tone, 1300 chars, use line breaks, end with question or CTA",
    "instagram": "Instagram: visual-first caption, 2200 chars, use 3-5 relevant hashtags, emojis welcome",
    "facebook": "Facebook: conversational, 63k chars, can be longer, include a question to drive comments",
}
REMIX_MAX_TOKENS = 512
NO_PROVIDER_MESSAGE = "No AI provider available. Add API keys in Settings."

_REMIX_SYSTEM_PROMPT = """You are a social media copywriter. Adapt the provided content for {platform}.

Platform guidelines: {guide}

Rules:
- Preserve the core message and key facts
- Optimise for this specific platform's style, length, and audience
- Output ONLY the adapted post text: no labels, no explanations"""

_SYSTEM_PROMPT = """You are a social media expert. Convert newsletter content into platform-optimized social media posts for ALL 10 platforms.

Platform requirements:
- twitter (X): Max 280 chars, punchy hook, 3-5 hashtags, thread option for longer content
- linkedin: Professional tone, up to 3000 chars, credibility proof, intelligent question at end
- facebook: Casual tone, up to 5000 chars, mini-story structure, share CTA
- instagram: Caption up to 2200 chars, 20-30 hashtags, image suggestion
- tiktok: Hook under 100 chars, video script, video_prompt for AI generation (15-45s)
- youtube_shorts: Hook, script outline, video_prompt (45-60s target)
- threads: Up to 500 chars, hot take + bullets + question
- reddit: Case study format, up to 40000 chars, peer tone, subreddit suggestions
- pinterest: SEO title (100 chars), description (500 chars), keywords, board suggestion
- snapchat: Short hook, video script (7-20s), large caption style

Return valid JSON only."""

_USER_PROMPT = """Convert this newsletter into social media posts for ALL 10 platforms:

Title: {title}

Content:
{content}

Generate optimized posts following each platform's best practices. Return this exact JSON structure:
{{
  "twitter": {{ "main_post": "...", "hashtags": ["..."], "thread": null }},
  "linkedin": {{ "post": "...", "hashtags": ["..."] }},
  "facebook": {{ "post": "...", "cta": "..." }},
  "instagram": {{ "caption": "...", "hashtags": ["..."], "image_suggestion": "..." }},
  "tiktok": {{ "hook": "...", "script": "...", "video_prompt": "..." }},
  "youtube_shorts": {{ "hook": "...", "script": "...", "video_prompt": "..." }},
  "threads": {{ "post": "...", "hashtags": ["..."] }},
  "reddit": {{ "title": "...", "body": "...", "subreddit_suggestions": ["..."] }},
  "pinterest": {{ "title": "...", "description": "...", "keywords": ["..."], "board_suggestion": "..." }},
  "snapchat": {{ "hook": "...", "script": "...", "duration": "15s" }}
}}"""


# ---------------------------------------------------------------------------
# Platform formatting
# ---------------------------------------------------------------------------

def _hashtag(tag: str) -> str:
    return "#" + re.sub(r"\s+", "", tag.lstrip("#"))


def truncate_tweet(text: str, hashtags: Optional[List[str]] = None) -> str:
    """Fit text plus a hashtag line into 280 characters, ellipsising the text."""
    tags = " ".join(_hashtag(h) for h in hashtags or [])
    suffix = f"\n\n{tags}" if tags else ""
    max_text = TWITTER_MAX_LENGTH - len(suffix)
    if len(text) <= max_text:
        return text + suffix
    return text[:max_text - 3] + "..." + suffix


def format_linkedin_post(content: str, hashtags: List[str]) -> str:
    return f"{content}\n\n{' '.join(_hashtag(h) for h in hashtags)}"


def format_instagram_caption(caption: str, hashtags: List[str]) -> str:
    tags = " ".join(_hashtag(h) for h in hashtags[:INSTAGRAM_MAX_HASHTAGS])
    return f"{caption}\n\n.\n.\n.\n\n{tags}"


def template_posts(title: Optional[str], plain_text: str) -> Dict[str, Any]:
    """Fallback posts for every platform built from the title and opening text."""
    short = plain_text[:200]
    title = title or "Check out our latest update"
    return {
        "twitter": {
            "main_post": f"{title[:200]} #newsletter #update",
            "hashtags": ["newsletter", "update", "insights"],
            "thread": None,
        },
        "linkedin": {
            "post": f"{title}\n\n{short}...\n\nRead more in our latest newsletter.\n\nWhat's your take on this?",
            "hashtags": ["newsletter", "insights", "update", "business"],
        },
        "facebook": {
            "post": f"{title}\n\n{short}...\n\nWhat do you think? Share with someone who needs to see this!",
            "cta": "Read the full newsletter",
        },
        "instagram": {
            "caption": f"{title}\n\n{short[:150]}...\n\nSave this for later! 📌",
            "hashtags": [
                "newsletter", "insights", "mustread", "update", "content",
                "business", "growth", "tips", "advice", "learn",
            ],
            "image_suggestion": "A clean, professional graphic with the newsletter title and key visual elements",
        },
        "tiktok": {
            "hook": f"Stop scrolling if you want to know about {title[:50]}...",
            "script": f"[Hook] {title}\n\n[Main Content] Here's what you need to know...\n\n[CTA] Follow for more insights!",
            "video_prompt": (
                f"Create a dynamic 30-second vertical video about: {title}. "
                "Fast-paced editing, text overlays for key points, engaging visuals."
            ),
        },
        "youtube_shorts": {
            "hook": title[:100],
            "script": (
                f"[0-5s] Hook: {title}\n[5-45s] Key insights from the newsletter\n"
                "[45-60s] Subscribe for more content like this!"
            ),
            "video_prompt": (
                f"Create a 60-second vertical video about: {title}. "
                "Include text overlays, smooth transitions, and call-to-action at the end."
            ),
        },
        "threads": {
            "post": f"Hot take: {title}\n\n{short[:350]}...\n\nThoughts? 👇",
            "hashtags": ["newsletter", "update", "thoughts"],
        },
        "reddit": {
            "title": f"[Discussion] {title}",
            "body": (
                "Hey everyone,\n\nI wanted to share some insights from our latest newsletter:\n\n"
                f"{short}...\n\nWhat are your thoughts? Am I missing something here?"
            ),
            "subreddit_suggestions": ["business", "entrepreneur", "marketing"],
        },
        "pinterest": {
            "title": title[:100],
            "description": f"{short[:400]}... Click to read the full newsletter and get all the insights!",
            "keywords": ["newsletter", "insights", "tips", "business", "growth"],
            "board_suggestion": "Business Tips & Insights",
        },
        "snapchat": {
            "hook": f"You NEED to know this about {title[:30]}! 👀",
            "script": "[1-3s] Hook text overlay\n[4-12s] Quick key points with visuals\n[13-15s] Swipe up CTA",
            "duration": "15s",
        },
    }


def _enforce_limits(posts: Dict[str, Any]) -> Dict[str, Any]:
    """Apply hard platform limits to model output."""
    twitter = posts.get("twitter")
    if isinstance(twitter, dict) and isinstance(twitter.get("main_post"), str):
        if len(twitter["main_post"]) > TWITTER_MAX_LENGTH:
            twitter["main_post"] = truncate_tweet(twitter["main_post"])
    instagram = posts.get("instagram")
    if isinstance(instagram, dict) and isinstance(instagram.get("hashtags"), list):
        instagram["hashtags"] = instagram["hashtags"][:INSTAGRAM_MAX_HASHTAGS]
    return posts


class RemixError(Exception):
    """No provider returned a remixed post."""


def platform_guide(platform: str) -> str:
    """Writing guide for *platform* (case-insensitive); ValueError when unknown."""
    guide = PLATFORM_GUIDES.get((platform or "").strip().lower())
    if guide is None:
        raise ValueError(f"Unknown platform: {platform}")
    return guide


class SocialPostGenerator:
    def __init__(self, llm: Optional[LLMClient] = None) -> None:
        self.llm = llm or LLMClient()

    async def generate(self, newsletter_html: str, title: Optional[str] = None) -> Dict[str, Any]:
        plain_text = strip_html(newsletter_html)[:MAX_SOURCE_CHARS]

        posts, provider = await self.llm.generate_json(
            _SYSTEM_PROMPT,
            _USER_PROMPT.format(title=title or "Newsletter", content=plain_text),
        )
        fallback = template_posts(title, plain_text)
        if posts:
            # Fill any platform the model skipped
            for platform in PLATFORMS:
                if not isinstance(posts.get(platform), dict):
                    posts[platform] = fallback[platform]
            posts = _enforce_limits(posts)
        else:
            provider = None
            posts = fallback

        logger.info("Generated social posts (provider=%s)", provider or "template")
        return {"success": True, "posts": posts, "ai_generated": provider is not None}

    async def remix(self, content: str, target_platform: str) -> Dict[str, str]:
        """
        Rewrite one existing post for *target_platform*.

        Raises:
            ValueError:  the platform has no writing guide
            RemixError:  no provider is configured or none answered
        """
        guide = platform_guide(target_platform)
        text, provider = await self.llm.generate_text(
            _REMIX_SYSTEM_PROMPT.format(platform=target_platform, guide=guide),
            content,
            max_tokens=REMIX_MAX_TOKENS,
        )
        if not text:
            raise RemixError(NO_PROVIDER_MESSAGE)

        logger.info("Remixed post for %s (provider=%s, %d chars)", target_platform, provider, len(text))
        return {"remixed_content": text, "platform": target_platform}
