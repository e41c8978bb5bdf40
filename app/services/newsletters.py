"""
Newsletter orchestration shared by the dashboard and the external API:
generation with optional retrieval, drafts, stats and sending.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.database_models import (
    Newsletter,
    NewsletterStats,
    NewsletterStatus,
    TenantSettings,
    VoiceProfile,
)
from app.services.content_generator import ContentGenerator
from app.services.embedding import OpenAIEmbeddingService
from app.services.llm_client import LLMClient
from app.services.newsletter_sender import NewsletterSender, SendResult
from app.services.rag_search import RagSearchService
from app.services.workspace import resolve_llm_keys
from app.utils.helpers import generate_subject_line, percentage, sanitize_html

logger = logging.getLogger(__name__)

KNOWLEDGE_BASE_LIMIT = 5


async def generate_for_tenant(
    db: AsyncSession,
    tenant_id: int,
    topic: str,
    context: Optional[List[Dict[str, Any]]] = None,
    voice_profile_id: Optional[int] = None,
    use_knowledge_base: bool = False,
    save: bool = False,
    created_by: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Generate a draft for *topic*.

    With ``use_knowledge_base`` and no explicit context, the top five RAG
    results for the topic become the context. With ``save`` the draft is
    stored and its id returned as ``newsletter_id``.
    """
    anthropic_key, openai_key = await resolve_llm_keys(db, tenant_id)

    if use_knowledge_base and not context:
        embedder = OpenAIEmbeddingService(api_key=openai_key)
        found = await RagSearchService(embedder).search(db, tenant_id, topic, KNOWLEDGE_BASE_LIMIT)
        context = found["results"]

    voice = None
    if voice_profile_id is not None:
        voice = await db.get(VoiceProfile, voice_profile_id)
        if voice is not None and voice.tenant_id != tenant_id:
            voice = None

    llm = LLMClient(anthropic_api_key=anthropic_key, openai_api_key=openai_key)
    draft = await ContentGenerator(llm).generate(topic, context or [], voice)

    if save:
        newsletter = Newsletter(
            tenant_id=tenant_id,
            title=draft["title"],
            subject_line=draft["subject_line"],
            content_html=sanitize_html(draft["content_html"]),
            status=NewsletterStatus.DRAFT,
            voice_profile_id=voice.id if voice else None,
            citations=draft["citations"],
            created_by=created_by,
        )
        db.add(newsletter)
        await db.flush()
        draft["newsletter_id"] = newsletter.id
        logger.info("Saved generated newsletter id=%d for tenant %d", newsletter.id, tenant_id)

    return draft


def apply_fields(newsletter: Newsletter, changes: Dict[str, Any]) -> Newsletter:
    """Copy editable fields, sanitising HTML and defaulting the subject line."""
    for field, value in changes.items():
        if field == "content_html" and value is not None:
            value = sanitize_html(value)
        setattr(newsletter, field, value)
    if not newsletter.subject_line and newsletter.title:
        newsletter.subject_line = generate_subject_line(newsletter.title)
    return newsletter


def record_stats(newsletter: Newsletter, numbers: Dict[str, int]) -> NewsletterStats:
    """Store engagement numbers and derive open and click rates from recipients."""
    stats = newsletter.stats
    if stats is None:
        stats = NewsletterStats(newsletter_id=newsletter.id)
        newsletter.stats = stats
    for field, value in numbers.items():
        setattr(stats, field, value)
    stats.open_rate = percentage(stats.unique_opens or 0, stats.recipients or 0)
    stats.click_rate = percentage(stats.unique_clicks or 0, stats.recipients or 0)
    return stats


async def send_newsletter(
    db: AsyncSession,
    newsletter: Newsletter,
    recipients: List[str],
    is_test: bool = False,
    list_id: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> SendResult:
    """
    Send through the tenant's ESP. A real send marks the newsletter sent and
    records the recipient count; the caller schedules ``newsletter.sent``
    with :func:`sent_event`.
    """
    tenant_settings = await db.get(TenantSettings, newsletter.tenant_id)
    result = await NewsletterSender(transport=transport).send(
        newsletter, tenant_settings, recipients, is_test=is_test, list_id=list_id
    )

    if not is_test:
        newsletter.status = NewsletterStatus.SENT
        newsletter.sent_at = datetime.now(timezone.utc)
        record_stats(newsletter, {"recipients": len(recipients)})
        await db.flush()

    return result


def sent_event(newsletter: Newsletter, result: SendResult, recipients_count: int) -> Dict[str, Any]:
    return {
        "newsletter_id": newsletter.id,
        "title": newsletter.title,
        "provider": result.provider,
        "recipients_count": recipients_count,
    }
