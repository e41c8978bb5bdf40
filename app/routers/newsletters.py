"""
Newsletter endpoints.

POST   /generate        AI draft from a topic (optionally RAG-grounded).
POST   /quality         pre-send quality report.
GET    /send-time       best send-time suggestions.
POST   /                create a newsletter.
GET    /                list newsletters.
GET    /{id}            newsletter details.
PUT    /{id}            update a newsletter.
DELETE /{id}            delete a newsletter.
POST   /{id}/send       send through the tenant's ESP.
GET    /{id}/stats      engagement numbers.
PUT    /{id}/stats      record engagement numbers.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.database import get_db, get_session_factory
from app.dependencies.auth import get_current_profile, require_writer
from app.models.database_models import Newsletter, NewsletterStatus, Profile, VoiceProfile
from app.models.schemas import (
    GenerateContentRequest,
    GenerateContentResponse,
    NewsletterCreateRequest,
    NewsletterResponse,
    NewsletterStatsResponse,
    NewsletterStatsUpdate,
    NewsletterUpdateRequest,
    QualityCheckRequest,
    QualityCheckResponse,
    SendNewsletterRequest,
    SendNewsletterResponse,
    SendTimeResponse,
)
from app.services import newsletters as newsletter_service
from app.services.newsletter_sender import ProviderNotConfigured, SendError
from app.services.quality import check_quality
from app.services.send_time import suggest_send_time
from app.services.webhooks import dispatch_event

logger = logging.getLogger(__name__)

router = APIRouter()


async def _get_tenant_newsletter(db: AsyncSession, tenant_id: int, newsletter_id: int) -> Newsletter:
    result = await db.execute(
        select(Newsletter)
        .where(Newsletter.id == newsletter_id, Newsletter.tenant_id == tenant_id)
        .options(selectinload(Newsletter.stats))
    )
    newsletter = result.scalar_one_or_none()
    if newsletter is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Newsletter {newsletter_id} not found.",
        )
    return newsletter


async def _check_voice_profile(db: AsyncSession, tenant_id: int, voice_profile_id: Optional[int]) -> None:
    if voice_profile_id is None:
        return
    voice = await db.get(VoiceProfile, voice_profile_id)
    if voice is None or voice.tenant_id != tenant_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Voice profile not found")


# ---------------------------------------------------------------------------
# Generation / analysis
# ---------------------------------------------------------------------------

@router.post("/generate", response_model=GenerateContentResponse)
async def generate_newsletter(
    body: GenerateContentRequest,
    profile: Profile = Depends(require_writer),
    db: AsyncSession = Depends(get_db),
):
    context = [c.model_dump() for c in body.context] if body.context else None
    return await newsletter_service.generate_for_tenant(
        db,
        profile.tenant_id,
        body.topic,
        context=context,
        voice_profile_id=body.voice_profile_id,
        use_knowledge_base=body.use_knowledge_base,
        save=body.save,
        created_by=profile.id,
    )


@router.post("/quality", response_model=QualityCheckResponse)
async def quality_check(
    body: QualityCheckRequest,
    profile: Profile = Depends(get_current_profile),
):
    return check_quality(body.content_html, body.subject_line)


@router.get("/send-time", response_model=SendTimeResponse)
async def send_time_suggestions(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await suggest_send_time(db, profile.tenant_id)


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

@router.post("", response_model=NewsletterResponse, status_code=status.HTTP_201_CREATED)
async def create_newsletter(
    body: NewsletterCreateRequest,
    profile: Profile = Depends(require_writer),
    db: AsyncSession = Depends(get_db),
):
    await _check_voice_profile(db, profile.tenant_id, body.voice_profile_id)
    newsletter = Newsletter(
        tenant_id=profile.tenant_id,
        status=NewsletterStatus.DRAFT,
        created_by=profile.id,
    )
    newsletter_service.apply_fields(newsletter, body.model_dump())
    db.add(newsletter)
    await db.flush()
    logger.info("Created newsletter id=%d for tenant %d", newsletter.id, profile.tenant_id)
    return newsletter


@router.get("", response_model=List[NewsletterResponse])
async def list_newsletters(
    status_filter: Optional[NewsletterStatus] = Query(None, alias="status"),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Newsletter).where(Newsletter.tenant_id == profile.tenant_id)
    if status_filter is not None:
        stmt = stmt.where(Newsletter.status == status_filter)
    stmt = stmt.order_by(Newsletter.created_at.desc(), Newsletter.id.desc())
    return (await db.execute(stmt)).scalars().all()


@router.get("/{newsletter_id}", response_model=NewsletterResponse)
async def get_newsletter(
    newsletter_id: int,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await _get_tenant_newsletter(db, profile.tenant_id, newsletter_id)


@router.put("/{newsletter_id}", response_model=NewsletterResponse)
async def update_newsletter(
    newsletter_id: int,
    body: NewsletterUpdateRequest,
    profile: Profile = Depends(require_writer),
    db: AsyncSession = Depends(get_db),
):
    newsletter = await _get_tenant_newsletter(db, profile.tenant_id, newsletter_id)
    changes = body.model_dump(exclude_unset=True)
    if "voice_profile_id" in changes:
        await _check_voice_profile(db, profile.tenant_id, changes["voice_profile_id"])
    newsletter_service.apply_fields(newsletter, changes)
    await db.flush()
    await db.refresh(newsletter)
    return newsletter


@router.delete("/{newsletter_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_newsletter(
    newsletter_id: int,
    profile: Profile = Depends(require_writer),
    db: AsyncSession = Depends(get_db),
) -> None:
    newsletter = await _get_tenant_newsletter(db, profile.tenant_id, newsletter_id)
    await db.delete(newsletter)
    await db.flush()
    logger.info("Deleted newsletter id=%d", newsletter_id)


# ---------------------------------------------------------------------------
# Sending / stats
# ---------------------------------------------------------------------------

@router.post("/{newsletter_id}/send", response_model=SendNewsletterResponse)
async def send_newsletter(
    newsletter_id: int,
    body: SendNewsletterRequest,
    background_tasks: BackgroundTasks,
    profile: Profile = Depends(require_writer),
    db: AsyncSession = Depends(get_db),
    session_factory=Depends(get_session_factory),
):
    newsletter = await _get_tenant_newsletter(db, profile.tenant_id, newsletter_id)
    try:
        result = await newsletter_service.send_newsletter(
            db, newsletter, body.recipients, is_test=body.is_test, list_id=body.list_id
        )
    except (ValueError, ProviderNotConfigured) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except SendError as exc:
        logger.error("Sending newsletter id=%d failed: %s", newsletter_id, exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))

    if not body.is_test:
        background_tasks.add_task(
            dispatch_event,
            session_factory,
            newsletter.tenant_id,
            "newsletter.sent",
            newsletter_service.sent_event(newsletter, result, len(body.recipients)),
        )

    return SendNewsletterResponse(
        provider=result.provider,
        recipients_count=len(body.recipients),
        is_test=body.is_test,
    )


@router.get("/{newsletter_id}/stats", response_model=NewsletterStatsResponse)
async def get_stats(
    newsletter_id: int,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    newsletter = await _get_tenant_newsletter(db, profile.tenant_id, newsletter_id)
    return newsletter.stats or NewsletterStatsResponse()


@router.put("/{newsletter_id}/stats", response_model=NewsletterStatsResponse)
async def update_stats(
    newsletter_id: int,
    body: NewsletterStatsUpdate,
    profile: Profile = Depends(require_writer),
    db: AsyncSession = Depends(get_db),
):
    newsletter = await _get_tenant_newsletter(db, profile.tenant_id, newsletter_id)
    stats = newsletter_service.record_stats(newsletter, body.model_dump(exclude_unset=True))
    await db.flush()
    return stats
