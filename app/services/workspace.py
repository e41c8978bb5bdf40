"""
Workspace lifecycle: creation, settings, data export and account deletion.
"""
from __future__ import annotations

import logging
import re
import time
from typing import Any, Dict, Iterable, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import settings
from app.models.database_models import (
    KnowledgeSource,
    Newsletter,
    Profile,
    SubscriptionTier,
    TeamRole,
    Tenant,
    TenantSettings,
)
from app.utils.helpers import TIER_LIMITS, mask_secret

logger = logging.getLogger(__name__)

DELETE_CONFIRMATION = "DELETE"
ESP_PROVIDERS = ("sendgrid", "mailchimp", "convertkit")
SECRET_FIELDS = (
    "openai_api_key",
    "anthropic_api_key",
    "sendgrid_api_key",
    "mailchimp_api_key",
    "convertkit_api_key",
)
PLAIN_FIELDS = ("esp_provider", "sender_email", "company_name")


class QuotaExceededError(Exception):
    """A plan limit would be exceeded."""


def email_handle(email: str) -> str:
    local = (email or "").split("@")[0].lower()
    return re.sub(r"[^a-z0-9]", "-", local)


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

async def create_workspace(
    db: AsyncSession,
    user_id: str,
    email: Optional[str],
    full_name: Optional[str],
) -> Tuple[Profile, bool]:
    """
    Create a free-tier tenant with the caller as owner.

    Idempotent: returns ``(existing_profile, False)`` when the caller already
    has a workspace.
    """
    existing = await db.get(Profile, user_id)
    if existing is not None:
        return existing, False

    handle = email_handle(email or user_id)
    limits = TIER_LIMITS[SubscriptionTier.FREE.value]
    tenant = Tenant(
        name=full_name or handle,
        slug=f"{handle}-{int(time.time() * 1000)}",
        subscription_tier=SubscriptionTier.FREE,
        max_sources=limits["max_sources"],
        max_newsletters_per_month=limits["max_newsletters"],
        max_ai_generations_per_month=limits["max_ai_generations"],
    )
    db.add(tenant)
    await db.flush()

    profile = Profile(
        id=user_id,
        tenant_id=tenant.id,
        email=email or "",
        full_name=full_name,
        role=TeamRole.OWNER,
        is_active=True,
    )
    db.add(profile)
    await db.flush()
    logger.info("Created workspace %s (tenant %s) for user %s", tenant.slug, tenant.id, user_id)
    return profile, True


async def ensure_source_quota(db: AsyncSession, tenant: Tenant) -> None:
    count = (
        await db.execute(
            select(func.count(KnowledgeSource.id)).where(KnowledgeSource.tenant_id == tenant.id)
        )
    ).scalar_one()
    if count >= tenant.max_sources:
        raise QuotaExceededError(
            f"Source limit reached ({tenant.max_sources}). Upgrade your plan to add more sources."
        )


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

async def get_or_create_settings(db: AsyncSession, tenant_id: int) -> TenantSettings:
    row = await db.get(TenantSettings, tenant_id)
    if row is None:
        row = TenantSettings(tenant_id=tenant_id, esp_provider="sendgrid")
        db.add(row)
        await db.flush()
    return row


def masked_settings(row: TenantSettings) -> Dict[str, Any]:
    data: Dict[str, Any] = {"tenant_id": row.tenant_id}
    for field in SECRET_FIELDS:
        data[field] = mask_secret(getattr(row, field))
    for field in PLAIN_FIELDS:
        data[field] = getattr(row, field)
    return data


def update_settings(row: TenantSettings, changes: Dict[str, Any]) -> TenantSettings:
    """
    Apply a partial update.

    Raises:
        ValueError: unknown ESP provider
    """
    provider = changes.get("esp_provider")
    if provider is not None and provider not in ESP_PROVIDERS:
        raise ValueError(f"esp_provider must be one of: {', '.join(ESP_PROVIDERS)}")
    for field in SECRET_FIELDS + PLAIN_FIELDS:
        if field in changes:
            setattr(row, field, changes[field] or None)
    if not row.esp_provider:
        row.esp_provider = "sendgrid"
    return row


async def resolve_openai_key(db: AsyncSession, tenant_id: int) -> Optional[str]:
    """Tenant key first, environment key second."""
    row = await db.get(TenantSettings, tenant_id)
    return (row.openai_api_key if row else None) or settings.OPENAI_API_KEY


async def resolve_llm_keys(db: AsyncSession, tenant_id: int) -> Tuple[Optional[str], Optional[str]]:
    """``(anthropic_key, openai_key)`` with tenant keys taking precedence."""
    row = await db.get(TenantSettings, tenant_id)
    anthropic = (row.anthropic_api_key if row else None) or settings.ANTHROPIC_API_KEY
    openai = (row.openai_api_key if row else None) or settings.OPENAI_API_KEY
    return anthropic, openai


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def _columns(obj: Any, names: Iterable[str]) -> Dict[str, Any]:
    data = {}
    for name in names:
        value = getattr(obj, name)
        data[name] = value.value if hasattr(value, "value") else value
    return data


async def export_user_data(db: AsyncSession, profile: Profile) -> Dict[str, Any]:
    """Everything the tenant owns, without chunk bodies or secrets."""
    tenant = (
        await db.execute(
            select(Tenant)
            .where(Tenant.id == profile.tenant_id)
            .options(
                selectinload(Tenant.tenant_settings),
                selectinload(Tenant.sources),
                selectinload(Tenant.newsletters).selectinload(Newsletter.stats),
                selectinload(Tenant.voice_profiles),
                selectinload(Tenant.api_keys),
                selectinload(Tenant.webhooks),
            )
        )
    ).scalar_one()

    newsletters = []
    for nl in tenant.newsletters:
        item = _columns(nl, (
            "id", "title", "subject_line", "preview_text", "content_html", "status",
            "scheduled_at", "sent_at", "created_at", "updated_at",
        ))
        item["stats"] = _columns(nl.stats, (
            "recipients", "unique_opens", "open_rate", "unique_clicks", "click_rate",
        )) if nl.stats else None
        newsletters.append(item)

    return {
        "exported_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "profile": _columns(profile, ("id", "tenant_id", "email", "full_name", "role", "created_at")),
        "tenant": _columns(tenant, ("id", "name", "slug", "subscription_tier", "created_at")),
        "settings": masked_settings(tenant.tenant_settings) if tenant.tenant_settings else None,
        "knowledge_sources": [
            _columns(s, (
                "id", "source_type", "source_uri", "title", "status",
                "token_count", "chunk_count", "created_at",
            ))
            for s in tenant.sources
        ],
        "newsletters": newsletters,
        "voice_profiles": [
            _columns(v, ("id", "name", "voice_prompt", "tone_markers", "created_at"))
            for v in tenant.voice_profiles
        ],
        "api_keys": [
            _columns(k, (
                "id", "name", "key_prefix", "permissions", "rate_limit",
                "last_used_at", "created_at", "revoked_at",
            ))
            for k in tenant.api_keys
        ],
        "webhooks": [
            _columns(w, ("id", "url", "events", "enabled", "created_at"))
            for w in tenant.webhooks
        ],
    }


# ---------------------------------------------------------------------------
# Deletion / reactivation
# ---------------------------------------------------------------------------

async def delete_account(db: AsyncSession, profile: Profile) -> None:
    """
    Remove the tenant and everything it owns. ORM cascades delete children
    before parents; audit entries are kept.
    """
    tenant = await db.get(Tenant, profile.tenant_id)
    if tenant is None:
        await db.delete(profile)
        return
    await db.delete(tenant)
    await db.flush()
    logger.info("Deleted tenant %s for user %s", tenant.id, profile.id)


async def reactivate_account(db: AsyncSession, profile: Profile) -> Profile:
    profile.is_active = True
    await db.flush()
    logger.info("Reactivated account %s", profile.id)
    return profile
