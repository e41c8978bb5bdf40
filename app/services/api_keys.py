"""
API key issuance and validation.

Keys look like ``nw_<48 hex chars>``. Only the SHA-256 hex digest is stored;
the first seven characters are kept as a display prefix. Each successful
validation records a usage row, and the count of rows inside the sliding
RATE_LIMIT_WINDOW_SECONDS window is compared with the key's hourly limit.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.database_models import ApiKey, ApiKeyUsage
from app.utils.helpers import generate_hash

logger = logging.getLogger(__name__)

KEY_PREFIX = "nw_"
VALID_PERMISSIONS = [
    "sources:read",
    "sources:write",
    "newsletters:read",
    "newsletters:write",
    "analytics:read",
]
DEFAULT_PERMISSIONS = VALID_PERMISSIONS[:3]

API_KEY_REQUIRED = "API key required. Provide X-API-Key header."
INVALID_API_KEY = "Invalid API key"
REVOKED_API_KEY = "API key has been revoked"
RATE_LIMIT_EXCEEDED = "Rate limit exceeded"


def generate_api_key() -> str:
    return KEY_PREFIX + secrets.token_hex(24)


def hash_api_key(key: str) -> str:
    return generate_hash(key)


def filter_permissions(requested: Optional[List[str]]) -> List[str]:
    """Keep only known permissions; empty or missing means the defaults."""
    if not requested:
        return list(DEFAULT_PERMISSIONS)
    valid = [p for p in requested if p in VALID_PERMISSIONS]
    return valid or list(DEFAULT_PERMISSIONS)


@dataclass
class KeyValidation:
    """Outcome of validating a presented key."""

    valid: bool
    status_code: int = 200
    error: Optional[str] = None
    api_key: Optional[ApiKey] = None
    rate_limit: Optional[int] = None
    current_usage: int = 0
    permissions: List[str] = field(default_factory=list)

    def as_response(self) -> dict:
        if self.valid:
            return {
                "valid": True,
                "tenant_id": self.api_key.tenant_id,
                "permissions": self.permissions,
                "rate_limit": self.rate_limit,
                "current_usage": self.current_usage,
            }
        body = {"valid": False, "error": self.error}
        if self.status_code == 429:
            body.update(
                rate_limit=self.rate_limit,
                current_usage=self.current_usage,
                retry_after=settings.RATE_LIMIT_WINDOW_SECONDS,
            )
        return body


# ---------------------------------------------------------------------------
# Management
# ---------------------------------------------------------------------------

async def create_api_key(
    db: AsyncSession,
    tenant_id: int,
    created_by: Optional[str],
    name: Optional[str] = None,
    permissions: Optional[List[str]] = None,
    rate_limit: Optional[int] = None,
):
    """
    Create a key and return ``(ApiKey, full_key)``.

    The full key is returned exactly once; it cannot be recovered later.
    """
    full_key = generate_api_key()
    api_key = ApiKey(
        tenant_id=tenant_id,
        name=name or "API Key",
        key_prefix=full_key[:7],
        key_hash=hash_api_key(full_key),
        permissions=filter_permissions(permissions),
        rate_limit=rate_limit or settings.API_KEY_DEFAULT_RATE_LIMIT,
        created_by=created_by,
    )
    db.add(api_key)
    await db.flush()
    logger.info("Created API key id=%d prefix=%s for tenant %d", api_key.id, api_key.key_prefix, tenant_id)
    return api_key, full_key


async def list_api_keys(db: AsyncSession, tenant_id: int) -> List[ApiKey]:
    result = await db.execute(
        select(ApiKey).where(ApiKey.tenant_id == tenant_id).order_by(ApiKey.created_at.desc(), ApiKey.id.desc())
    )
    return list(result.scalars().all())


async def get_tenant_key(db: AsyncSession, tenant_id: int, key_id: int) -> Optional[ApiKey]:
    result = await db.execute(
        select(ApiKey).where(ApiKey.id == key_id, ApiKey.tenant_id == tenant_id)
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

async def count_recent_usage(db: AsyncSession, api_key_id: int, now: Optional[datetime] = None) -> int:
    now = now or datetime.now(timezone.utc)
    window_start = now - timedelta(seconds=settings.RATE_LIMIT_WINDOW_SECONDS)
    result = await db.execute(
        select(func.count(ApiKeyUsage.id)).where(
            ApiKeyUsage.api_key_id == api_key_id,
            ApiKeyUsage.created_at >= window_start,
        )
    )
    return int(result.scalar_one())


async def validate_api_key(
    db: AsyncSession,
    presented_key: Optional[str],
    endpoint: Optional[str] = None,
) -> KeyValidation:
    """
    Check a presented key and, when it passes, record one unit of usage.

    Order of checks: presence, hash lookup, revocation, rate limit.
    """
    if not presented_key:
        return KeyValidation(valid=False, status_code=401, error=API_KEY_REQUIRED)

    result = await db.execute(select(ApiKey).where(ApiKey.key_hash == hash_api_key(presented_key)))
    api_key = result.scalar_one_or_none()
    if api_key is None:
        return KeyValidation(valid=False, status_code=401, error=INVALID_API_KEY)

    if api_key.revoked_at is not None:
        return KeyValidation(valid=False, status_code=401, error=REVOKED_API_KEY)

    usage = await count_recent_usage(db, api_key.id)
    if usage >= api_key.rate_limit:
        logger.warning("API key prefix=%s rate limited (%d/%d)", api_key.key_prefix, usage, api_key.rate_limit)
        return KeyValidation(
            valid=False,
            status_code=429,
            error=RATE_LIMIT_EXCEEDED,
            api_key=api_key,
            rate_limit=api_key.rate_limit,
            current_usage=usage,
        )

    now = datetime.now(timezone.utc)
    db.add(ApiKeyUsage(api_key_id=api_key.id, endpoint=endpoint, created_at=now))
    api_key.last_used_at = now
    await db.flush()

    return KeyValidation(
        valid=True,
        api_key=api_key,
        rate_limit=api_key.rate_limit,
        current_usage=usage + 1,
        permissions=list(api_key.permissions or []),
    )
