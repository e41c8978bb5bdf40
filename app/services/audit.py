"""
Audit log writes and reads.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.database_models import AuditLog

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_LIMIT = 100


def client_ip(headers: Mapping[str, str]) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then ``unknown``."""
    forwarded = (headers.get("x-forwarded-for") or "").split(",")[0].strip()
    return forwarded or headers.get("x-real-ip") or "unknown"


async def log_action(
    db: AsyncSession,
    *,
    tenant_id: Optional[int],
    user_id: Optional[str],
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> AuditLog:
    entry = AuditLog(
        tenant_id=tenant_id,
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details or {},
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.add(entry)
    await db.flush()
    logger.info("Audit: %s %s/%s by %s", action, resource_type, resource_id, user_id)
    return entry


async def list_entries(db: AsyncSession, tenant_id: int, limit: int = DEFAULT_AUDIT_LIMIT) -> List[AuditLog]:
    stmt = (
        select(AuditLog)
        .where(AuditLog.tenant_id == tenant_id)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
    )
    return list((await db.execute(stmt)).scalars().all())
