"""
Audit log endpoints.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import get_current_profile
from app.models.database_models import Profile
from app.models.schemas import AuditLogRequest, AuditLogResponse
from app.services import audit as audit_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=AuditLogResponse, status_code=status.HTTP_201_CREATED)
async def log_audit_event(
    body: AuditLogRequest,
    request: Request,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """Record an action. The tenant always comes from the caller's profile."""
    return await audit_service.log_action(
        db,
        tenant_id=profile.tenant_id,
        user_id=body.user_id or profile.id,
        action=body.action,
        resource_type=body.resource_type,
        resource_id=body.resource_id,
        details=body.details,
        ip_address=audit_service.client_ip(request.headers),
        user_agent=request.headers.get("user-agent"),
    )


@router.get("", response_model=List[AuditLogResponse])
async def list_audit_events(
    limit: int = Query(audit_service.DEFAULT_AUDIT_LIMIT, ge=1, le=audit_service.DEFAULT_AUDIT_LIMIT),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await audit_service.list_entries(db, profile.tenant_id, limit)
