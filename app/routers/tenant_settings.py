"""
Tenant settings: provider credentials and sender identity.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import get_current_profile, require_manager
from app.models.database_models import Profile
from app.models.schemas import SettingsResponse, SettingsUpdateRequest
from app.services import workspace as workspace_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=SettingsResponse)
async def get_settings(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await workspace_service.get_or_create_settings(db, profile.tenant_id)
    return workspace_service.masked_settings(row)


@router.put("", response_model=SettingsResponse)
async def update_settings(
    body: SettingsUpdateRequest,
    profile: Profile = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await workspace_service.get_or_create_settings(db, profile.tenant_id)
    try:
        workspace_service.update_settings(row, body.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    await db.flush()
    logger.info("Settings updated for tenant %s by %s", profile.tenant_id, profile.id)
    return workspace_service.masked_settings(row)
