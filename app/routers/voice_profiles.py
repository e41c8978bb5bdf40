"""
Voice profiles used to steer generated newsletters.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import get_current_profile, require_writer
from app.models.database_models import Profile, VoiceProfile
from app.models.schemas import VoiceProfileCreateRequest, VoiceProfileResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=List[VoiceProfileResponse])
async def list_voice_profiles(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(VoiceProfile)
        .where(VoiceProfile.tenant_id == profile.tenant_id)
        .order_by(VoiceProfile.is_default.desc(), VoiceProfile.created_at.desc())
    )
    return result.scalars().all()


@router.post("", response_model=VoiceProfileResponse, status_code=status.HTTP_201_CREATED)
async def create_voice_profile(
    body: VoiceProfileCreateRequest,
    profile: Profile = Depends(require_writer),
    db: AsyncSession = Depends(get_db),
):
    # Only one default per tenant
    if body.is_default:
        await db.execute(
            update(VoiceProfile)
            .where(VoiceProfile.tenant_id == profile.tenant_id)
            .values(is_default=False)
        )
    voice = VoiceProfile(tenant_id=profile.tenant_id, **body.model_dump())
    db.add(voice)
    await db.flush()
    logger.info("Created voice profile id=%d for tenant %d", voice.id, profile.tenant_id)
    return voice


@router.delete("/{voice_profile_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_voice_profile(
    voice_profile_id: int,
    profile: Profile = Depends(require_writer),
    db: AsyncSession = Depends(get_db),
) -> None:
    voice = await db.get(VoiceProfile, voice_profile_id)
    if voice is None or voice.tenant_id != profile.tenant_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Voice profile not found")
    await db.delete(voice)
    await db.flush()
