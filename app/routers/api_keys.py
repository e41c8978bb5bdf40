"""
API key management and validation.

POST   /                create a key (full key returned once).
GET    /                list key metadata.
POST   /{id}/revoke     revoke a key.
DELETE /{id}            delete a key.
POST   /validate        validate a presented key and record usage.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.dependencies.auth import require_manager
from app.models.database_models import Profile
from app.models.schemas import ApiKeyCreateRequest, ApiKeyCreatedResponse, ApiKeyResponse
from app.services import api_keys as api_key_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=ApiKeyCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_api_key(
    body: ApiKeyCreateRequest,
    profile: Profile = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
):
    api_key, full_key = await api_key_service.create_api_key(
        db,
        profile.tenant_id,
        profile.id,
        name=body.name,
        permissions=body.permissions,
        rate_limit=body.rate_limit,
    )
    return ApiKeyCreatedResponse(
        **ApiKeyResponse.model_validate(api_key).model_dump(),
        full_key=full_key,
    )


@router.get("", response_model=List[ApiKeyResponse])
async def list_api_keys(
    profile: Profile = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
):
    return await api_key_service.list_api_keys(db, profile.tenant_id)


@router.post("/validate")
async def validate_api_key(
    request: Request,
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
    db: AsyncSession = Depends(get_db),
):
    """
    Validate a key from the X-API-Key header or an ``api_key`` body field.

    Malformed JSON bodies are ignored. A 429 answer carries Retry-After.
    """
    presented = x_api_key
    if not presented:
        raw = await request.body()
        try:
            payload = json.loads(raw) if raw else {}
        except ValueError:
            payload = {}
        if isinstance(payload, dict):
            presented = payload.get("api_key")

    validation = await api_key_service.validate_api_key(db, presented, endpoint=request.url.path)
    headers = None
    if validation.status_code == status.HTTP_429_TOO_MANY_REQUESTS:
        headers = {"Retry-After": str(settings.RATE_LIMIT_WINDOW_SECONDS)}
    return JSONResponse(
        status_code=validation.status_code,
        content=validation.as_response(),
        headers=headers,
    )


@router.post("/{key_id}/revoke", response_model=ApiKeyResponse)
async def revoke_api_key(
    key_id: int,
    profile: Profile = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
):
    api_key = await api_key_service.get_tenant_key(db, profile.tenant_id, key_id)
    if api_key is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="API key not found")
    if api_key.revoked_at is None:
        api_key.revoked_at = datetime.now(timezone.utc)
        await db.flush()
        logger.info("Revoked API key id=%d prefix=%s", api_key.id, api_key.key_prefix)
    return api_key


@router.delete("/{key_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_api_key(
    key_id: int,
    profile: Profile = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
) -> None:
    api_key = await api_key_service.get_tenant_key(db, profile.tenant_id, key_id)
    if api_key is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="API key not found")
    await db.delete(api_key)
    await db.flush()
    logger.info("Deleted API key id=%d", key_id)
