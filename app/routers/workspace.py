"""
Workspace and account endpoints.

POST /workspace             create the caller's workspace (idempotent).
GET  /workspace/me          caller's profile and tenant.
POST /account/delete        delete the tenant and all of its data.
POST /account/reactivate    mark the caller's profile active again.
GET  /account/export        JSON export of everything the tenant owns.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import UserIdentity, get_current_identity, get_current_profile
from app.models.database_models import Profile, Tenant
from app.models.schemas import (
    AccountDeleteRequest,
    ProfileResponse,
    TenantResponse,
    WorkspaceCreateResponse,
    WorkspaceResponse,
)
from app.services import audit as audit_service
from app.services import workspace as workspace_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/workspace", response_model=WorkspaceCreateResponse)
async def create_workspace(
    identity: UserIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> WorkspaceCreateResponse:
    profile, created = await workspace_service.create_workspace(
        db, identity.id, identity.email, identity.name
    )
    return WorkspaceCreateResponse(already_exists=not created, tenant_id=profile.tenant_id)


@router.get("/workspace/me", response_model=WorkspaceResponse)
async def get_workspace(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
) -> WorkspaceResponse:
    tenant = await db.get(Tenant, profile.tenant_id)
    return WorkspaceResponse(
        profile=ProfileResponse.model_validate(profile),
        tenant=TenantResponse.model_validate(tenant),
    )


@router.post("/account/delete")
async def delete_account(
    body: AccountDeleteRequest,
    request: Request,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
) -> dict:
    """Requires ``{"confirmation": "DELETE"}``. An audit entry is written first."""
    if body.confirmation != workspace_service.DELETE_CONFIRMATION:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Confirmation required. Send {"confirmation": "DELETE"}.',
        )

    await audit_service.log_action(
        db,
        tenant_id=profile.tenant_id,
        user_id=profile.id,
        action="account.delete",
        resource_type="account",
        resource_id=profile.id,
        details={"reason": body.reason, "comment": body.comment},
        ip_address=audit_service.client_ip(request.headers),
        user_agent=request.headers.get("user-agent"),
    )
    await workspace_service.delete_account(db, profile)
    return {"success": True, "message": "Account deleted"}


@router.post("/account/reactivate", response_model=ProfileResponse)
async def reactivate_account(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
) -> Profile:
    return await workspace_service.reactivate_account(db, profile)


@router.get("/account/export")
async def export_account(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
) -> dict:
    data = await workspace_service.export_user_data(db, profile)
    return jsonable_encoder(data)
