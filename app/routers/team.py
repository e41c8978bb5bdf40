"""
Team management and invitation acceptance.

Team (prefix /api/team):
    POST   /invitations             invite by e-mail.
    GET    /invitations             pending, unexpired invitations.
    DELETE /invitations/{id}        revoke an invitation.
    GET    /members                 workspace members.
    PUT    /members/{id}/role       change a member's role.

Invitations (prefix /api/invitations):
    POST /validate                  look up an invitation token.
    POST /accept                    join the inviting workspace.
"""
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import UserIdentity, get_current_identity, get_current_profile, require_manager
from app.models.database_models import Profile
from app.models.schemas import (
    AcceptInvitationResponse,
    InvitationDetails,
    InvitationResponse,
    InvitationTokenRequest,
    InviteRequest,
    InviteResponse,
    ProfileResponse,
    RoleChangeRequest,
)
from app.services import team as team_service
from app.services.team import TeamError

logger = logging.getLogger(__name__)

router = APIRouter()
invitations_router = APIRouter()


def _http_error(exc: TeamError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)


# ---------------------------------------------------------------------------
# Team
# ---------------------------------------------------------------------------

@router.post("/invitations", response_model=InviteResponse)
async def invite_member(
    body: InviteRequest,
    profile: Profile = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await team_service.invite_member(db, profile, body.email, body.role)
    except TeamError as exc:
        raise _http_error(exc)


@router.get("/invitations", response_model=List[InvitationResponse])
async def list_invitations(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await team_service.list_invitations(db, profile.tenant_id)


@router.delete("/invitations/{invitation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_invitation(
    invitation_id: int,
    profile: Profile = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
) -> None:
    try:
        await team_service.revoke_invitation(db, profile.tenant_id, invitation_id)
    except TeamError as exc:
        raise _http_error(exc)


@router.get("/members", response_model=List[ProfileResponse])
async def list_members(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await team_service.list_members(db, profile.tenant_id)


@router.put("/members/{member_id}/role", response_model=ProfileResponse)
async def change_member_role(
    member_id: str,
    body: RoleChangeRequest,
    profile: Profile = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
):
    try:
        member = await team_service.change_role(db, profile, member_id, body.role)
    except TeamError as exc:
        raise _http_error(exc)
    await db.flush()
    return member


# ---------------------------------------------------------------------------
# Invitation acceptance
# ---------------------------------------------------------------------------

@invitations_router.post("/validate", response_model=InvitationDetails)
async def validate_invitation(
    body: InvitationTokenRequest,
    db: AsyncSession = Depends(get_db),
):
    try:
        return await team_service.validate_invitation(db, body.token)
    except TeamError as exc:
        raise _http_error(exc)


@invitations_router.post("/accept", response_model=AcceptInvitationResponse)
async def accept_invitation(
    body: InvitationTokenRequest,
    identity: UserIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    try:
        profile, created = await team_service.accept_invitation(
            db, body.token, identity.id, identity.email, identity.name
        )
    except TeamError as exc:
        raise _http_error(exc)
    return AcceptInvitationResponse(
        tenant_id=profile.tenant_id,
        role=profile.role,
        already_member=not created,
    )
