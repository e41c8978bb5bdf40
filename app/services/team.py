"""
Team membership: invitations, roles and invitation acceptance.

Service functions raise ``TeamError`` carrying the HTTP status the router
should answer with.
"""
from __future__ import annotations

import html
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import settings
from app.models.database_models import (
    InvitationStatus,
    Profile,
    TeamInvitation,
    TeamRole,
)
from app.utils.helpers import as_utc

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"
INVITABLE_ROLES = (TeamRole.ADMIN, TeamRole.EDITOR, TeamRole.VIEWER)


class TeamError(Exception):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def parse_role(role: str, allowed=INVITABLE_ROLES) -> TeamRole:
    try:
        parsed = TeamRole(role)
    except ValueError:
        parsed = None
    if parsed not in allowed:
        raise TeamError(400, f"Invalid role. Must be one of: {', '.join(r.value for r in allowed)}")
    return parsed


def generate_invitation_token() -> str:
    """64 hex characters."""
    return secrets.token_hex(32)


def is_expired(invitation: TeamInvitation) -> bool:
    return as_utc(invitation.expires_at) < _now()


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------

async def invite_member(
    db: AsyncSession,
    inviter: Profile,
    email: str,
    role: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    normalized = normalize_email(email)
    if not normalized or "@" not in normalized:
        raise TeamError(400, "A valid email is required")
    invited_role = parse_role(role)

    existing_invite = (
        await db.execute(
            select(TeamInvitation).where(
                TeamInvitation.tenant_id == inviter.tenant_id,
                TeamInvitation.email == normalized,
                TeamInvitation.status == InvitationStatus.PENDING,
                TeamInvitation.expires_at > _now(),
            )
        )
    ).scalars().first()
    if existing_invite is not None:
        return {"success": True, "already_invited": True, "invitation_id": existing_invite.id}

    member = (
        await db.execute(
            select(Profile).where(
                Profile.tenant_id == inviter.tenant_id,
                func.lower(Profile.email) == normalized,
            )
        )
    ).scalar_one_or_none()
    if member is not None:
        raise TeamError(409, "User is already a member of this workspace")

    token = generate_invitation_token()
    invitation = TeamInvitation(
        tenant_id=inviter.tenant_id,
        email=normalized,
        role=invited_role,
        token=token,
        invited_by=inviter.id,
        status=InvitationStatus.PENDING,
        expires_at=_now() + timedelta(days=settings.INVITATION_TTL_DAYS),
    )
    db.add(invitation)
    await db.flush()
    logger.info("Invited %s as %s to tenant %s", normalized, invited_role.value, inviter.tenant_id)

    if settings.RESEND_API_KEY:
        await send_invitation_email(
            normalized, token, invited_role.value, inviter.full_name or inviter.email, transport
        )

    return {"success": True, "already_invited": False, "invitation_id": invitation.id}


async def send_invitation_email(
    email: str,
    token: str,
    role: str,
    inviter_name: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> bool:
    """Send through Resend. Failures are logged, never raised."""
    invite_url = f"{settings.APP_URL.rstrip('/')}/accept-invite?token={token}"
    name = html.escape(inviter_name)
    body = (
        "<h2>You've been invited to Newsletter Wizard</h2>"
        f"<p><strong>{name}</strong> has invited you to join their workspace as "
        f"<strong>{html.escape(role)}</strong>.</p>"
        f'<p><a href="{invite_url}" style="display:inline-block;padding:12px 24px;'
        "background:#6366f1;color:white;text-decoration:none;border-radius:8px;"
        'font-weight:600;">Accept Invitation</a></p>'
        f'<p style="color:#666;font-size:14px;">This invitation expires in '
        f"{settings.INVITATION_TTL_DAYS} days. If you didn't expect this, you can ignore this email.</p>"
    )
    try:
        async with httpx.AsyncClient(timeout=10.0, transport=transport) as client:
            resp = await client.post(
                RESEND_URL,
                headers={"Authorization": f"Bearer {settings.RESEND_API_KEY}"},
                json={
                    "from": settings.EMAIL_FROM,
                    "to": [email],
                    "subject": f"{inviter_name} invited you to join Newsletter Wizard",
                    "html": body,
                },
            )
        if not resp.is_success:
            logger.error("Invitation email to %s failed: HTTP %d", email, resp.status_code)
            return False
        return True
    except httpx.HTTPError as exc:
        logger.error("Invitation email to %s failed: %s", email, exc)
        return False


async def list_invitations(db: AsyncSession, tenant_id: int) -> List[TeamInvitation]:
    stmt = (
        select(TeamInvitation)
        .where(
            TeamInvitation.tenant_id == tenant_id,
            TeamInvitation.status == InvitationStatus.PENDING,
            TeamInvitation.expires_at > _now(),
        )
        .order_by(TeamInvitation.created_at.desc())
    )
    return list((await db.execute(stmt)).scalars().all())


async def revoke_invitation(db: AsyncSession, tenant_id: int, invitation_id: int) -> None:
    invitation = await db.get(TeamInvitation, invitation_id)
    if invitation is None or invitation.tenant_id != tenant_id:
        raise TeamError(404, "Invitation not found")
    invitation.status = InvitationStatus.REVOKED
    logger.info("Revoked invitation %s in tenant %s", invitation_id, tenant_id)


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------

async def list_members(db: AsyncSession, tenant_id: int) -> List[Profile]:
    stmt = select(Profile).where(Profile.tenant_id == tenant_id).order_by(Profile.created_at)
    return list((await db.execute(stmt)).scalars().all())


async def change_role(db: AsyncSession, caller: Profile, member_id: str, role: str) -> Profile:
    """The owner's role is fixed and ``owner`` is never assignable."""
    new_role = parse_role(role)
    if member_id == caller.id:
        raise TeamError(400, "You cannot change your own role")

    member = await db.get(Profile, member_id)
    if member is None or member.tenant_id != caller.tenant_id:
        raise TeamError(404, "Member not found")
    if member.role == TeamRole.OWNER:
        raise TeamError(403, "The workspace owner's role cannot be changed")

    member.role = new_role
    logger.info("Member %s role changed to %s by %s", member_id, new_role.value, caller.id)
    return member


# ---------------------------------------------------------------------------
# Acceptance
# ---------------------------------------------------------------------------

async def _load_invitation(db: AsyncSession, token: str) -> TeamInvitation:
    if not token:
        raise TeamError(400, "token is required")
    invitation = (
        await db.execute(
            select(TeamInvitation)
            .where(TeamInvitation.token == token)
            .options(selectinload(TeamInvitation.tenant))
        )
    ).scalar_one_or_none()
    if invitation is None:
        raise TeamError(404, "Invitation not found")
    if invitation.status != InvitationStatus.PENDING:
        raise TeamError(410, f"Invitation has already been {invitation.status.value}")
    if is_expired(invitation):
        raise TeamError(410, "Invitation has expired")
    return invitation


async def validate_invitation(db: AsyncSession, token: str) -> Dict[str, Any]:
    invitation = await _load_invitation(db, token)
    return {
        "valid": True,
        "email": invitation.email,
        "role": invitation.role.value,
        "tenant_name": invitation.tenant.name if invitation.tenant else None,
    }


async def accept_invitation(
    db: AsyncSession,
    token: str,
    user_id: str,
    user_email: Optional[str],
    full_name: Optional[str] = None,
) -> Tuple[Profile, bool]:
    """
    Join the invited tenant.

    Returns the caller's profile and whether it was created now.
    """
    invitation = await _load_invitation(db, token)
    if normalize_email(user_email or "") != invitation.email:
        raise TeamError(403, "This invitation was sent to a different email address")

    profile = await db.get(Profile, user_id)
    created = False
    if profile is not None:
        if profile.tenant_id != invitation.tenant_id:
            raise TeamError(409, "You already belong to another workspace")
    else:
        profile = Profile(
            id=user_id,
            tenant_id=invitation.tenant_id,
            email=invitation.email,
            full_name=full_name,
            role=invitation.role,
        )
        db.add(profile)
        created = True

    invitation.status = InvitationStatus.ACCEPTED
    invitation.accepted_at = _now()
    await db.flush()
    logger.info("User %s accepted invitation into tenant %s", user_id, invitation.tenant_id)
    return profile, created
