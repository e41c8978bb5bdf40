"""
Authentication dependencies for FastAPI routes.

Dashboard users are identified by the X-User-Id header set by the frontend
gateway; their Profile supplies the tenant and role. External clients send
X-API-Key. Internal callers present the service bearer token.
"""
from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.models.database_models import Profile, TeamRole
from app.services.api_keys import validate_api_key

logger = logging.getLogger(__name__)

MANAGER_ROLES = (TeamRole.OWNER, TeamRole.ADMIN)
WRITER_ROLES = (TeamRole.OWNER, TeamRole.ADMIN, TeamRole.EDITOR)


@dataclass
class UserIdentity:
    id: str
    email: Optional[str]
    name: Optional[str]


async def get_current_user_id(
    x_user_id: str = Header(..., alias="X-User-Id"),
) -> str:
    """Extract the authenticated user ID from the request header. Raises 401 if empty."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header.",
        )
    return x_user_id


async def get_current_identity(
    user_id: str = Depends(get_current_user_id),
    x_user_email: Optional[str] = Header(None, alias="X-User-Email"),
    x_user_name: Optional[str] = Header(None, alias="X-User-Name"),
) -> UserIdentity:
    return UserIdentity(id=user_id, email=x_user_email, name=x_user_name)


async def get_current_profile(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> Profile:
    """The caller's workspace membership. 404 until a workspace exists."""
    profile = await db.get(Profile, user_id)
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Profile not found",
        )
    return profile


def require_roles(*roles: TeamRole) -> Callable:
    """Dependency factory allowing only members holding one of *roles*."""

    async def _check(profile: Profile = Depends(get_current_profile)) -> Profile:
        if profile.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role: {' or '.join(r.value for r in roles)}",
            )
        return profile

    return _check


require_manager = require_roles(*MANAGER_ROLES)
require_writer = require_roles(*WRITER_ROLES)


async def require_internal_key(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> None:
    """Service-to-service bearer check for internal endpoints."""
    expected = settings.INTERNAL_API_KEY
    token = (authorization or "").removeprefix("Bearer ").strip()
    if not expected or not token or not hmac.compare_digest(token, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


# ---------------------------------------------------------------------------
# External API keys
# ---------------------------------------------------------------------------

@dataclass
class ApiKeyContext:
    api_key_id: int
    tenant_id: int
    permissions: List[str]


async def get_api_key_context(
    request: Request,
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
    db: AsyncSession = Depends(get_db),
) -> ApiKeyContext:
    validation = await validate_api_key(db, x_api_key, endpoint=request.url.path)
    if not validation.valid:
        headers = None
        if validation.status_code == status.HTTP_429_TOO_MANY_REQUESTS:
            headers = {"Retry-After": str(settings.RATE_LIMIT_WINDOW_SECONDS)}
        raise HTTPException(
            status_code=validation.status_code,
            detail=validation.error,
            headers=headers,
        )
    return ApiKeyContext(
        api_key_id=validation.api_key.id,
        tenant_id=validation.api_key.tenant_id,
        permissions=validation.permissions,
    )


def require_permission(permission: str) -> Callable:
    async def _check(ctx: ApiKeyContext = Depends(get_api_key_context)) -> ApiKeyContext:
        if permission not in ctx.permissions:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied. Requires {permission} permission.",
            )
        return ctx

    return _check
