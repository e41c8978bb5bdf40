"""
Social post repurposing.

POST /generate   posts for all ten platforms from a newsletter.
POST /remix      rewrite one post for a single platform.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import get_current_profile
from app.models.database_models import Profile
from app.models.schemas import (
    SocialPostsRequest,
    SocialPostsResponse,
    SocialRemixRequest,
    SocialRemixResponse,
)
from app.services.llm_client import LLMClient
from app.services.social_posts import RemixError, SocialPostGenerator
from app.services.workspace import resolve_llm_keys

logger = logging.getLogger(__name__)

router = APIRouter()


async def _generator(db: AsyncSession, tenant_id: int) -> SocialPostGenerator:
    anthropic_key, openai_key = await resolve_llm_keys(db, tenant_id)
    return SocialPostGenerator(LLMClient(anthropic_api_key=anthropic_key, openai_api_key=openai_key))


@router.post("/generate", response_model=SocialPostsResponse)
async def generate_social_posts(
    body: SocialPostsRequest,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """Posts for all ten platforms; template posts when no provider answers."""
    generator = await _generator(db, profile.tenant_id)
    return await generator.generate(body.newsletter_content, body.newsletter_title)


@router.post("/remix", response_model=SocialRemixResponse)
async def remix_social_post(
    body: SocialRemixRequest,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """
    Adapt *content* for twitter, threads, linkedin, instagram or facebook.

    - 400 for a platform without a writing guide
    - 422 when no provider key is configured or no provider answers
    """
    generator = await _generator(db, profile.tenant_id)
    try:
        return await generator.remix(body.content, body.target_platform)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except RemixError as exc:
        logger.warning("Remix for tenant %d failed: %s", profile.tenant_id, exc)
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
