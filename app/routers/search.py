"""
Search endpoints for the dashboard.

POST /rag     semantic chunk retrieval with keyword fallback.
POST /global  title search across newsletters and sources.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import get_current_profile
from app.models.database_models import Profile
from app.models.schemas import (
    GlobalSearchRequest,
    GlobalSearchResponse,
    RagSearchRequest,
    RagSearchResponse,
)
from app.services.embedding import OpenAIEmbeddingService
from app.services.global_search import global_search
from app.services.rag_search import RagSearchService
from app.services.workspace import resolve_openai_key

logger = logging.getLogger(__name__)

router = APIRouter()


async def run_rag_search(db: AsyncSession, tenant_id: int, query: str, limit: int) -> dict:
    embedder = OpenAIEmbeddingService(api_key=await resolve_openai_key(db, tenant_id))
    return await RagSearchService(embedder).search(db, tenant_id, query, limit)


@router.post("/rag", response_model=RagSearchResponse)
async def rag_search(
    body: RagSearchRequest,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """
    Find the chunks most relevant to ``query``.

    ``vector_search`` is true when the query could be embedded; otherwise the
    results come from keyword scoring.
    """
    return await run_rag_search(db, profile.tenant_id, body.query, body.limit)


@router.post("/global", response_model=GlobalSearchResponse)
async def search_everything(
    body: GlobalSearchRequest,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await global_search(
            db,
            profile.tenant_id,
            body.query,
            filters=body.filters.model_dump(exclude_none=True),
            limit=body.limit,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
