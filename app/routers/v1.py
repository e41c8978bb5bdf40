"""
External API authenticated with X-API-Key.

POST /search                RAG search (sources:read).
POST /newsletters/generate  draft generation (newsletters:write).
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import ApiKeyContext, require_permission
from app.models.schemas import (
    GenerateContentRequest,
    GenerateContentResponse,
    RagSearchRequest,
    RagSearchResponse,
)
from app.routers.search import run_rag_search
from app.services import newsletters as newsletter_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/search", response_model=RagSearchResponse)
async def api_search(
    body: RagSearchRequest,
    ctx: ApiKeyContext = Depends(require_permission("sources:read")),
    db: AsyncSession = Depends(get_db),
):
    return await run_rag_search(db, ctx.tenant_id, body.query, body.limit)


@router.post("/newsletters/generate", response_model=GenerateContentResponse)
async def api_generate(
    body: GenerateContentRequest,
    ctx: ApiKeyContext = Depends(require_permission("newsletters:write")),
    db: AsyncSession = Depends(get_db),
):
    context = [c.model_dump() for c in body.context] if body.context else None
    return await newsletter_service.generate_for_tenant(
        db,
        ctx.tenant_id,
        body.topic,
        context=context,
        voice_profile_id=body.voice_profile_id,
        use_knowledge_base=body.use_knowledge_base,
        save=body.save,
        created_by=f"api_key:{ctx.api_key_id}",
    )
