"""
Knowledge source endpoints.

POST   /upload          store a document (multipart) and optionally process it.
POST   /                create a URL or manual source and optionally process it.
POST   /{id}/process    extract, chunk and embed a source.
GET    /                list the tenant's sources.
GET    /{id}            source details.
GET    /{id}/chunks     stored chunks of a source.
DELETE /{id}            delete a source, its chunks and its stored file.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Union

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, Query, UploadFile, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db, get_session_factory
from app.dependencies.auth import get_current_profile, require_writer
from app.models.database_models import (
    KnowledgeChunk,
    KnowledgeSource,
    Profile,
    SourceStatus,
    SourceType,
    Tenant,
)
from app.models.schemas import (
    ChunkResponse,
    ProcessSourceResponse,
    SourceCreateRequest,
    SourceCreatedResponse,
    SourceResponse,
)
from app.services import storage
from app.services.source_processor import SourceProcessingError, SourceProcessor
from app.services.webhooks import dispatch_event
from app.services.workspace import QuotaExceededError, ensure_source_quota, resolve_openai_key

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _get_tenant_source(db: AsyncSession, tenant_id: int, source_id: int) -> KnowledgeSource:
    source = await db.get(KnowledgeSource, source_id)
    if source is None or source.tenant_id != tenant_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Source {source_id} not found.",
        )
    return source


async def _check_quota(db: AsyncSession, tenant_id: int) -> None:
    tenant = await db.get(Tenant, tenant_id)
    try:
        await ensure_source_quota(db, tenant)
    except QuotaExceededError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))


async def _process(
    db: AsyncSession,
    source: KnowledgeSource,
    background_tasks: BackgroundTasks,
    session_factory,
) -> Union[dict, JSONResponse]:
    """
    Run the processing pipeline. A failure is returned as a 500 response
    rather than raised so the ``error`` status written by the processor is
    committed with the request. ``source.processed`` is delivered after the
    response has been sent.
    """
    processor = SourceProcessor(openai_api_key=await resolve_openai_key(db, source.tenant_id))
    try:
        result = await processor.process(db, source)
    except SourceProcessingError as exc:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": {"code": "PROCESS_SOURCE_FAILED", "message": str(exc)}},
        )

    background_tasks.add_task(
        dispatch_event,
        session_factory,
        source.tenant_id,
        "source.processed",
        {
            "source_id": source.id,
            "title": source.title,
            "chunks": result.chunks,
            "tokens": result.tokens,
        },
    )
    return result.as_response()


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

@router.post(
    "/upload",
    response_model=SourceCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_source(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    process: bool = Query(True, description="Process immediately after upload"),
    profile: Profile = Depends(require_writer),
    db: AsyncSession = Depends(get_db),
    session_factory=Depends(get_session_factory),
):
    """
    Upload a document (.pdf, .docx, .txt, .md, .html).

    - Max file size: 50 MB (configurable via MAX_FILE_SIZE)
    - Stored under UPLOAD_DIR/<tenant_id>/<epoch ms>-<safe name>
    """
    if not file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Upload must include a filename.",
        )

    file_ext = Path(file.filename).suffix.lower()
    if file_ext not in settings.SUPPORTED_FILE_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=(
                f"Unsupported file type '{file_ext}'. "
                f"Accepted: {', '.join(settings.SUPPORTED_FILE_TYPES)}"
            ),
        )

    await _check_quota(db, profile.tenant_id)

    try:
        storage_path, size = await storage.save_upload(file, profile.tenant_id)
    except storage.FileTooLargeError as exc:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=str(exc),
        )

    source = KnowledgeSource(
        tenant_id=profile.tenant_id,
        source_type=SourceType.DOCUMENT,
        title=file.filename,
        file_path=storage_path,
        mime_type=file.content_type,
        file_size_bytes=size,
        status=SourceStatus.PENDING,
    )
    db.add(source)
    await db.flush()
    logger.info("Created document source id=%d (%s)", source.id, storage_path)

    processing = None
    if process:
        processing = await _process(db, source, background_tasks, session_factory)
        if isinstance(processing, JSONResponse):
            return processing

    await db.refresh(source)
    return SourceCreatedResponse(
        source=SourceResponse.model_validate(source),
        processing=processing,
    )


@router.post(
    "",
    response_model=SourceCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_source(
    body: SourceCreateRequest,
    background_tasks: BackgroundTasks,
    process: bool = Query(True, description="Process immediately after creation"),
    profile: Profile = Depends(require_writer),
    db: AsyncSession = Depends(get_db),
    session_factory=Depends(get_session_factory),
):
    if body.source_type == SourceType.URL and not (body.url or "").strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="url is required for url sources")
    if body.source_type == SourceType.MANUAL and not (body.content or "").strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="content is required for manual sources"
        )
    if body.source_type == SourceType.DOCUMENT:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Use /api/sources/upload for documents"
        )

    await _check_quota(db, profile.tenant_id)

    source = KnowledgeSource(
        tenant_id=profile.tenant_id,
        source_type=body.source_type,
        title=body.title,
        source_uri=body.url.strip() if body.url else None,
        content=body.content,
        status=SourceStatus.PENDING,
    )
    db.add(source)
    await db.flush()
    logger.info("Created %s source id=%d", body.source_type.value, source.id)

    processing = None
    if process:
        processing = await _process(db, source, background_tasks, session_factory)
        if isinstance(processing, JSONResponse):
            return processing

    await db.refresh(source)
    return SourceCreatedResponse(
        source=SourceResponse.model_validate(source),
        processing=processing,
    )


# ---------------------------------------------------------------------------
# Process
# ---------------------------------------------------------------------------

@router.post("/{source_id}/process", response_model=ProcessSourceResponse)
async def process_source(
    source_id: int,
    background_tasks: BackgroundTasks,
    profile: Profile = Depends(require_writer),
    db: AsyncSession = Depends(get_db),
    session_factory=Depends(get_session_factory),
):
    source = await _get_tenant_source(db, profile.tenant_id, source_id)
    return await _process(db, source, background_tasks, session_factory)


# ---------------------------------------------------------------------------
# Read / delete
# ---------------------------------------------------------------------------

@router.get("", response_model=List[SourceResponse])
async def list_sources(
    status_filter: Optional[SourceStatus] = Query(None, alias="status"),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(KnowledgeSource).where(KnowledgeSource.tenant_id == profile.tenant_id)
    if status_filter is not None:
        stmt = stmt.where(KnowledgeSource.status == status_filter)
    stmt = stmt.order_by(KnowledgeSource.created_at.desc(), KnowledgeSource.id.desc())
    return (await db.execute(stmt)).scalars().all()


@router.get("/{source_id}", response_model=SourceResponse)
async def get_source(
    source_id: int,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await _get_tenant_source(db, profile.tenant_id, source_id)


@router.get("/{source_id}/chunks", response_model=List[ChunkResponse])
async def get_source_chunks(
    source_id: int,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    await _get_tenant_source(db, profile.tenant_id, source_id)
    result = await db.execute(
        select(KnowledgeChunk)
        .where(KnowledgeChunk.source_id == source_id)
        .order_by(KnowledgeChunk.chunk_index)
    )
    return result.scalars().all()


@router.delete("/{source_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_source(
    source_id: int,
    profile: Profile = Depends(require_writer),
    db: AsyncSession = Depends(get_db),
) -> None:
    source = await _get_tenant_source(db, profile.tenant_id, source_id)
    file_path = source.file_path
    await db.delete(source)
    await db.flush()
    storage.safe_remove(file_path)
    logger.info("Deleted source id=%d for tenant %d", source_id, profile.tenant_id)
