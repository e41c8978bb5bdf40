"""
Knowledge-source processing pipeline.

    pending → processing → (extract → chunk → embed → persist) → ready | error

Extraction depends on the source type:
  - manual:   the pasted content itself
  - url:      fetched with httpx; PDFs go through the PDF parser, everything
              else is treated as HTML
  - document: read from local storage and dispatched by mime type / extension

Existing chunks are replaced on every run, so reprocessing is idempotent.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

import httpx
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.database_models import (
    KnowledgeChunk,
    KnowledgeSource,
    SourceStatus,
    SourceType,
)
from app.services import storage
from app.services.chunking import ChunkingService
from app.services.document_parser import ParsedDocument, SourceParser
from app.services.embedding import OpenAIEmbeddingService

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 Newsletter-Wizard/1.0"


class SourceProcessingError(Exception):
    """Extraction failed or the source is missing the data its type needs."""


@dataclass
class ProcessResult:
    title: str
    chunks: int
    tokens: int
    embeddings_generated: int
    headers_found: int

    def as_response(self) -> dict:
        return {
            "success": True,
            "chunks": self.chunks,
            "tokens": self.tokens,
            "embeddings_generated": self.embeddings_generated,
            "headers_found": self.headers_found,
        }


class SourceProcessor:
    """Runs one knowledge source through extraction, chunking and embedding."""

    def __init__(
        self,
        openai_api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.parser = SourceParser()
        self.chunker = ChunkingService()
        self.embedder = OpenAIEmbeddingService(api_key=openai_api_key, transport=transport)
        self._transport = transport

    async def process(self, db: AsyncSession, source: KnowledgeSource) -> ProcessResult:
        """
        Process *source* in place.

        On failure the source is marked ``error`` with the message stored and
        the exception is re-raised as SourceProcessingError. Chunk writes run
        in a savepoint, so a database error leaves the session usable for
        recording the failure.
        """
        source_id = source.id
        source.status = SourceStatus.PROCESSING
        source.error_message = None
        await db.flush()

        try:
            parsed = await self.extract(source)
            async with db.begin_nested():
                result = await self._persist(db, source, parsed)
        except Exception as exc:
            logger.error("Processing source id=%s failed: %s", source_id, exc, exc_info=True)
            source.status = SourceStatus.ERROR
            source.error_message = str(exc)
            await db.flush()
            if isinstance(exc, SourceProcessingError):
                raise
            raise SourceProcessingError(str(exc)) from exc

        logger.info(
            "Source id=%s ready: %d chunks, %d tokens, %d embeddings",
            source.id,
            result.chunks,
            result.tokens,
            result.embeddings_generated,
        )
        return result

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    async def extract(self, source: KnowledgeSource) -> ParsedDocument:
        if source.source_type == SourceType.MANUAL:
            if not source.content:
                raise SourceProcessingError("Manual source has no content")
            parsed = self.parser.parse_text(source.content)
            # Manual notes keep their original text; title is the opening words
            parsed.text = source.content
            parsed.title = source.title or source.content[:50]
            return parsed

        if source.source_type == SourceType.URL:
            if not source.source_uri:
                raise SourceProcessingError("URL source has no URL")
            return await self._fetch_url(source.source_uri)

        if source.source_type == SourceType.DOCUMENT:
            if not source.file_path:
                raise SourceProcessingError("Document source has no stored file")
            try:
                data = await storage.read_file(source.file_path)
            except OSError as exc:
                raise SourceProcessingError(f"Failed to read document: {exc}") from exc
            return self.parser.parse_file(data, source.file_path, source.mime_type)

        raise SourceProcessingError("Invalid source type or missing required data")

    async def _fetch_url(self, url: str) -> ParsedDocument:
        try:
            async with httpx.AsyncClient(
                timeout=settings.URL_FETCH_TIMEOUT,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                resp = await client.get(url, headers={"User-Agent": USER_AGENT})
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise SourceProcessingError(f"Failed to fetch URL: {exc}") from exc

        content_type = resp.headers.get("content-type", "")
        if "application/pdf" in content_type:
            parsed = self.parser.parse_pdf(resp.content)
            parsed.title = parsed.headers[0] if parsed.headers else url
            return parsed
        return self.parser.parse_html(resp.text, fallback_title=url)

    # ------------------------------------------------------------------
    # Chunk + embed + persist
    # ------------------------------------------------------------------

    async def _persist(
        self,
        db: AsyncSession,
        source: KnowledgeSource,
        parsed: ParsedDocument,
    ) -> ProcessResult:
        chunks = self.chunker.chunk_text(parsed.text, parsed.headers)

        await db.execute(delete(KnowledgeChunk).where(KnowledgeChunk.source_id == source.id))

        embeddings: List[List[float]] = []
        if chunks and self.embedder.available:
            embeddings = await self.embedder.embed_batch([c.embedding_input for c in chunks])

        total_tokens = 0
        for idx, chunk in enumerate(chunks):
            vector = embeddings[idx] if idx < len(embeddings) else None
            total_tokens += chunk.token_count
            db.add(
                KnowledgeChunk(
                    source_id=source.id,
                    tenant_id=source.tenant_id,
                    chunk_index=chunk.chunk_index,
                    content=chunk.stored_content,
                    token_count=chunk.token_count,
                    embedding=vector,
                    embedding_model=self.embedder.model if vector is not None else None,
                    metadata_json={"header_context": chunk.header_context},
                )
            )

        source.title = parsed.title or source.title or "Untitled"
        source.status = SourceStatus.READY
        source.chunk_count = len(chunks)
        source.token_count = total_tokens
        source.processed_at = datetime.now(timezone.utc)
        await db.flush()

        return ProcessResult(
            title=source.title,
            chunks=len(chunks),
            tokens=total_tokens,
            embeddings_generated=len(embeddings),
            headers_found=len(parsed.headers),
        )
