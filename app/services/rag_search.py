"""
Retrieval over a tenant's knowledge chunks.

Vector search runs first when a query embedding can be produced. If it yields
nothing (no key, API failure, no embedded chunks) a keyword scorer ranks the
tenant's chunks by average term frequency instead.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.database_models import KnowledgeChunk, KnowledgeSource
from app.services.embedding import OpenAIEmbeddingService

logger = logging.getLogger(__name__)

UNKNOWN_SOURCE = "Unknown"


def query_terms(query: str) -> List[str]:
    """Lower-cased whitespace tokens longer than two characters."""
    return [w for w in query.lower().split() if len(w) > 2]


def keyword_score(content: str, terms: List[str]) -> float:
    """Total occurrences of *terms* in *content*, divided by the number of terms."""
    if not terms:
        return 0.0
    lowered = content.lower()
    return sum(lowered.count(term) for term in terms) / len(terms)


class RagSearchService:
    """Tenant-scoped semantic search with a keyword fallback."""

    def __init__(self, embedder: Optional[OpenAIEmbeddingService] = None) -> None:
        self.embedder = embedder or OpenAIEmbeddingService()

    async def search(
        self,
        db: AsyncSession,
        tenant_id: int,
        query: str,
        limit: int = 10,
    ) -> Dict[str, Any]:
        """
        Returns:
            ``{"results": [...], "vector_search": bool}`` where each result has
            chunk_id, source_id, source_title, content and similarity.
        """
        query_embedding = await self.embedder.embed_query(query)

        results: List[Dict[str, Any]] = []
        if query_embedding is not None:
            try:
                matches = await self.embedder.find_similar_chunks(
                    query_embedding, tenant_id, db, top_k=limit
                )
            except Exception as exc:
                logger.error("Vector search failed, using keyword fallback: %s", exc)
                matches = []
            results = [
                {
                    "chunk_id": m["chunk_id"],
                    "source_id": m["source_id"],
                    "source_title": m.get("source_title") or UNKNOWN_SOURCE,
                    "content": m["content"],
                    "similarity": m["similarity"],
                }
                for m in matches
            ]

        if not results:
            results = await self.keyword_search(db, tenant_id, query, limit)

        logger.info(
            "RAG search tenant=%s query=%r → %d results (vector=%s)",
            tenant_id,
            query[:80],
            len(results),
            query_embedding is not None,
        )
        return {"results": results, "vector_search": query_embedding is not None}

    async def keyword_search(
        self,
        db: AsyncSession,
        tenant_id: int,
        query: str,
        limit: int = 10,
    ) -> List[Dict[str, Any]]:
        terms = query_terms(query)
        rows = (
            await db.execute(
                select(KnowledgeChunk.id, KnowledgeChunk.source_id, KnowledgeChunk.content, KnowledgeSource.title)
                .outerjoin(KnowledgeSource, KnowledgeSource.id == KnowledgeChunk.source_id)
                .where(KnowledgeChunk.tenant_id == tenant_id)
                .order_by(KnowledgeChunk.id)
            )
        ).all()

        scored = [
            (keyword_score(content, terms), chunk_id, source_id, content, title)
            for chunk_id, source_id, content, title in rows
        ]
        scored.sort(key=lambda item: item[0], reverse=True)

        return [
            {
                "chunk_id": chunk_id,
                "source_id": source_id,
                "source_title": title or UNKNOWN_SOURCE,
                "content": content,
                "similarity": min(score / 5, 1.0),
            }
            for score, chunk_id, source_id, content, title in scored[:limit]
            if score > 0
        ]
