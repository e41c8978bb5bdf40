"""
Embedding generation service using the OpenAI embeddings API.

Provides:
- OpenAIEmbeddingService: batched, retrying, caching, normalizing embedder
- find_similar_chunks: tenant-scoped cosine similarity search (pgvector on
  PostgreSQL, numpy ranking on other dialects)
"""
from __future__ import annotations

import asyncio
import logging
import math
import time
from collections import OrderedDict
from typing import Any, Dict, List, Optional

import httpx
import numpy as np
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import is_postgres
from app.models.database_models import KnowledgeChunk, KnowledgeSource
from app.utils.helpers import generate_hash

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Module-level query cache: sha256(model + text) → normalized vector, LRU-capped
# ---------------------------------------------------------------------------
EMBEDDING_CACHE_SIZE = 1024
_embedding_cache: "OrderedDict[str, List[float]]" = OrderedDict()


class EmbeddingError(Exception):
    """The embeddings API rejected a request or returned an unusable payload."""


def _normalize(vector: List[float]) -> List[float]:
    """Return a unit-length copy of *vector* (required for pgvector cosine ops)."""
    magnitude = math.sqrt(sum(x * x for x in vector))
    if magnitude == 0.0:
        return vector
    return [x / magnitude for x in vector]


# ---------------------------------------------------------------------------
# Main service class
# ---------------------------------------------------------------------------

class OpenAIEmbeddingService:
    """
    Embedding generation via OpenAI ``/embeddings``:

    * Inputs are sent EMBEDDING_BATCH_SIZE at a time
    * Exponential-backoff retries on transport errors (MAX_RETRIES = 3)
    * An HTTP error response aborts the batch; earlier batches are kept
    * Query embeddings are cached by content hash
    """

    MAX_RETRIES: int = 3

    def __init__(
        self,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key or settings.OPENAI_API_KEY
        self.base_url = settings.OPENAI_BASE_URL.rstrip("/")
        self.model = settings.EMBEDDING_MODEL
        self.batch_size = settings.EMBEDDING_BATCH_SIZE
        self.expected_dim = settings.VECTOR_DIMENSION
        self.timeout = httpx.Timeout(60.0, connect=10.0)
        self._transport = transport

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    # ------------------------------------------------------------------
    # Primary API
    # ------------------------------------------------------------------

    async def embed_query(self, query: str) -> Optional[List[float]]:
        """
        Embed a single search query.

        Returns ``None`` when no key is configured or the API call fails;
        callers fall back to keyword search in that case.
        """
        if not self.available or not query.strip():
            return None

        key = generate_hash(f"{self.model}:{query.strip()}")
        if key in _embedding_cache:
            _embedding_cache.move_to_end(key)
            return _embedding_cache[key]

        try:
            vectors = await self._request([query.strip()])
        except EmbeddingError as exc:
            logger.warning("Query embedding failed: %s", exc)
            return None

        _embedding_cache[key] = vectors[0]
        while len(_embedding_cache) > EMBEDDING_CACHE_SIZE:
            _embedding_cache.popitem(last=False)
        return vectors[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Embed *texts* in order, batch by batch.

        Stops at the first failing batch and returns the vectors collected so
        far, so ``len(result) <= len(texts)`` and ``result[i]`` always belongs
        to ``texts[i]``.
        """
        if not self.available or not texts:
            return []

        results: List[List[float]] = []
        total_batches = math.ceil(len(texts) / self.batch_size)

        for batch_start in range(0, len(texts), self.batch_size):
            batch = texts[batch_start:batch_start + self.batch_size]
            batch_num = batch_start // self.batch_size + 1
            try:
                vectors = await self._request(batch)
            except EmbeddingError as exc:
                logger.error(
                    "embed_batch: batch %d/%d failed, stopping: %s",
                    batch_num,
                    total_batches,
                    exc,
                )
                break
            results.extend(vectors)

        logger.info("embed_batch: %d/%d embeddings generated", len(results), len(texts))
        return results

    async def find_similar_chunks(
        self,
        query_embedding: List[float],
        tenant_id: int,
        db: AsyncSession,
        top_k: int = 10,
    ) -> List[Dict[str, Any]]:
        """
        Return the *top_k* tenant chunks most similar to *query_embedding*.

        PostgreSQL uses pgvector's cosine-distance operator (``<=>``); other
        dialects load the tenant's embedded chunks and rank them with numpy.
        """
        if is_postgres(db):
            return await self._find_similar_pgvector(query_embedding, tenant_id, db, top_k)
        return await self._find_similar_in_memory(query_embedding, tenant_id, db, top_k)

    # ------------------------------------------------------------------
    # Similarity search backends
    # ------------------------------------------------------------------

    async def _find_similar_pgvector(
        self,
        query_embedding: List[float],
        tenant_id: int,
        db: AsyncSession,
        top_k: int,
    ) -> List[Dict[str, Any]]:
        # pgvector expects the literal string "[a,b,c,...]"
        embedding_str = "[" + ",".join(f"{v:.8f}" for v in query_embedding) + "]"
        sql = text(
            """
            SELECT
                c.id            AS chunk_id,
                c.source_id,
                c.content,
                s.title         AS source_title,
                1 - (c.embedding <=> CAST(:embedding AS vector)) AS similarity
            FROM knowledge_chunks c
            LEFT JOIN knowledge_sources s ON s.id = c.source_id
            WHERE c.embedding IS NOT NULL
              AND c.tenant_id = :tenant_id
            ORDER BY c.embedding <=> CAST(:embedding AS vector)
            LIMIT :top_k
            """
        )
        result = await db.execute(
            sql, {"embedding": embedding_str, "tenant_id": tenant_id, "top_k": top_k}
        )
        return [
            {
                "chunk_id": row["chunk_id"],
                "source_id": row["source_id"],
                "source_title": row["source_title"],
                "content": row["content"],
                "similarity": float(row["similarity"]),
            }
            for row in result.mappings().all()
        ]

    async def _find_similar_in_memory(
        self,
        query_embedding: List[float],
        tenant_id: int,
        db: AsyncSession,
        top_k: int,
    ) -> List[Dict[str, Any]]:
        result = await db.execute(
            select(KnowledgeChunk, KnowledgeSource.title)
            .outerjoin(KnowledgeSource, KnowledgeSource.id == KnowledgeChunk.source_id)
            .where(
                KnowledgeChunk.tenant_id == tenant_id,
                KnowledgeChunk.embedding.is_not(None),
            )
        )
        rows = result.all()
        if not rows:
            return []

        query = np.asarray(query_embedding, dtype=float)
        query_norm = np.linalg.norm(query)
        scored = []
        for chunk, source_title in rows:
            vec = np.asarray(chunk.embedding, dtype=float)
            denom = query_norm * np.linalg.norm(vec)
            similarity = float(np.dot(query, vec) / denom) if denom else 0.0
            scored.append(
                {
                    "chunk_id": chunk.id,
                    "source_id": chunk.source_id,
                    "source_title": source_title,
                    "content": chunk.content,
                    "similarity": similarity,
                }
            )
        scored.sort(key=lambda r: r["similarity"], reverse=True)
        return scored[:top_k]

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _request(self, inputs: List[str]) -> List[List[float]]:
        """
        POST to ``/embeddings`` with up to MAX_RETRIES attempts on transport
        errors. Non-200 responses raise EmbeddingError immediately.
        """
        last_exc: Optional[Exception] = None
        for attempt in range(1, self.MAX_RETRIES + 1):
            try:
                t0 = time.perf_counter()
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    resp = await client.post(
                        f"{self.base_url}/embeddings",
                        headers={"Authorization": f"Bearer {self.api_key}"},
                        json={"model": self.model, "input": inputs},
                    )
                elapsed_ms = (time.perf_counter() - t0) * 1000
            except httpx.TransportError as exc:
                last_exc = exc
                logger.warning(
                    "OpenAI embeddings transport error (attempt %d/%d): %s",
                    attempt,
                    self.MAX_RETRIES,
                    exc,
                )
                if attempt < self.MAX_RETRIES:
                    await asyncio.sleep(2 ** (attempt - 1))
                continue

            if resp.status_code != 200:
                raise EmbeddingError(f"HTTP {resp.status_code}: {resp.text[:300]}")

            try:
                data = resp.json().get("data") or []
                vectors = [item.get("embedding") for item in sorted(data, key=lambda d: d.get("index", 0))]
            except (ValueError, AttributeError, TypeError) as exc:
                raise EmbeddingError(f"unreadable response body: {exc}") from exc
            if len(vectors) != len(inputs) or any(not v for v in vectors):
                raise EmbeddingError("response missing embeddings")
            if any(len(v) != self.expected_dim for v in vectors):
                # Wrong dimension is a hard failure; retrying will not help
                raise EmbeddingError(
                    f"dimension mismatch: expected {self.expected_dim}, got {len(vectors[0])}"
                )

            logger.debug("Embedded %d inputs in %.1f ms", len(inputs), elapsed_ms)
            return [_normalize(v) for v in vectors]

        raise EmbeddingError(f"all {self.MAX_RETRIES} attempts failed: {last_exc}")
