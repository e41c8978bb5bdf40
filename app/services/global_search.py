"""
Workspace-wide title search across newsletters and knowledge sources.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.database_models import KnowledgeSource, Newsletter
from app.utils.helpers import as_utc, strip_html

logger = logging.getLogger(__name__)

SEARCHABLE_TYPES = ("newsletter", "source")


def snippet(text: str, query: str, max_length: int = 150) -> str:
    """Window of text around the first match, marked with … where cut."""
    text = text or ""
    idx = text.lower().find(query.lower())
    if idx == -1:
        return text[:max_length]
    start = max(0, idx - 60)
    end = min(len(text), idx + len(query) + 90)
    return ("…" if start > 0 else "") + text[start:end] + ("…" if end < len(text) else "")


def relevance(searchable: str, query: str) -> float:
    return 1.0 if searchable.startswith(query) else 0.7


def suggestions_for(query: str) -> List[str]:
    return [f"All {word}s" for word in query.split() if len(word) > 3][:3]


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


async def global_search(
    db: AsyncSession,
    tenant_id: int,
    query: str,
    filters: Optional[Dict[str, Any]] = None,
    limit: int = 20,
) -> Dict[str, Any]:
    """
    Match the query against newsletter titles/subjects and source titles/URIs.

    Raises:
        ValueError: empty query or unparseable date filter
    """
    q = (query or "").strip().lower()
    if not q:
        raise ValueError("query is required")

    filters = filters or {}
    types = filters.get("types") or list(SEARCHABLE_TYPES)
    date_range = filters.get("date_range") or {}
    start = _parse_date(date_range.get("start"))
    end = _parse_date(date_range.get("end"))

    results: List[Dict[str, Any]] = []

    if "newsletter" in types:
        stmt = select(Newsletter).where(Newsletter.tenant_id == tenant_id)
        if filters.get("status"):
            stmt = stmt.where(Newsletter.status == filters["status"])
        if start:
            stmt = stmt.where(Newsletter.created_at >= start)
        if end:
            stmt = stmt.where(Newsletter.created_at <= end)
        newsletters = (await db.execute(stmt.limit(limit))).scalars().all()

        for nl in newsletters:
            searchable = f"{nl.title or ''} {nl.subject_line or ''}".lower()
            if q not in searchable:
                continue
            results.append({
                "type": "newsletter",
                "id": nl.id,
                "title": nl.title,
                "snippet": snippet(nl.subject_line or strip_html(nl.content_html or ""), q),
                "relevance": relevance(searchable, q),
                "date": as_utc(nl.updated_at or nl.created_at),
                "status": nl.status.value,
            })

    if "source" in types:
        stmt = select(KnowledgeSource).where(KnowledgeSource.tenant_id == tenant_id).limit(limit)
        sources = (await db.execute(stmt)).scalars().all()

        for src in sources:
            searchable = f"{src.title or ''} {src.source_uri or ''}".lower()
            if q not in searchable:
                continue
            results.append({
                "type": "source",
                "id": src.id,
                "title": src.title,
                "snippet": snippet(src.source_uri or src.title or "", q),
                "relevance": relevance(searchable, q),
                "date": as_utc(src.created_at),
                "status": src.status.value,
            })

    # Relevance first, newest first within equal relevance
    results.sort(key=lambda r: (-r["relevance"], -r["date"].timestamp()))

    logger.debug("Global search %r matched %d items for tenant %s", q, len(results), tenant_id)
    return {
        "results": results[:limit],
        "total": len(results),
        "suggestions": suggestions_for(q),
    }
