"""Tests for embedding, vector retrieval and the keyword fallback."""
import json

import httpx
import pytest
from httpx import AsyncClient

from app.models.database_models import KnowledgeChunk, KnowledgeSource, SourceStatus, SourceType
from app.services import embedding as embedding_module
from app.services.embedding import OpenAIEmbeddingService
from app.services.rag_search import RagSearchService, keyword_score, query_terms
from tests.conftest import AUTH_HEADERS, AUTH_HEADERS_USER2, create_workspace, unit_vector


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _embedding_transport(calls: list, status_code: int = 200, dim: int = 1536):
    """Embeds any input mentioning 'rates' on axis 0 and everything else on axis 1."""

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        calls.append(body["input"])
        if status_code != 200:
            return httpx.Response(status_code, text="upstream failure")
        data = [
            {"index": i, "embedding": unit_vector(0 if "rates" in text else 1, dim)}
            for i, text in enumerate(body["input"])
        ]
        return httpx.Response(200, json={"data": data})

    return httpx.MockTransport(handler)


async def _seed_chunks(db_session, tenant_id: int) -> KnowledgeSource:
    source = KnowledgeSource(
        tenant_id=tenant_id,
        source_type=SourceType.MANUAL,
        title="Macro Notes",
        content="seed",
        status=SourceStatus.READY,
    )
    db_session.add(source)
    await db_session.flush()
    db_session.add_all(
        [
            KnowledgeChunk(
                source_id=source.id,
                tenant_id=tenant_id,
                chunk_index=0,
                content="Interest rates held steady",
                embedding=unit_vector(0),
            ),
            KnowledgeChunk(
                source_id=source.id,
                tenant_id=tenant_id,
                chunk_index=1,
                content="The new dashboard shipped",
                embedding=unit_vector(1),
            ),
        ]
    )
    await db_session.flush()
    return source


# ---------------------------------------------------------------------------
# Keyword scoring
# ---------------------------------------------------------------------------

def test_query_terms_drop_short_words():
    assert query_terms("AI is on the Rise") == ["the", "rise"]


def test_keyword_score_averages_term_counts():
    assert keyword_score("rates rates growth", ["rates", "growth"]) == 1.5
    assert keyword_score("anything", []) == 0.0


# ---------------------------------------------------------------------------
# Embedding service
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_embed_query_without_key_returns_none():
    assert await OpenAIEmbeddingService(api_key=None).embed_query("rates") is None


@pytest.mark.asyncio
async def test_embed_query_is_cached():
    calls = []
    embedder = OpenAIEmbeddingService(api_key="sk-test", transport=_embedding_transport(calls))
    first = await embedder.embed_query("interest rates")
    second = await embedder.embed_query("interest rates")
    assert first == second
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_embed_query_dimension_mismatch_returns_none():
    calls = []
    embedder = OpenAIEmbeddingService(api_key="sk-test", transport=_embedding_transport(calls, dim=8))
    assert await embedder.embed_query("rates") is None


@pytest.mark.asyncio
async def test_embed_batch_keeps_vectors_before_failure():
    responses = iter([200, 500])

    def handler(request: httpx.Request) -> httpx.Response:
        code = next(responses)
        if code != 200:
            return httpx.Response(code)
        return httpx.Response(200, json={"data": [{"index": 0, "embedding": unit_vector(2)}]})

    embedder = OpenAIEmbeddingService(api_key="sk-test", transport=httpx.MockTransport(handler))
    embedder.batch_size = 1
    vectors = await embedder.embed_batch(["a", "b", "c"])
    assert len(vectors) == 1
    assert vectors[0][2] == 1.0


@pytest.fixture
def no_backoff(monkeypatch) -> list:
    calls = []

    async def fake_sleep(seconds):
        calls.append(seconds)

    monkeypatch.setattr(embedding_module.asyncio, "sleep", fake_sleep)
    return calls


def _dropped_connection(request: httpx.Request) -> httpx.Response:
    raise httpx.ReadError("connection reset", request=request)


@pytest.mark.asyncio
async def test_embed_batch_stops_on_dropped_connection(no_backoff):
    embedder = OpenAIEmbeddingService(api_key="sk-test", transport=httpx.MockTransport(_dropped_connection))
    assert await embedder.embed_batch(["a", "b"]) == []
    assert no_backoff == [1, 2]


@pytest.mark.asyncio
async def test_embed_query_rejects_non_json_body():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>gateway</html>"))
    embedder = OpenAIEmbeddingService(api_key="sk-test", transport=transport)
    assert await embedder.embed_query("rates") is None


@pytest.mark.asyncio
async def test_query_cache_is_bounded(monkeypatch):
    monkeypatch.setattr(embedding_module, "EMBEDDING_CACHE_SIZE", 2)
    calls = []
    embedder = OpenAIEmbeddingService(api_key="sk-test", transport=_embedding_transport(calls))
    for query in ("one", "two", "three"):
        await embedder.embed_query(query)
    assert len(embedding_module._embedding_cache) == 2

    # "one" was evicted first
    await embedder.embed_query("one")
    assert len(calls) == 4


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_vector_search_ranks_by_similarity(client: AsyncClient, db_session):
    tenant_id = await create_workspace(client)
    source = await _seed_chunks(db_session, tenant_id)

    calls = []
    embedder = OpenAIEmbeddingService(api_key="sk-test", transport=_embedding_transport(calls))
    result = await RagSearchService(embedder).search(db_session, tenant_id, "interest rates", limit=5)

    assert result["vector_search"] is True
    assert [r["content"] for r in result["results"]] == [
        "Interest rates held steady",
        "The new dashboard shipped",
    ]
    assert result["results"][0]["similarity"] == pytest.approx(1.0)
    assert result["results"][0]["source_title"] == "Macro Notes"
    assert result["results"][0]["source_id"] == source.id


@pytest.mark.asyncio
async def test_vector_search_is_tenant_scoped(client: AsyncClient, db_session):
    tenant_id = await create_workspace(client)
    other_tenant = await create_workspace(client, AUTH_HEADERS_USER2)
    await _seed_chunks(db_session, tenant_id)

    calls = []
    embedder = OpenAIEmbeddingService(api_key="sk-test", transport=_embedding_transport(calls))
    result = await RagSearchService(embedder).search(db_session, other_tenant, "interest rates")
    assert result["results"] == []


@pytest.mark.asyncio
async def test_search_falls_back_to_keywords_when_embedding_fails(client: AsyncClient, db_session, no_backoff):
    tenant_id = await create_workspace(client)
    await _seed_chunks(db_session, tenant_id)

    embedder = OpenAIEmbeddingService(api_key="sk-test", transport=httpx.MockTransport(_dropped_connection))
    result = await RagSearchService(embedder).search(db_session, tenant_id, "interest rates", limit=5)

    assert result["vector_search"] is False
    assert [r["content"] for r in result["results"]] == ["Interest rates held steady"]


@pytest.mark.asyncio
async def test_rag_endpoint_uses_keyword_fallback(client: AsyncClient):
    await create_workspace(client)
    await client.post(
        "/api/sources",
        json={
            "source_type": "manual",
            "title": "Rates",
            "content": "Interest rates stayed flat. Interest in bonds grew as rates stabilised this quarter.",
        },
        headers=AUTH_HEADERS,
    )

    resp = await client.post("/api/search/rag", json={"query": "interest rates"}, headers=AUTH_HEADERS)
    assert resp.status_code == 200
    data = resp.json()
    assert data["vector_search"] is False
    assert len(data["results"]) == 1
    assert data["results"][0]["source_title"] == "Rates"
    assert 0 < data["results"][0]["similarity"] <= 1.0


@pytest.mark.asyncio
async def test_rag_endpoint_rejects_blank_query(client: AsyncClient):
    await create_workspace(client)
    resp = await client.post("/api/search/rag", json={"query": "   "}, headers=AUTH_HEADERS)
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_rag_endpoint_no_matches(client: AsyncClient):
    await create_workspace(client)
    resp = await client.post("/api/search/rag", json={"query": "nothing indexed"}, headers=AUTH_HEADERS)
    assert resp.status_code == 200
    assert resp.json()["results"] == []
