"""Tests for the audit log and workspace-wide search."""
import pytest
from httpx import AsyncClient

from app.services.audit import client_ip
from app.services.global_search import snippet, suggestions_for
from tests.conftest import AUTH_HEADERS, AUTH_HEADERS_USER2, create_workspace


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------

def test_client_ip_prefers_forwarded_for():
    assert client_ip({"x-forwarded-for": "198.51.100.7, 10.0.0.2", "x-real-ip": "10.0.0.9"}) == "198.51.100.7"
    assert client_ip({"x-real-ip": "10.0.0.9"}) == "10.0.0.9"
    assert client_ip({}) == "unknown"


@pytest.mark.asyncio
async def test_log_and_list_audit_entries(client: AsyncClient):
    tenant_id = await create_workspace(client)
    resp = await client.post(
        "/api/audit",
        json={"action": "newsletter.export", "resource_type": "newsletter", "resource_id": "5"},
        headers={**AUTH_HEADERS, "X-Real-IP": "192.0.2.1", "User-Agent": "pytest-agent"},
    )
    assert resp.status_code == 201
    entry = resp.json()
    assert entry["tenant_id"] == tenant_id
    assert entry["user_id"] == "test-user-1"
    assert entry["ip_address"] == "192.0.2.1"
    assert entry["user_agent"] == "pytest-agent"
    assert entry["details"] == {}

    listing = await client.get("/api/audit", headers=AUTH_HEADERS)
    assert [e["action"] for e in listing.json()] == ["newsletter.export"]


@pytest.mark.asyncio
async def test_audit_log_is_tenant_scoped(client: AsyncClient):
    await create_workspace(client)
    await create_workspace(client, AUTH_HEADERS_USER2)
    await client.post(
        "/api/audit", json={"action": "a", "resource_type": "r"}, headers=AUTH_HEADERS
    )
    listing = await client.get("/api/audit", headers=AUTH_HEADERS_USER2)
    assert listing.json() == []


@pytest.mark.asyncio
async def test_audit_requires_action(client: AsyncClient):
    await create_workspace(client)
    resp = await client.post("/api/audit", json={"resource_type": "r"}, headers=AUTH_HEADERS)
    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Global search
# ---------------------------------------------------------------------------

def test_snippet_marks_cuts():
    text = "x" * 100 + "needle" + "y" * 200
    result = snippet(text, "needle")
    assert result.startswith("…")
    assert result.endswith("…")
    assert "needle" in result
    assert snippet("short text", "absent") == "short text"


def test_suggestions_use_long_words():
    # The suffix is appended verbatim, even to words already ending in "s"
    assert suggestions_for("ai market trends today now") == ["All markets", "All trendss", "All todays"]


@pytest.mark.asyncio
async def test_global_search_across_types(client: AsyncClient):
    await create_workspace(client)
    await client.post(
        "/api/newsletters",
        json={"title": "Market update", "subject_line": "Market update for March"},
        headers=AUTH_HEADERS,
    )
    await client.post(
        "/api/newsletters", json={"title": "Weekly digest: market moves"}, headers=AUTH_HEADERS
    )
    await client.post(
        "/api/sources",
        params={"process": "false"},
        json={"source_type": "url", "url": "https://example.com/market-report", "title": "Report"},
        headers=AUTH_HEADERS,
    )

    resp = await client.post("/api/search/global", json={"query": "Market"}, headers=AUTH_HEADERS)
    assert resp.status_code == 200
    data = resp.json()
    assert data["total"] == 3
    assert data["results"][0]["title"] == "Market update"
    assert data["results"][0]["relevance"] == 1.0
    assert {r["type"] for r in data["results"]} == {"newsletter", "source"}
    assert all(r["relevance"] == 0.7 for r in data["results"][1:])
    assert data["suggestions"] == ["All markets"]


@pytest.mark.asyncio
async def test_global_search_type_and_status_filters(client: AsyncClient):
    await create_workspace(client)
    await client.post("/api/newsletters", json={"title": "Alpha news"}, headers=AUTH_HEADERS)
    await client.post(
        "/api/sources",
        params={"process": "false"},
        json={"source_type": "manual", "title": "Alpha notes", "content": "body"},
        headers=AUTH_HEADERS,
    )

    only_sources = await client.post(
        "/api/search/global",
        json={"query": "alpha", "filters": {"types": ["source"]}},
        headers=AUTH_HEADERS,
    )
    assert [r["type"] for r in only_sources.json()["results"]] == ["source"]

    sent_only = await client.post(
        "/api/search/global",
        json={"query": "alpha", "filters": {"types": ["newsletter"], "status": "sent"}},
        headers=AUTH_HEADERS,
    )
    assert sent_only.json()["total"] == 0


@pytest.mark.asyncio
async def test_global_search_rejects_blank_query(client: AsyncClient):
    await create_workspace(client)
    resp = await client.post("/api/search/global", json={"query": "   "}, headers=AUTH_HEADERS)
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_global_search_is_tenant_scoped(client: AsyncClient):
    await create_workspace(client)
    await create_workspace(client, AUTH_HEADERS_USER2)
    await client.post("/api/newsletters", json={"title": "Private plans"}, headers=AUTH_HEADERS)

    resp = await client.post("/api/search/global", json={"query": "private"}, headers=AUTH_HEADERS_USER2)
    assert resp.json()["results"] == []
