"""Tests for API key management, validation, rate limiting and the external API."""
import pytest
from httpx import AsyncClient

from app.services.api_keys import DEFAULT_PERMISSIONS, filter_permissions, hash_api_key
from tests.conftest import AUTH_HEADERS, AUTH_HEADERS_USER2, create_workspace


async def _create_key(client: AsyncClient, **body) -> dict:
    resp = await client.post("/api/api-keys", json=body, headers=AUTH_HEADERS)
    assert resp.status_code == 201
    return resp.json()


# ---------------------------------------------------------------------------
# Unit helpers
# ---------------------------------------------------------------------------

def test_filter_permissions_defaults():
    assert filter_permissions(None) == DEFAULT_PERMISSIONS
    assert filter_permissions(["bogus"]) == DEFAULT_PERMISSIONS
    assert filter_permissions(["analytics:read", "bogus"]) == ["analytics:read"]


def test_hash_is_sha256_hex():
    assert len(hash_api_key("nw_abc")) == 64


# ---------------------------------------------------------------------------
# Management
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_key_returns_full_key_once(client: AsyncClient):
    await create_workspace(client)
    created = await _create_key(client, name="Zapier")
    assert created["full_key"].startswith("nw_")
    assert len(created["full_key"]) == 51
    assert created["key_prefix"] == created["full_key"][:7]
    assert created["permissions"] == DEFAULT_PERMISSIONS
    assert created["rate_limit"] == 1000

    listing = await client.get("/api/api-keys", headers=AUTH_HEADERS)
    assert listing.status_code == 200
    assert len(listing.json()) == 1
    assert "full_key" not in listing.json()[0]


@pytest.mark.asyncio
async def test_revoke_and_delete_key(client: AsyncClient):
    await create_workspace(client)
    created = await _create_key(client)

    revoked = await client.post(f"/api/api-keys/{created['id']}/revoke", headers=AUTH_HEADERS)
    assert revoked.status_code == 200
    assert revoked.json()["revoked_at"] is not None

    resp = await client.post("/api/api-keys/validate", headers={"X-API-Key": created["full_key"]})
    assert resp.status_code == 401
    assert resp.json()["error"] == "API key has been revoked"

    deleted = await client.delete(f"/api/api-keys/{created['id']}", headers=AUTH_HEADERS)
    assert deleted.status_code == 204
    assert (await client.get("/api/api-keys", headers=AUTH_HEADERS)).json() == []


@pytest.mark.asyncio
async def test_keys_are_tenant_scoped(client: AsyncClient):
    await create_workspace(client)
    await create_workspace(client, AUTH_HEADERS_USER2)
    created = await _create_key(client)

    resp = await client.post(f"/api/api-keys/{created['id']}/revoke", headers=AUTH_HEADERS_USER2)
    assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_validate_requires_key(client: AsyncClient):
    resp = await client.post("/api/api-keys/validate")
    assert resp.status_code == 401
    assert resp.json() == {"valid": False, "error": "API key required. Provide X-API-Key header."}


@pytest.mark.asyncio
async def test_validate_unknown_key(client: AsyncClient):
    resp = await client.post("/api/api-keys/validate", json={"api_key": "nw_unknown"})
    assert resp.status_code == 401
    assert resp.json()["error"] == "Invalid API key"


@pytest.mark.asyncio
async def test_validate_accepts_body_key(client: AsyncClient):
    tenant_id = await create_workspace(client)
    created = await _create_key(client)

    resp = await client.post("/api/api-keys/validate", json={"api_key": created["full_key"]})
    assert resp.status_code == 200
    data = resp.json()
    assert data["valid"] is True
    assert data["tenant_id"] == tenant_id
    assert data["current_usage"] == 1


@pytest.mark.asyncio
async def test_rate_limit_returns_429_with_retry_after(client: AsyncClient):
    await create_workspace(client)
    created = await _create_key(client, rate_limit=2)
    headers = {"X-API-Key": created["full_key"]}

    for expected_usage in (1, 2):
        resp = await client.post("/api/api-keys/validate", headers=headers)
        assert resp.status_code == 200
        assert resp.json()["current_usage"] == expected_usage

    limited = await client.post("/api/api-keys/validate", headers=headers)
    assert limited.status_code == 429
    assert limited.headers["Retry-After"] == "3600"
    body = limited.json()
    assert body["error"] == "Rate limit exceeded"
    assert body["rate_limit"] == 2
    assert body["current_usage"] == 2
    assert body["retry_after"] == 3600


# ---------------------------------------------------------------------------
# External API
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_v1_search_with_read_permission(client: AsyncClient):
    await create_workspace(client)
    created = await _create_key(client)
    resp = await client.post(
        "/api/v1/search",
        json={"query": "anything"},
        headers={"X-API-Key": created["full_key"]},
    )
    assert resp.status_code == 200
    assert resp.json()["results"] == []


@pytest.mark.asyncio
async def test_v1_generate_requires_write_permission(client: AsyncClient):
    await create_workspace(client)
    created = await _create_key(client)
    resp = await client.post(
        "/api/v1/newsletters/generate",
        json={"topic": "AI trends"},
        headers={"X-API-Key": created["full_key"]},
    )
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Permission denied. Requires newsletters:write permission."


@pytest.mark.asyncio
async def test_v1_generate_saves_draft(client: AsyncClient):
    await create_workspace(client)
    created = await _create_key(client, permissions=["newsletters:write"])
    resp = await client.post(
        "/api/v1/newsletters/generate",
        json={"topic": "AI trends", "save": True},
        headers={"X-API-Key": created["full_key"]},
    )
    assert resp.status_code == 200
    newsletter_id = resp.json()["newsletter_id"]

    detail = await client.get(f"/api/newsletters/{newsletter_id}", headers=AUTH_HEADERS)
    assert detail.json()["created_by"] == f"api_key:{created['id']}"


@pytest.mark.asyncio
async def test_v1_rejects_missing_key(client: AsyncClient):
    resp = await client.post("/api/v1/search", json={"query": "x"})
    assert resp.status_code == 401
