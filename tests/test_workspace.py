"""Tests for workspace creation, settings, export and account deletion."""
import pytest
from httpx import AsyncClient
from sqlalchemy import select

from app.models.database_models import AuditLog, Profile, TeamRole, Tenant
from tests.conftest import AUTH_HEADERS, AUTH_HEADERS_USER2, create_workspace


@pytest.mark.asyncio
async def test_missing_user_header_is_rejected(client: AsyncClient):
    resp = await client.get("/api/workspace/me")
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_profile_required_before_workspace(client: AsyncClient):
    resp = await client.get("/api/workspace/me", headers=AUTH_HEADERS)
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Profile not found"


@pytest.mark.asyncio
async def test_create_workspace_is_idempotent(client: AsyncClient):
    first = await client.post("/api/workspace", headers=AUTH_HEADERS)
    assert first.status_code == 200
    assert first.json()["already_exists"] is False

    second = await client.post("/api/workspace", headers=AUTH_HEADERS)
    assert second.status_code == 200
    assert second.json()["already_exists"] is True
    assert second.json()["tenant_id"] == first.json()["tenant_id"]


@pytest.mark.asyncio
async def test_workspace_defaults(client: AsyncClient):
    await create_workspace(client)
    resp = await client.get("/api/workspace/me", headers=AUTH_HEADERS)
    assert resp.status_code == 200
    data = resp.json()
    assert data["profile"]["role"] == "owner"
    assert data["tenant"]["name"] == "Test User 1"
    assert data["tenant"]["slug"].startswith("test1-")
    assert data["tenant"]["subscription_tier"] == "free"
    assert data["tenant"]["max_sources"] == 10


@pytest.mark.asyncio
async def test_workspace_name_falls_back_to_email_handle(client: AsyncClient):
    headers = {"X-User-Id": "u-3", "X-User-Email": "Jane.Doe+news@example.com"}
    await create_workspace(client, headers)
    resp = await client.get("/api/workspace/me", headers=headers)
    assert resp.json()["tenant"]["name"] == "jane-doe-news"


@pytest.mark.asyncio
async def test_settings_are_masked(client: AsyncClient):
    await create_workspace(client)
    resp = await client.put(
        "/api/settings",
        json={"openai_api_key": "sk-test-123456", "esp_provider": "mailchimp", "company_name": "Acme"},
        headers=AUTH_HEADERS,
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["openai_api_key"] == "sk-t…"
    assert data["anthropic_api_key"] is None
    assert data["esp_provider"] == "mailchimp"
    assert data["company_name"] == "Acme"

    resp = await client.get("/api/settings", headers=AUTH_HEADERS)
    assert resp.json()["openai_api_key"] == "sk-t…"


@pytest.mark.asyncio
async def test_settings_reject_unknown_provider(client: AsyncClient):
    await create_workspace(client)
    resp = await client.put("/api/settings", json={"esp_provider": "postmark"}, headers=AUTH_HEADERS)
    assert resp.status_code == 400


@pytest.mark.asyncio
@pytest.mark.parametrize("role", [TeamRole.EDITOR, TeamRole.VIEWER])
async def test_settings_update_requires_owner_or_admin(client: AsyncClient, db_session, role):
    await create_workspace(client)
    await client.put("/api/settings", json={"company_name": "Acme"}, headers=AUTH_HEADERS)
    profile = await db_session.get(Profile, "test-user-1")
    profile.role = role
    await db_session.flush()

    resp = await client.put("/api/settings", json={"company_name": "Hijacked"}, headers=AUTH_HEADERS)
    assert resp.status_code == 403

    # Reading stays open to every member
    current = await client.get("/api/settings", headers=AUTH_HEADERS)
    assert current.status_code == 200
    assert current.json()["company_name"] == "Acme"


@pytest.mark.asyncio
async def test_export_contains_tenant_data_without_secrets(client: AsyncClient):
    await create_workspace(client)
    await client.put("/api/settings", json={"sendgrid_api_key": "SG.secret-value"}, headers=AUTH_HEADERS)
    await client.post("/api/api-keys", json={"name": "CI"}, headers=AUTH_HEADERS)
    await client.post(
        "/api/webhooks", json={"url": "https://hooks.example.com/nw"}, headers=AUTH_HEADERS
    )

    resp = await client.get("/api/account/export", headers=AUTH_HEADERS)
    assert resp.status_code == 200
    data = resp.json()
    assert data["profile"]["id"] == "test-user-1"
    assert data["settings"]["sendgrid_api_key"] == "SG.s…"
    assert data["api_keys"][0]["name"] == "CI"
    assert "key_hash" not in data["api_keys"][0]
    assert "secret" not in data["webhooks"][0]


@pytest.mark.asyncio
async def test_delete_account_requires_confirmation(client: AsyncClient):
    await create_workspace(client)
    resp = await client.post("/api/account/delete", json={"confirmation": "yes"}, headers=AUTH_HEADERS)
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_delete_account_removes_tenant_and_keeps_audit(client: AsyncClient, db_session):
    tenant_id = await create_workspace(client)
    await client.post(
        "/api/sources",
        params={"process": "false"},
        json={"source_type": "manual", "content": "Some notes about the market."},
        headers=AUTH_HEADERS,
    )

    resp = await client.post(
        "/api/account/delete",
        json={"confirmation": "DELETE", "reason": "testing"},
        headers={**AUTH_HEADERS, "X-Forwarded-For": "203.0.113.9, 10.0.0.1"},
    )
    assert resp.status_code == 200
    assert resp.json()["success"] is True

    assert await db_session.get(Tenant, tenant_id) is None
    entries = (await db_session.execute(select(AuditLog))).scalars().all()
    assert [e.action for e in entries] == ["account.delete"]
    assert entries[0].ip_address == "203.0.113.9"

    resp = await client.get("/api/workspace/me", headers=AUTH_HEADERS)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_reactivate_account(client: AsyncClient):
    await create_workspace(client)
    resp = await client.post("/api/account/reactivate", headers=AUTH_HEADERS)
    assert resp.status_code == 200
    assert resp.json()["is_active"] is True


@pytest.mark.asyncio
async def test_source_quota_enforced(client: AsyncClient, db_session):
    tenant_id = await create_workspace(client)
    tenant = await db_session.get(Tenant, tenant_id)
    tenant.max_sources = 1
    await db_session.flush()

    ok = await client.post(
        "/api/sources",
        params={"process": "false"},
        json={"source_type": "manual", "content": "first"},
        headers=AUTH_HEADERS,
    )
    assert ok.status_code == 201

    over = await client.post(
        "/api/sources",
        params={"process": "false"},
        json={"source_type": "manual", "content": "second"},
        headers=AUTH_HEADERS,
    )
    assert over.status_code == 403


@pytest.mark.asyncio
async def test_workspaces_are_isolated(client: AsyncClient):
    t1 = await create_workspace(client, AUTH_HEADERS)
    t2 = await create_workspace(client, AUTH_HEADERS_USER2)
    assert t1 != t2
