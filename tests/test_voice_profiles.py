"""Tests for voice profile management."""
import pytest
from httpx import AsyncClient

from tests.conftest import AUTH_HEADERS, AUTH_HEADERS_USER2, create_workspace


@pytest.mark.asyncio
async def test_create_and_list_voice_profiles(client: AsyncClient):
    await create_workspace(client)
    first = await client.post(
        "/api/voice-profiles",
        json={"name": "Casual", "tone_markers": {"formality": "casual"}, "is_default": True},
        headers=AUTH_HEADERS,
    )
    assert first.status_code == 201
    assert first.json()["is_default"] is True

    second = await client.post(
        "/api/voice-profiles",
        json={"name": "Formal", "voice_prompt": "Write like a broadsheet.", "is_default": True},
        headers=AUTH_HEADERS,
    )
    assert second.status_code == 201

    listing = (await client.get("/api/voice-profiles", headers=AUTH_HEADERS)).json()
    assert [v["name"] for v in listing] == ["Formal", "Casual"]
    # Only one default per tenant
    assert [v["is_default"] for v in listing] == [True, False]


@pytest.mark.asyncio
async def test_voice_profile_requires_name(client: AsyncClient):
    await create_workspace(client)
    resp = await client.post("/api/voice-profiles", json={"name": ""}, headers=AUTH_HEADERS)
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_delete_voice_profile_is_tenant_scoped(client: AsyncClient):
    await create_workspace(client)
    await create_workspace(client, AUTH_HEADERS_USER2)
    voice_id = (
        await client.post("/api/voice-profiles", json={"name": "Mine"}, headers=AUTH_HEADERS)
    ).json()["id"]

    resp = await client.delete(f"/api/voice-profiles/{voice_id}", headers=AUTH_HEADERS_USER2)
    assert resp.status_code == 404

    resp = await client.delete(f"/api/voice-profiles/{voice_id}", headers=AUTH_HEADERS)
    assert resp.status_code == 204
    assert (await client.get("/api/voice-profiles", headers=AUTH_HEADERS)).json() == []
