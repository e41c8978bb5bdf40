"""Tests for newsletter drafts, generation, quality checks, sending and stats."""
import json
from datetime import datetime, timezone

import httpx
import pytest
from httpx import AsyncClient

from app.models.database_models import Newsletter, TenantSettings
from app.services import newsletters as newsletter_service
from app.services.content_generator import ContentGenerator, build_voice_instructions
from app.services.llm_client import LLMClient, parse_json_object
from app.services.newsletter_sender import (
    NewsletterSender,
    ProviderNotConfigured,
    SendError,
    mailchimp_datacenter,
    wrap_in_email_template,
)
from app.services.send_time import rank_slots
from tests.conftest import AUTH_HEADERS, AUTH_HEADERS_USER2, create_workspace


async def _create_newsletter(client: AsyncClient, **fields) -> dict:
    body = {"title": "Weekly Roundup", "content_html": "<p>Hello readers.</p>", **fields}
    resp = await client.post("/api/newsletters", json=body, headers=AUTH_HEADERS)
    assert resp.status_code == 201
    return resp.json()


def _patch_sender(monkeypatch, handler) -> list:
    """Route ESP calls made by the send endpoint through *handler*."""
    requests = []

    def recording(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    transport = httpx.MockTransport(recording)
    monkeypatch.setattr(
        newsletter_service,
        "NewsletterSender",
        lambda transport_=None, **kw: NewsletterSender(transport=transport),
    )
    return requests


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_sanitizes_html_and_defaults_subject(client: AsyncClient):
    await create_workspace(client)
    title = "An unusually long newsletter title that will definitely need truncating"
    created = await _create_newsletter(
        client,
        title=title,
        content_html='<p onclick="steal()">Hi</p><script>alert(1)</script>',
    )
    assert created["status"] == "draft"
    assert created["content_html"] == "<p>Hi</p>"
    assert created["subject_line"] == "An unusually long newsletter title that will definitely..."
    assert created["created_by"] == "test-user-1"


@pytest.mark.asyncio
async def test_update_list_and_delete(client: AsyncClient):
    await create_workspace(client)
    created = await _create_newsletter(client)

    updated = await client.put(
        f"/api/newsletters/{created['id']}",
        json={"title": "Renamed", "status": "review"},
        headers=AUTH_HEADERS,
    )
    assert updated.status_code == 200
    assert updated.json()["title"] == "Renamed"
    assert updated.json()["status"] == "review"
    # Subject line was already set on create
    assert updated.json()["subject_line"] == "Weekly Roundup"

    listing = await client.get("/api/newsletters", params={"status": "review"}, headers=AUTH_HEADERS)
    assert [n["id"] for n in listing.json()] == [created["id"]]

    deleted = await client.delete(f"/api/newsletters/{created['id']}", headers=AUTH_HEADERS)
    assert deleted.status_code == 204
    missing = await client.get(f"/api/newsletters/{created['id']}", headers=AUTH_HEADERS)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_newsletters_are_tenant_scoped(client: AsyncClient):
    await create_workspace(client)
    await create_workspace(client, AUTH_HEADERS_USER2)
    created = await _create_newsletter(client)

    resp = await client.get(f"/api/newsletters/{created['id']}", headers=AUTH_HEADERS_USER2)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_create_rejects_foreign_voice_profile(client: AsyncClient):
    await create_workspace(client)
    await create_workspace(client, AUTH_HEADERS_USER2)
    voice = await client.post("/api/voice-profiles", json={"name": "Theirs"}, headers=AUTH_HEADERS_USER2)
    assert voice.status_code == 201

    resp = await client.post(
        "/api/newsletters",
        json={"title": "x", "voice_profile_id": voice.json()["id"]},
        headers=AUTH_HEADERS,
    )
    assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_generate_without_provider_uses_template(client: AsyncClient):
    await create_workspace(client)
    resp = await client.post(
        "/api/newsletters/generate",
        json={
            "topic": "AI trends",
            "context": [{"chunk_id": 7, "source_title": "Report", "content": "Models got cheaper."}],
        },
        headers=AUTH_HEADERS,
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["ai_generated"] is False
    assert data["title"] == "AI trends"
    assert data["subject_line"] == "AI trends - Your Latest Update"
    assert 'From "Report"' in data["content_html"]
    assert data["citations"] == [{"chunk_id": 7, "text": "Models got cheaper."}]
    assert data["newsletter_id"] is None


@pytest.mark.asyncio
async def test_generate_and_save_creates_draft(client: AsyncClient):
    await create_workspace(client)
    resp = await client.post(
        "/api/newsletters/generate", json={"topic": "Launch recap", "save": True}, headers=AUTH_HEADERS
    )
    newsletter_id = resp.json()["newsletter_id"]
    assert newsletter_id is not None

    detail = await client.get(f"/api/newsletters/{newsletter_id}", headers=AUTH_HEADERS)
    assert detail.json()["title"] == "Launch recap"
    assert detail.json()["status"] == "draft"


@pytest.mark.asyncio
async def test_generate_with_provider_response():
    payload = {"title": "AI Weekly", "subject_line": "This week in AI", "content_html": "<h1>AI</h1>"}

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/messages")
        return httpx.Response(
            200,
            json={"content": [{"type": "text", "text": "```json\n" + json.dumps(payload) + "\n```"}]},
        )

    llm = LLMClient(anthropic_api_key="test-key", transport=httpx.MockTransport(handler))
    draft = await ContentGenerator(llm).generate("AI", [{"chunk_id": 1, "content": "x" * 150}])
    assert draft["ai_generated"] is True
    assert draft["title"] == "AI Weekly"
    assert draft["subject_line"] == "This week in AI"
    assert draft["citations"] == [{"chunk_id": 1, "text": "x" * 100}]


@pytest.mark.asyncio
async def test_generate_falls_back_to_openai():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/messages"):
            return httpx.Response(529, text="overloaded")
        return httpx.Response(
            200,
            json={"choices": [{"message": {"content": '{"title": "T", "content_html": "<p>B</p>",}'}}]},
        )

    llm = LLMClient(
        anthropic_api_key="a-key", openai_api_key="o-key", transport=httpx.MockTransport(handler)
    )
    draft = await ContentGenerator(llm).generate("Topic")
    assert draft["ai_generated"] is True
    assert draft["subject_line"] == "T"


@pytest.mark.asyncio
async def test_generate_skips_unreadable_anthropic_body():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/messages"):
            return httpx.Response(200, text="<html>bad gateway</html>")
        return httpx.Response(
            200,
            json={"choices": [{"message": {"content": '{"title": "T", "content_html": "<p>B</p>"}'}}]},
        )

    llm = LLMClient(
        anthropic_api_key="a-key", openai_api_key="o-key", transport=httpx.MockTransport(handler)
    )
    draft = await ContentGenerator(llm).generate("Topic")
    assert draft["ai_generated"] is True
    assert draft["title"] == "T"


def test_parse_json_object_handles_prose():
    assert parse_json_object('Sure! Here it is: {"a": {"b": 1}} hope that helps') == {"a": {"b": 1}}
    assert parse_json_object("no json") is None


def test_voice_instructions_prefer_trained_prompt():
    from app.models.database_models import VoiceProfile

    trained = VoiceProfile(name="v", voice_prompt="Write like a pirate.")
    assert "Write like a pirate." in build_voice_instructions(trained)

    markers = VoiceProfile(
        name="v",
        tone_markers={"formality": "casual"},
        vocabulary_preferences={"common_phrases": ["heads up"]},
    )
    text = build_voice_instructions(markers)
    assert "- Formality: casual" in text
    assert "- Tone: balanced" in text
    assert "- Use phrases like: heads up" in text


# ---------------------------------------------------------------------------
# Quality
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_quality_report(client: AsyncClient):
    await create_workspace(client)
    resp = await client.post(
        "/api/newsletters/quality",
        json={
            "content_html": (
                '<p>Claim your FREE prize today.</p><img src="hero.png">'
                '<a href="https://example.com">Read</a><a href="/relative">x</a>'
            ),
            "subject_line": "A short subject",
        },
        headers=AUTH_HEADERS,
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["spam_words_found"] == ["free", "prize"]
    assert data["spam_score"] == 30
    assert data["missing_alt_text"] == ["hero.png"]
    assert data["links_found"] == ["https://example.com"]
    assert data["subject_length_ok"] is True
    assert data["overall_grade"] in {"A", "B", "C", "D", "F"}


# ---------------------------------------------------------------------------
# Sending
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_send_requires_recipients(client: AsyncClient):
    await create_workspace(client)
    created = await _create_newsletter(client)
    resp = await client.post(f"/api/newsletters/{created['id']}/send", json={}, headers=AUTH_HEADERS)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "recipients array is required"


@pytest.mark.asyncio
async def test_send_without_provider_key(client: AsyncClient):
    await create_workspace(client)
    created = await _create_newsletter(client)
    resp = await client.post(
        f"/api/newsletters/{created['id']}/send",
        json={"recipients": ["a@example.com"]},
        headers=AUTH_HEADERS,
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No API key configured for sendgrid. Please add it in Settings."


@pytest.mark.asyncio
async def test_send_via_sendgrid_marks_sent(client: AsyncClient, monkeypatch):
    await create_workspace(client)
    await client.put(
        "/api/settings",
        json={"sendgrid_api_key": "SG.key", "sender_email": "news@acme.test", "company_name": "Acme"},
        headers=AUTH_HEADERS,
    )
    created = await _create_newsletter(client)
    requests = _patch_sender(monkeypatch, lambda request: httpx.Response(202))

    resp = await client.post(
        f"/api/newsletters/{created['id']}/send",
        json={"recipients": ["a@example.com", "b@example.com"]},
        headers=AUTH_HEADERS,
    )
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "provider": "sendgrid", "recipients_count": 2, "is_test": False}

    body = json.loads(requests[0].content)
    assert requests[0].headers["Authorization"] == "Bearer SG.key"
    assert len(body["personalizations"]) == 2
    assert body["from"] == {"email": "news@acme.test", "name": "Acme"}
    assert body["subject"] == "Weekly Roundup"

    detail = (await client.get(f"/api/newsletters/{created['id']}", headers=AUTH_HEADERS)).json()
    assert detail["status"] == "sent"
    assert detail["sent_at"] is not None
    stats = (await client.get(f"/api/newsletters/{created['id']}/stats", headers=AUTH_HEADERS)).json()
    assert stats["recipients"] == 2


@pytest.mark.asyncio
async def test_test_send_keeps_draft(client: AsyncClient, monkeypatch):
    await create_workspace(client)
    await client.put("/api/settings", json={"sendgrid_api_key": "SG.key"}, headers=AUTH_HEADERS)
    created = await _create_newsletter(client)
    requests = _patch_sender(monkeypatch, lambda request: httpx.Response(202))

    resp = await client.post(
        f"/api/newsletters/{created['id']}/send",
        json={"recipients": ["me@example.com"], "is_test": True},
        headers=AUTH_HEADERS,
    )
    assert resp.status_code == 200
    assert json.loads(requests[0].content)["subject"] == "[TEST] Weekly Roundup"
    detail = (await client.get(f"/api/newsletters/{created['id']}", headers=AUTH_HEADERS)).json()
    assert detail["status"] == "draft"


@pytest.mark.asyncio
async def test_send_provider_error_returns_502(client: AsyncClient, monkeypatch):
    await create_workspace(client)
    await client.put("/api/settings", json={"sendgrid_api_key": "SG.key"}, headers=AUTH_HEADERS)
    created = await _create_newsletter(client)
    _patch_sender(monkeypatch, lambda request: httpx.Response(401, text="bad key"))

    resp = await client.post(
        f"/api/newsletters/{created['id']}/send",
        json={"recipients": ["a@example.com"]},
        headers=AUTH_HEADERS,
    )
    assert resp.status_code == 502
    assert resp.json()["detail"] == "SendGrid error: 401"


@pytest.mark.asyncio
async def test_send_connection_failure_returns_502(client: AsyncClient, monkeypatch):
    await create_workspace(client)
    await client.put("/api/settings", json={"sendgrid_api_key": "SG.key"}, headers=AUTH_HEADERS)
    created = await _create_newsletter(client)

    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    _patch_sender(monkeypatch, unreachable)

    resp = await client.post(
        f"/api/newsletters/{created['id']}/send",
        json={"recipients": ["a@example.com"]},
        headers=AUTH_HEADERS,
    )
    assert resp.status_code == 502
    assert resp.json()["detail"] == "SendGrid request failed: ConnectError"
    detail = (await client.get(f"/api/newsletters/{created['id']}", headers=AUTH_HEADERS)).json()
    assert detail["status"] == "draft"


@pytest.mark.asyncio
async def test_mailchimp_non_json_campaign_body():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="OK"))
    newsletter = Newsletter(id=1, tenant_id=1, title="T", content_html="<p>x</p>")
    ts = TenantSettings(tenant_id=1, esp_provider="mailchimp", mailchimp_api_key="abc123-us21")
    with pytest.raises(SendError, match="Mailchimp returned an invalid response"):
        await NewsletterSender(transport=transport).send(newsletter, ts, ["a@example.com"], list_id="l1")


@pytest.mark.asyncio
async def test_mailchimp_campaign_flow():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        if request.url.path.endswith("/campaigns"):
            return httpx.Response(200, json={"id": "c1"})
        return httpx.Response(200, json={})

    newsletter = Newsletter(id=1, tenant_id=1, title="T", content_html="<p>x</p>")
    ts = TenantSettings(tenant_id=1, esp_provider="mailchimp", mailchimp_api_key="abc123-us21")
    result = await NewsletterSender(transport=httpx.MockTransport(handler)).send(
        newsletter, ts, ["a@example.com"], list_id="list-1"
    )
    assert result.provider == "mailchimp"
    assert seen == [
        ("POST", "/3.0/campaigns"),
        ("PUT", "/3.0/campaigns/c1/content"),
        ("POST", "/3.0/campaigns/c1/actions/send"),
    ]


@pytest.mark.asyncio
async def test_mailchimp_requires_list_id():
    newsletter = Newsletter(id=1, tenant_id=1, title="T")
    ts = TenantSettings(tenant_id=1, esp_provider="mailchimp", mailchimp_api_key="abc123-us21")
    sender = NewsletterSender(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    with pytest.raises(SendError, match="list_id is required"):
        await sender.send(newsletter, ts, ["a@example.com"])


@pytest.mark.asyncio
async def test_convertkit_without_key_and_no_sendgrid():
    newsletter = Newsletter(id=1, tenant_id=1, title="T")
    ts = TenantSettings(tenant_id=1, esp_provider="convertkit")
    with pytest.raises(ProviderNotConfigured, match="convertkit"):
        await NewsletterSender().send(newsletter, ts, ["a@example.com"])


@pytest.mark.asyncio
async def test_convertkit_broadcast_flow():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        seen.append((request.method, request.url.path, body["api_secret"]))
        if request.method == "POST":
            assert body["email_layout_template"] == "Text only"
            return httpx.Response(201, json={"broadcast": {"id": 7}})
        assert "published_at" in body
        return httpx.Response(200, json={"broadcast": {"id": 7}})

    newsletter = Newsletter(id=1, tenant_id=1, title="T", content_html="<p>x</p>")
    ts = TenantSettings(tenant_id=1, esp_provider="convertkit", convertkit_api_key="ck-secret")
    result = await NewsletterSender(transport=httpx.MockTransport(handler)).send(
        newsletter, ts, ["a@example.com"]
    )
    assert result.provider == "convertkit"
    assert result.message == "Broadcast created"
    assert seen == [
        ("POST", "/v3/broadcasts", "ck-secret"),
        ("PUT", "/v3/broadcasts/7", "ck-secret"),
    ]


@pytest.mark.asyncio
async def test_convertkit_missing_broadcast_id():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.method)
        return httpx.Response(200, json={})

    newsletter = Newsletter(id=1, tenant_id=1, title="T", content_html="<p>x</p>")
    ts = TenantSettings(tenant_id=1, esp_provider="convertkit", convertkit_api_key="ck-secret")
    with pytest.raises(SendError, match="Failed to create broadcast"):
        await NewsletterSender(transport=httpx.MockTransport(handler)).send(
            newsletter, ts, ["a@example.com"]
        )
    assert seen == ["POST"]


def test_mailchimp_datacenter():
    assert mailchimp_datacenter("0123abcd-us21") == "us21"
    assert mailchimp_datacenter("no-datacenter-here!") is None


def test_email_template_wraps_content():
    page = wrap_in_email_template("<p>Body</p>", "A & B")
    assert page.startswith("<!DOCTYPE html>")
    assert "<title>A &amp; B</title>" in page
    assert "Sent via Newsletter Wizard" in page


# ---------------------------------------------------------------------------
# Stats / send time
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_stats_rates_are_derived(client: AsyncClient):
    await create_workspace(client)
    created = await _create_newsletter(client)

    empty = await client.get(f"/api/newsletters/{created['id']}/stats", headers=AUTH_HEADERS)
    assert empty.json()["recipients"] == 0

    resp = await client.put(
        f"/api/newsletters/{created['id']}/stats",
        json={"recipients": 200, "opens": 90, "unique_opens": 50, "clicks": 20, "unique_clicks": 10},
        headers=AUTH_HEADERS,
    )
    assert resp.status_code == 200
    assert resp.json()["open_rate"] == 25.0
    assert resp.json()["click_rate"] == 5.0


@pytest.mark.asyncio
async def test_send_time_defaults_without_history(client: AsyncClient):
    await create_workspace(client)
    resp = await client.get("/api/newsletters/send-time", headers=AUTH_HEADERS)
    assert resp.status_code == 200
    data = resp.json()
    assert data["based_on_data"] is False
    assert data["sample_size"] == 0
    assert [s["day_name"] for s in data["recommended_slots"]] == ["Tuesday", "Thursday", "Wednesday"]


def test_rank_slots_groups_by_day_and_hour():
    sends = [
        {"sent_at": datetime(2024, 1, 2, 10, 5, tzinfo=timezone.utc), "open_rate": 40.0},
        {"sent_at": datetime(2024, 1, 2, 10, 30, tzinfo=timezone.utc), "open_rate": 20.0},
        {"sent_at": datetime(2024, 1, 5, 15, 0, tzinfo=timezone.utc), "open_rate": 50.0},
    ]
    slots = rank_slots(sends)
    assert [(s["day_name"], s["hour"]) for s in slots] == [("Friday", 15), ("Tuesday", 10)]
    assert slots[0]["day"] == 5
    assert slots[1]["avg_open_rate"] == 30.0
    assert slots[1]["confidence"] == 0.6
    assert slots[1]["reason"].endswith("across 2 sends")
