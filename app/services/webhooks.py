"""
Outbound webhook delivery.

Payloads are ``{"event", "data", "timestamp"}`` serialised once; the exact
body string is signed with HMAC-SHA256 and sent in ``X-Webhook-Signature``.
Every attempt is recorded in ``webhook_deliveries``. Failed attempts are
retried up to WEBHOOK_MAX_ATTEMPTS times with ``2 ** attempt`` second backoff.
"""
from __future__ import annotations

import asyncio
import json
import logging
import secrets
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.database_models import DeliveryStatus, Webhook, WebhookDelivery
from app.utils.helpers import is_valid_webhook_url, sign_payload

logger = logging.getLogger(__name__)

VALID_EVENTS = [
    "newsletter.sent",
    "newsletter.opened",
    "newsletter.clicked",
    "source.processed",
]
DEFAULT_EVENTS = ["newsletter.sent"]
SECRET_PREFIX = "whsec_"
NO_WEBHOOKS_MESSAGE = "No webhooks registered for this event"


def generate_secret() -> str:
    return SECRET_PREFIX + secrets.token_hex(24)


def filter_events(events: Optional[List[str]]) -> List[str]:
    if not events:
        return list(DEFAULT_EVENTS)
    valid = [e for e in events if e in VALID_EVENTS]
    return valid or list(DEFAULT_EVENTS)


def validate_url(url: Optional[str]) -> None:
    """Raise ValueError with a user-facing message when *url* is unusable."""
    if not url:
        raise ValueError("URL is required")
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        raise ValueError("Invalid URL format")
    if not is_valid_webhook_url(url):
        raise ValueError("Webhook URL must use HTTPS")


def build_body(event_type: str, data: Dict[str, Any], timestamp: Optional[str] = None) -> str:
    return json.dumps(
        {
            "event": event_type,
            "data": data,
            "timestamp": timestamp or datetime.now(timezone.utc).isoformat(),
        }
    )


class WebhookService:
    """Finds subscribed webhooks and delivers signed payloads to them."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.max_attempts = settings.WEBHOOK_MAX_ATTEMPTS
        self.timeout = httpx.Timeout(float(settings.WEBHOOK_TIMEOUT), connect=5.0)
        self._transport = transport

    async def subscribed_webhooks(
        self, db: AsyncSession, tenant_id: int, event_type: str
    ) -> List[Webhook]:
        result = await db.execute(
            select(Webhook).where(Webhook.tenant_id == tenant_id, Webhook.enabled.is_(True))
        )
        return [w for w in result.scalars().all() if event_type in (w.events or [])]

    async def trigger(
        self,
        db: AsyncSession,
        tenant_id: int,
        event_type: str,
        data: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Deliver *event_type* to every enabled webhook of the tenant that
        subscribes to it. Deliveries run concurrently.

        Returns:
            ``{"delivered", "total", "results"}`` or, when nothing subscribes,
            ``{"message", "delivered": 0, "total": 0, "results": []}``.
        """
        webhooks = await self.subscribed_webhooks(db, tenant_id, event_type)
        if not webhooks:
            return {"message": NO_WEBHOOKS_MESSAGE, "delivered": 0, "total": 0, "results": []}

        body = build_body(event_type, data)
        # HTTP runs concurrently; delivery rows are written afterwards on the
        # shared session, which does not support concurrent use.
        outcomes = await asyncio.gather(
            *[self._deliver(w, event_type, body) for w in webhooks]
        )

        results = []
        for webhook, attempts in zip(webhooks, outcomes):
            for attempt in attempts:
                db.add(
                    WebhookDelivery(
                        webhook_id=webhook.id,
                        event_type=event_type,
                        payload=data,
                        status=DeliveryStatus.DELIVERED if attempt["success"] else DeliveryStatus.FAILED,
                        response_code=attempt["status_code"],
                        response_body=attempt["response_body"],
                        attempts=attempt["attempt"],
                    )
                )
            final = attempts[-1]
            results.append(
                {
                    "webhook_id": webhook.id,
                    "success": final["success"],
                    "status_code": final["status_code"],
                    "attempts": final["attempt"],
                }
            )
        await db.flush()

        delivered = sum(1 for r in results if r["success"])
        logger.info(
            "Webhook event %s for tenant %d: %d/%d delivered",
            event_type,
            tenant_id,
            delivered,
            len(results),
        )
        return {"delivered": delivered, "total": len(results), "results": results}

    async def dispatch(
        self,
        db: AsyncSession,
        tenant_id: int,
        event_type: str,
        data: Dict[str, Any],
    ) -> None:
        """Fire-and-log wrapper used by domain operations (source.processed, newsletter.sent)."""
        try:
            await self.trigger(db, tenant_id, event_type, data)
        except Exception as exc:
            logger.error("Webhook dispatch %s for tenant %d failed: %s", event_type, tenant_id, exc)

    async def _deliver(self, webhook: Webhook, event_type: str, body: str) -> List[Dict[str, Any]]:
        """POST *body* to one webhook with retries. Returns one record per attempt."""
        headers = {
            "Content-Type": "application/json",
            "X-Webhook-Signature": sign_payload(body, webhook.secret),
            "X-Webhook-Event": event_type,
        }
        attempts: List[Dict[str, Any]] = []

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for attempt in range(1, self.max_attempts + 1):
                try:
                    resp = await client.post(webhook.url, content=body, headers=headers)
                    record = {
                        "attempt": attempt,
                        "success": resp.is_success,
                        "status_code": resp.status_code,
                        "response_body": resp.text[:1000],
                    }
                except httpx.HTTPError as exc:
                    logger.warning(
                        "Webhook %d delivery error (attempt %d/%d): %s",
                        webhook.id,
                        attempt,
                        self.max_attempts,
                        exc,
                    )
                    record = {
                        "attempt": attempt,
                        "success": False,
                        "status_code": 0,
                        "response_body": str(exc)[:1000],
                    }
                attempts.append(record)

                if record["success"]:
                    break
                if attempt < self.max_attempts:
                    await asyncio.sleep(2 ** attempt)

        return attempts


async def dispatch_event(
    session_factory: Callable[[], Any],
    tenant_id: int,
    event_type: str,
    data: Dict[str, Any],
) -> None:
    """
    BackgroundTasks entry point for domain events. Retries and their backoff
    happen here, after the response, in a session opened from *session_factory*.
    """
    async with session_factory() as db:
        await WebhookService().dispatch(db, tenant_id, event_type, data)
        await db.commit()
