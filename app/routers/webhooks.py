"""
Webhook management and the internal trigger endpoint.

POST   /                    register a webhook (secret returned once).
GET    /                    list webhooks.
PATCH  /{id}                update url, events or enabled.
DELETE /{id}                delete a webhook.
GET    /{id}/deliveries     last 50 delivery attempts.
POST   /trigger             deliver an event (internal bearer token).
"""
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import get_current_profile, require_internal_key, require_manager
from app.models.database_models import Profile, Webhook, WebhookDelivery
from app.models.schemas import (
    WebhookCreateRequest,
    WebhookCreatedResponse,
    WebhookDeliveryResponse,
    WebhookResponse,
    WebhookTriggerRequest,
    WebhookUpdateRequest,
)
from app.services.webhooks import (
    WebhookService,
    filter_events,
    generate_secret,
    validate_url,
)

logger = logging.getLogger(__name__)

router = APIRouter()

DELIVERY_HISTORY_LIMIT = 50


async def _get_tenant_webhook(db: AsyncSession, tenant_id: int, webhook_id: int) -> Webhook:
    webhook = await db.get(Webhook, webhook_id)
    if webhook is None or webhook.tenant_id != tenant_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Webhook not found")
    return webhook


@router.post("", response_model=WebhookCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_webhook(
    body: WebhookCreateRequest,
    profile: Profile = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
):
    try:
        validate_url(body.url)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    webhook = Webhook(
        tenant_id=profile.tenant_id,
        url=body.url,
        secret=generate_secret(),
        events=filter_events(body.events),
        enabled=True,
    )
    db.add(webhook)
    await db.flush()
    logger.info("Registered webhook id=%d for tenant %d → %s", webhook.id, profile.tenant_id, body.url)
    return WebhookCreatedResponse(
        **WebhookResponse.model_validate(webhook).model_dump(),
        secret=webhook.secret,
    )


@router.get("", response_model=List[WebhookResponse])
async def list_webhooks(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Webhook)
        .where(Webhook.tenant_id == profile.tenant_id)
        .order_by(Webhook.created_at.desc(), Webhook.id.desc())
    )
    return result.scalars().all()


@router.patch("/{webhook_id}", response_model=WebhookResponse)
async def update_webhook(
    webhook_id: int,
    body: WebhookUpdateRequest,
    profile: Profile = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
):
    webhook = await _get_tenant_webhook(db, profile.tenant_id, webhook_id)

    if body.url is not None:
        try:
            validate_url(body.url)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
        webhook.url = body.url
    if body.events is not None:
        webhook.events = filter_events(body.events)
    if body.enabled is not None:
        webhook.enabled = body.enabled

    await db.flush()
    return webhook


@router.delete("/{webhook_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_webhook(
    webhook_id: int,
    profile: Profile = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
) -> None:
    webhook = await _get_tenant_webhook(db, profile.tenant_id, webhook_id)
    await db.delete(webhook)
    await db.flush()
    logger.info("Deleted webhook id=%d", webhook_id)


@router.get("/{webhook_id}/deliveries", response_model=List[WebhookDeliveryResponse])
async def list_deliveries(
    webhook_id: int,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    await _get_tenant_webhook(db, profile.tenant_id, webhook_id)
    result = await db.execute(
        select(WebhookDelivery)
        .where(WebhookDelivery.webhook_id == webhook_id)
        .order_by(WebhookDelivery.created_at.desc(), WebhookDelivery.id.desc())
        .limit(DELIVERY_HISTORY_LIMIT)
    )
    return result.scalars().all()


@router.post("/trigger", dependencies=[Depends(require_internal_key)])
async def trigger_webhook(
    body: WebhookTriggerRequest,
    db: AsyncSession = Depends(get_db),
):
    """Deliver ``event_type`` with ``payload`` to the tenant's subscribed webhooks."""
    if body.tenant_id is None or not body.event_type or body.payload is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required fields: tenant_id, event_type, payload",
        )
    return await WebhookService().trigger(db, body.tenant_id, body.event_type, body.payload)
