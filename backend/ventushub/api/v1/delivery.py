"""Delivery log reads, engagement callbacks and provider webhooks."""

import uuid
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ventushub.api.v1.deps import CurrentUser, get_current_user, get_registry, get_session_factory, require_operator
from ventushub.config import get_settings
from ventushub.core.errors import ValidationError
from ventushub.db.session import get_db
from ventushub.integrations.channels.base import DeliveryTarget
from ventushub.models.notification import Notification
from ventushub.schemas.delivery import (
    DeliveryLogResponse,
    ProviderCheckRequest,
    ProviderCheckResponse,
    ProviderCheckResult,
    ProviderInfo,
    ProviderWebhook,
    QueueStats,
    WebhookResult,
)
from ventushub.services.delivery_log import DeliveryLogService
from ventushub.services.delivery_queue import DeliveryQueue
from ventushub.services.metrics_aggregator import record_delivery_event
from ventushub.services.notification_store import NotificationStore

logger = logging.getLogger(__name__)

router = APIRouter()


async def _engagement(db, session_factory, log_id, user_id: str, clicked: bool) -> DeliveryLogResponse:
    service = DeliveryLogService(db)
    previous = (await service.get(log_id, user_id)).status
    entry = await (service.record_click if clicked else service.record_open)(log_id, user_id)
    category = (await db.get(Notification, entry.notification_id)).category
    await db.commit()
    if entry.status != previous:
        await record_delivery_event(session_factory, entry.channel, category, entry.status, previous)
    return DeliveryLogResponse.from_model(entry)


@router.post("/logs/{log_id}/opened", response_model=DeliveryLogResponse)
async def opened(
    log_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    session_factory=Depends(get_session_factory),
):
    return await _engagement(db, session_factory, log_id, user.id, clicked=False)


@router.post("/logs/{log_id}/clicked", response_model=DeliveryLogResponse)
async def clicked(
    log_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    session_factory=Depends(get_session_factory),
):
    """Record a click. Also counts as an open if none was recorded."""
    return await _engagement(db, session_factory, log_id, user.id, clicked=True)


@router.post("/webhooks/{provider}", response_model=WebhookResult)
async def provider_webhook(
    provider: str,
    req: ProviderWebhook,
    db: AsyncSession = Depends(get_db),
    session_factory=Depends(get_session_factory),
):
    """Status callback from an external provider.

    Unknown message ids and out-of-order statuses are acknowledged and ignored
    so providers do not keep retrying them.
    """
    service = DeliveryLogService(db)
    entry = await service.find_by_external_id(provider, req.external_id)
    if entry is None:
        return WebhookResult(updated=False)
    previous = entry.status
    await service.apply_provider_status(
        provider, req.external_id, req.status, error_message=req.error_message, occurred_at=req.occurred_at,
    )
    category = (await db.get(Notification, entry.notification_id)).category
    await db.commit()
    updated = entry.status != previous
    if updated:
        await record_delivery_event(session_factory, entry.channel, category, entry.status, previous)
    return WebhookResult(updated=updated, status=entry.status)


@router.get("/notifications/{notification_id}/logs", response_model=list[DeliveryLogResponse])
async def notification_logs(
    notification_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """Every delivery attempt for one of the caller's notifications, oldest first."""
    if user.is_operator:
        entries = await DeliveryLogService(db).list_for_notification(notification_id)
    else:
        await NotificationStore(db).get(user.id, notification_id)
        entries = await DeliveryLogService(db).list_for_notification(notification_id, user.id)
    return [DeliveryLogResponse.from_model(e) for e in entries]


@router.get("/providers", response_model=list[ProviderInfo])
async def providers(
    registry=Depends(get_registry),
    _: CurrentUser = Depends(require_operator),
):
    return [ProviderInfo(**p) for p in registry.describe()]


@router.get("/queue", response_model=QueueStats)
async def queue_stats(
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(require_operator),
):
    """Job counts by status."""
    return QueueStats(**await DeliveryQueue(db, get_settings()).stats())


@router.post("/providers/test", response_model=ProviderCheckResponse)
async def test_providers(
    req: ProviderCheckRequest,
    registry=Depends(get_registry),
    user: CurrentUser = Depends(require_operator),
):
    """Send a test message through every external provider that has an address in the body.

    Checks bypass the circuit breakers and never touch the delivery queue.
    """
    target = DeliveryTarget(user_id=user.id, email=req.email, phone=req.phone, push_token=req.push_token)
    results = [ProviderCheckResult(**r) for r in await registry.check_all(target)]
    if not results:
        raise ValidationError("Provide at least one of email, phone or pushToken")
    return ProviderCheckResponse(success=any(r.success for r in results), results=results)
