"""Notification endpoints: feed, read state, archive, pin and direct create."""

import uuid
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ventushub.api.v1.deps import CurrentUser, get_current_user, get_session_factory
from ventushub.config import get_settings
from ventushub.db.session import get_db
from ventushub.schemas.enums import Severity
from ventushub.schemas.notification import (
    MarkAllReadResult,
    NotificationCreate,
    NotificationCreateResult,
    NotificationListResponse,
    NotificationResponse,
    NotificationSummary,
    WithdrawResult,
)
from ventushub.services.metrics_aggregator import record_delivery_event
from ventushub.services.notification_service import NotificationDraft, NotificationService
from ventushub.services.notification_store import NotificationStore

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    category: str | None = None,
    severity: Severity | None = None,
    is_read: bool | None = Query(default=None, alias="isRead"),
    archived: bool = False,
    pinned_first: bool = Query(default=True, alias="pinnedFirst"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    """List the caller's active notifications, pinned first, newest first."""
    store = NotificationStore(db)
    items, total = await store.list_feed(
        user.id,
        category=category,
        severity=severity.value if severity else None,
        is_read=is_read,
        archived=archived,
        pinned_first=pinned_first,
        limit=limit,
        offset=offset,
    )
    return NotificationListResponse(
        notifications=[NotificationResponse.from_model(n) for n in items],
        unread_count=await store.unread_count(user.id),
        total=total,
    )


@router.get("/unread-count")
async def unread_count(
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """Unread notification count (lightweight poll)."""
    return {"unreadCount": await NotificationStore(db).unread_count(user.id)}


@router.get("/summary", response_model=NotificationSummary)
async def summary(
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    return NotificationSummary(**await NotificationStore(db).summary(user.id))


@router.post("", response_model=NotificationCreateResult, status_code=201)
async def create_notification(
    req: NotificationCreate,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    session_factory=Depends(get_session_factory),
):
    """Create a notification directly, bypassing triggers.

    Creating for another user requires an operator role. The recipient's
    preferences still apply, so the result may report `created: false`.
    """
    target_user = req.user_id or user.id
    if target_user != user.id and not user.is_operator:
        raise HTTPException(status_code=403, detail="Operator role required to notify other users")

    draft = NotificationDraft(
        user_id=target_user,
        title=req.title,
        message=req.message,
        category=req.category,
        type=req.type,
        severity=req.severity,
        subcategory=req.subcategory,
        source_system=req.source_system,
        related_entity=req.related_entity,
        related_id=req.related_id,
        parent_notification_id=req.parent_notification_id,
        action_url=req.action_url,
        action_data=req.action_data,
        channels=list(req.delivery_channels),
        scheduled_for=req.scheduled_for,
        expires_at=req.expires_at,
        rich_content=req.rich_content,
        metadata=req.metadata,
    )
    notification = await NotificationService(db, get_settings()).create(draft)
    if notification is None:
        return NotificationCreateResult(created=False)

    await db.commit()
    await record_delivery_event(session_factory, "in_app", notification.category, "delivered")
    return NotificationCreateResult(created=True, notification=NotificationResponse.from_model(notification))


@router.post("/read-all", response_model=MarkAllReadResult)
async def mark_all_read(
    category: str | None = None,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """Mark every unread notification as read, optionally within one category."""
    updated = await NotificationStore(db).mark_all_read(user.id, category=category)
    return MarkAllReadResult(updated=updated)


@router.get("/{notification_id}", response_model=NotificationResponse)
async def get_notification(
    notification_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    return NotificationResponse.from_model(await NotificationStore(db).get(user.id, notification_id))


@router.delete("/{notification_id}", status_code=204)
async def delete_notification(
    notification_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    await NotificationStore(db).delete(user.id, notification_id)


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """Mark a single notification as read. Repeating the call changes nothing."""
    return NotificationResponse.from_model(await NotificationStore(db).mark_read(user.id, notification_id))


@router.post("/{notification_id}/unread", response_model=NotificationResponse)
async def mark_unread(
    notification_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    return NotificationResponse.from_model(await NotificationStore(db).mark_unread(user.id, notification_id))


@router.post("/{notification_id}/archive", response_model=NotificationResponse)
async def archive(
    notification_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    return NotificationResponse.from_model(await NotificationStore(db).archive(user.id, notification_id))


@router.post("/{notification_id}/unarchive", response_model=NotificationResponse)
async def unarchive(
    notification_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    return NotificationResponse.from_model(await NotificationStore(db).unarchive(user.id, notification_id))


@router.post("/{notification_id}/pin", response_model=NotificationResponse)
async def pin(
    notification_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    return NotificationResponse.from_model(await NotificationStore(db).set_pinned(user.id, notification_id, True))


@router.post("/{notification_id}/unpin", response_model=NotificationResponse)
async def unpin(
    notification_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    return NotificationResponse.from_model(await NotificationStore(db).set_pinned(user.id, notification_id, False))


@router.post("/{notification_id}/withdraw", response_model=WithdrawResult)
async def withdraw(
    notification_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """Cancel deliveries that have not been picked up yet."""
    removed = await NotificationService(db, get_settings()).withdraw(user.id, notification_id)
    logger.info(f"Notification {notification_id} withdrawn by {user.id}: {removed} job(s) cancelled")
    return WithdrawResult(cancelled_jobs=removed)
