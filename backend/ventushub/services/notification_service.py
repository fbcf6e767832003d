"""Centralized notification creation.

Turns a draft into a stored notification and fans it out:
- In-app: the notification row itself, logged as delivered immediately
- Email / push / SMS: one queue job per channel that passes the preferences gate
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from ventushub.config import Settings, get_settings
from ventushub.core.metrics import NOTIFICATIONS_CREATED
from ventushub.core.timeutil import utcnow
from ventushub.models.delivery import DeliveryLogEntry
from ventushub.models.notification import Notification
from ventushub.schemas.enums import SEVERITY_QUEUE_PRIORITY
from ventushub.services.delivery_queue import DeliveryQueue
from ventushub.services.notification_store import NotificationStore, group_key_for
from ventushub.services.preferences import PreferencesGate

logger = logging.getLogger(__name__)


@dataclass
class NotificationDraft:
    user_id: str
    title: str
    message: str
    category: str
    type: str = "info"
    severity: str = "normal"
    subcategory: str | None = None
    source_system: str = "ventushub"
    related_entity: str | None = None
    related_id: int | None = None
    parent_notification_id: uuid.UUID | None = None
    action_url: str | None = None
    action_data: dict | None = None
    channels: list[str] = field(default_factory=lambda: ["in_app"])
    scheduled_for: datetime | None = None
    expires_at: datetime | None = None
    rich_content: dict | None = None
    metadata: dict = field(default_factory=dict)
    trigger_key: str | None = None
    dedup_key: str | None = None


class NotificationService:
    """Creates notifications and enqueues their external deliveries."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None, clock=utcnow):
        self.session = session
        self.settings = settings or get_settings()
        self.clock = clock
        self.store = NotificationStore(session, clock=clock)
        self.gate = PreferencesGate(session, self.settings, clock=clock)
        self.queue = DeliveryQueue(session, self.settings, clock=clock)

    async def create(self, draft: NotificationDraft) -> Notification | None:
        """Create one notification. Returns None when the user's preferences suppress it.

        Raises ConflictError when `draft.dedup_key` was already taken.
        """
        plan = await self.gate.plan(
            draft.user_id,
            category=draft.category,
            severity=draft.severity,
            channels=draft.channels,
            title=draft.title,
            message=draft.message,
            related_entity=draft.related_entity,
            related_id=draft.related_id,
            not_before=draft.scheduled_for,
        )
        if not plan.create:
            logger.info(f"Notification for user {draft.user_id} suppressed ({plan.reason}): {draft.title}")
            return None

        now = self.clock()
        channels = ["in_app"] + [c.channel for c in plan.channels]
        status = {"in_app": "delivered"}
        for channel_plan in plan.channels:
            status[channel_plan.channel] = "pending"
        for channel, reason in plan.dropped.items():
            status[channel] = f"skipped:{reason}"

        notification = await self.store.create({
            "user_id": draft.user_id,
            "type": draft.type,
            "severity": draft.severity,
            "title": draft.title,
            "message": draft.message,
            "category": draft.category,
            "subcategory": draft.subcategory,
            "source_system": draft.source_system,
            "related_entity": draft.related_entity,
            "related_id": draft.related_id,
            "parent_notification_id": draft.parent_notification_id,
            "action_url": draft.action_url,
            "action_data": draft.action_data,
            "delivery_channels": channels,
            "delivery_status": status,
            "scheduled_for": draft.scheduled_for,
            "expires_at": draft.expires_at,
            "rich_content": draft.rich_content,
            "meta": draft.metadata,
            "trigger_key": draft.trigger_key,
            "dedup_key": draft.dedup_key,
            "group_key": group_key_for(draft.related_entity, draft.related_id, draft.category)
            if plan.grouping_enabled else None,
            "is_read": False,
            "is_archived": False,
            "is_pinned": False,
        })

        self.session.add(DeliveryLogEntry(
            notification_id=notification.id,
            user_id=draft.user_id,
            channel="in_app",
            status="delivered",
            provider="in_app",
            external_id=str(notification.id),
            scheduled_at=draft.scheduled_for,
            sent_at=now,
            delivered_at=now,
            created_at=now,
        ))

        priority = SEVERITY_QUEUE_PRIORITY.get(draft.severity, 0)
        for channel_plan in plan.channels:
            await self.queue.enqueue(
                job_type=channel_plan.job_type,
                data={
                    "notification_id": str(notification.id),
                    "channel": channel_plan.channel,
                    "deferred_reason": channel_plan.deferred_reason,
                },
                priority=priority,
                scheduled_for=channel_plan.scheduled_for,
                notification_id=notification.id,
                user_id=draft.user_id,
                channel=channel_plan.channel,
            )

        await self.store.attach_to_group(notification)
        await self.session.flush()

        NOTIFICATIONS_CREATED.labels(category=draft.category, severity=draft.severity).inc()
        logger.info(
            f"Notification {notification.id} created for user {draft.user_id} "
            f"[{draft.category}/{draft.severity}] channels={channels}"
        )
        return notification

    async def withdraw(self, user_id: str, notification_id) -> int:
        """Cancel a scheduled notification's pending deliveries. Returns jobs removed."""
        notification = await self.store.get(user_id, notification_id)
        removed = await self.queue.cancel_for_notification(notification.id)
        status = dict(notification.delivery_status or {})
        for channel, value in status.items():
            if value == "pending":
                status[channel] = "cancelled"
        notification.delivery_status = status
        await self.session.flush()
        return removed
