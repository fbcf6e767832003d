"""Delivery log status changes after the initial send.

Statuses only move forward along pending → sent → delivered → opened →
clicked. Failed and bounced are terminal. A callback that would move a row
backwards, or out of a terminal state, is ignored rather than rejected:
providers deliver callbacks out of order.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ventushub.core.errors import NotFoundError
from ventushub.core.metrics import DELIVERY_EVENTS
from ventushub.core.timeutil import to_naive_utc, utcnow
from ventushub.models.delivery import DeliveryLogEntry
from ventushub.models.notification import Notification
from ventushub.schemas.enums import DELIVERY_PROGRESSION, TERMINAL_DELIVERY_STATUSES

logger = logging.getLogger(__name__)

_TIMESTAMPS = {
    "sent": "sent_at",
    "delivered": "delivered_at",
    "opened": "opened_at",
    "clicked": "clicked_at",
}


def can_advance(current: str, new: str) -> bool:
    if current in TERMINAL_DELIVERY_STATUSES:
        return False
    if new in TERMINAL_DELIVERY_STATUSES:
        # A bounce or failure can only be reported for a message not yet confirmed delivered
        return current in ("pending", "sent")
    return DELIVERY_PROGRESSION.index(new) > DELIVERY_PROGRESSION.index(current)


def advance_status(entry: DeliveryLogEntry, new: str, at) -> bool:
    """Move `entry` to `new` if that is a forward step, filling in skipped timestamps."""
    if not can_advance(entry.status, new):
        return False
    if new in _TIMESTAMPS:
        target = DELIVERY_PROGRESSION.index(new)
        for status in DELIVERY_PROGRESSION[1:target + 1]:
            attr = _TIMESTAMPS[status]
            if getattr(entry, attr) is None:
                setattr(entry, attr, at)
    entry.status = new
    DELIVERY_EVENTS.labels(channel=entry.channel, status=new).inc()
    return True


class DeliveryLogService:
    def __init__(self, session: AsyncSession, clock=utcnow):
        self.session = session
        self.clock = clock

    async def get(self, log_id, user_id: str | None = None) -> DeliveryLogEntry:
        query = select(DeliveryLogEntry).where(DeliveryLogEntry.id == log_id)
        if user_id is not None:
            query = query.where(DeliveryLogEntry.user_id == user_id)
        entry = (await self.session.execute(query)).scalar_one_or_none()
        if entry is None:
            raise NotFoundError("DeliveryLogEntry", log_id)
        return entry

    async def list_for_notification(self, notification_id, user_id: str | None = None) -> list[DeliveryLogEntry]:
        query = select(DeliveryLogEntry).where(DeliveryLogEntry.notification_id == notification_id)
        if user_id is not None:
            query = query.where(DeliveryLogEntry.user_id == user_id)
        result = await self.session.execute(query.order_by(DeliveryLogEntry.created_at, DeliveryLogEntry.id))
        return list(result.scalars().all())

    async def record_open(self, log_id, user_id: str | None = None) -> DeliveryLogEntry:
        entry = await self.get(log_id, user_id)
        now = self.clock()
        entry.interaction_count += 1
        advance_status(entry, "opened", now)
        await self._sync_notification(entry)
        await self.session.flush()
        return entry

    async def record_click(self, log_id, user_id: str | None = None) -> DeliveryLogEntry:
        """A click implies an open."""
        entry = await self.get(log_id, user_id)
        now = self.clock()
        entry.interaction_count += 1
        advance_status(entry, "clicked", now)
        await self._sync_notification(entry)
        await self.session.flush()
        return entry

    async def find_by_external_id(self, provider: str, external_id: str) -> DeliveryLogEntry | None:
        result = await self.session.execute(
            select(DeliveryLogEntry)
            .where(DeliveryLogEntry.provider == provider, DeliveryLogEntry.external_id == external_id)
            .order_by(DeliveryLogEntry.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def apply_provider_status(
        self, provider: str, external_id: str, status: str,
        error_message: str | None = None, occurred_at=None,
    ) -> DeliveryLogEntry | None:
        """Apply a provider callback to the newest log row with that external id."""
        entry = await self.find_by_external_id(provider, external_id)
        if entry is None:
            logger.warning(f"Callback from {provider} for unknown message {external_id}")
            return None

        at = occurred_at or self.clock()
        if at.tzinfo is not None:
            at = to_naive_utc(at)
        if status in ("opened", "clicked"):
            entry.interaction_count += 1
        if not advance_status(entry, status, at):
            logger.info(f"Ignored {provider} callback {entry.status} → {status} for log {entry.id}")
            await self.session.flush()
            return entry
        if status == "bounced":
            entry.error_message = error_message or "Bounced"
        await self._sync_notification(entry)
        await self.session.flush()
        return entry

    async def _sync_notification(self, entry: DeliveryLogEntry) -> None:
        notification = await self.session.get(Notification, entry.notification_id)
        if notification is None:
            return
        notification.delivery_status = {**(notification.delivery_status or {}), entry.channel: entry.status}
