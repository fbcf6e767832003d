"""Per-device push subscriptions.

Subscribing the same endpoint again refreshes its keys and reactivates it.
Unsubscribing and gateway rejections deactivate the row rather than delete
it, so the device history stays visible to the user.
"""

import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ventushub.core.errors import NotFoundError
from ventushub.core.timeutil import utcnow
from ventushub.db.upsert import ensure_row
from ventushub.integrations.channels.base import PushDevice
from ventushub.models.preferences import NotificationPreferences, PushSubscription

logger = logging.getLogger(__name__)


class PushSubscriptionService:
    def __init__(self, session: AsyncSession, clock=utcnow):
        self.session = session
        self.clock = clock

    async def subscribe(
        self, user_id: str, endpoint: str, p256dh: str | None = None, auth: str | None = None,
        expiration_time: datetime | None = None, user_agent: str | None = None,
    ) -> PushSubscription:
        now = self.clock()
        subscription = await ensure_row(
            self.session,
            PushSubscription,
            key={"user_id": user_id, "endpoint": endpoint},
            defaults={"is_active": True, "created_at": now, "updated_at": now},
        )
        subscription.p256dh_key = p256dh
        subscription.auth_key = auth
        subscription.expiration_time = expiration_time
        subscription.user_agent = user_agent
        subscription.is_active = True
        subscription.updated_at = now

        # Registering a device turns the push channel back on
        await self.session.execute(
            update(NotificationPreferences)
            .where(NotificationPreferences.user_id == user_id)
            .values(push_enabled=True, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        logger.info(f"Push subscription {subscription.id} registered for user {user_id}")
        return subscription

    async def unsubscribe(self, user_id: str, endpoint: str) -> PushSubscription:
        result = await self.session.execute(
            select(PushSubscription).where(PushSubscription.user_id == user_id, PushSubscription.endpoint == endpoint)
        )
        subscription = result.scalar_one_or_none()
        if subscription is None:
            raise NotFoundError("PushSubscription", endpoint)
        subscription.is_active = False
        subscription.updated_at = self.clock()
        await self.session.flush()
        logger.info(f"Push subscription {subscription.id} removed for user {user_id}")
        return subscription

    async def list_for_user(self, user_id: str) -> list[PushSubscription]:
        result = await self.session.execute(
            select(PushSubscription)
            .where(PushSubscription.user_id == user_id)
            .order_by(PushSubscription.created_at, PushSubscription.endpoint)
        )
        return list(result.scalars().all())

    async def active_devices(self, user_id: str) -> list[PushDevice]:
        """Active, unexpired devices in the shape the push provider sends to."""
        now = self.clock()
        result = await self.session.execute(
            select(PushSubscription).where(
                PushSubscription.user_id == user_id,
                PushSubscription.is_active == True,
            ).order_by(PushSubscription.created_at, PushSubscription.endpoint)
        )
        devices = []
        for s in result.scalars().all():
            if s.expiration_time is not None and s.expiration_time <= now:
                continue
            keys = {"p256dh": s.p256dh_key, "auth": s.auth_key} if s.p256dh_key and s.auth_key else None
            devices.append(PushDevice(endpoint=s.endpoint, keys=keys))
        return devices

    async def mark_used(self, user_id: str, endpoints: list[str]) -> None:
        if not endpoints:
            return
        await self.session.execute(
            update(PushSubscription)
            .where(PushSubscription.user_id == user_id, PushSubscription.endpoint.in_(endpoints))
            .values(last_used_at=self.clock())
            .execution_options(synchronize_session=False)
        )

    async def deactivate(self, user_id: str, endpoints: list[str]) -> int:
        """Deactivate endpoints the gateway reported as unregistered."""
        if not endpoints:
            return 0
        result = await self.session.execute(
            update(PushSubscription)
            .where(
                PushSubscription.user_id == user_id,
                PushSubscription.endpoint.in_(endpoints),
                PushSubscription.is_active == True,
            )
            .values(is_active=False, updated_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(f"Deactivated {result.rowcount} stale push subscription(s) for user {user_id}")
        return result.rowcount
