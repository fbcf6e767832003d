"""Preferences gate.

Decides, per notification and user, whether the notification is created at
all and which external channels get a delivery job, and when. In-app is never
gated by channel flags, quiet hours or the daily cap: the notification row is
the in-app copy.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ventushub.config import Settings, get_settings
from ventushub.core.timeutil import (
    get_zone, local_midnight_utc, next_digest_boundary, parse_hhmm, quiet_hours_end, utcnow,
)
from ventushub.db.upsert import ensure_row
from ventushub.integrations.channels.base import DeliveryTarget
from ventushub.models.delivery import QueueJob
from ventushub.models.preferences import NotificationPreferences
from ventushub.schemas.enums import EXTERNAL_CHANNELS, SEVERITY_RANK
from ventushub.services.notification_store import NotificationStore
from ventushub.services.push_subscriptions import PushSubscriptionService

logger = logging.getLogger(__name__)

CHANNEL_FLAGS = {"email": "email_enabled", "push": "push_enabled", "sms": "sms_enabled"}


def default_preferences(settings: Settings | None = None) -> dict:
    settings = settings or get_settings()
    return {
        "global_enabled": True,
        "quiet_hours_start": None,
        "quiet_hours_end": None,
        "timezone": settings.default_timezone,
        "email_enabled": True,
        "push_enabled": True,
        "sms_enabled": False,
        "category_preferences": {},
        "digest_frequency": "instant",
        "max_notifications_per_day": 50,
        "grouping_enabled": True,
        "auto_archive_days": 30,
        "sound_enabled": True,
        "vibration_enabled": True,
        "smart_delivery_enabled": True,
        "priority_filtering": False,
        "duplicate_detection": True,
    }


@dataclass
class ChannelPlan:
    channel: str
    job_type: str
    scheduled_for: datetime
    deferred_reason: str | None = None


@dataclass
class DeliveryPlan:
    create: bool = True
    channels: list[ChannelPlan] = field(default_factory=list)
    dropped: dict[str, str] = field(default_factory=dict)  # channel -> reason
    reason: str | None = None
    grouping_enabled: bool = True


class PreferencesGate:
    def __init__(self, session: AsyncSession, settings: Settings | None = None, clock=utcnow):
        self.session = session
        self.settings = settings or get_settings()
        self.clock = clock

    async def get(self, user_id: str) -> NotificationPreferences:
        """The user's preferences row, or an unsaved row holding the defaults."""
        result = await self.session.execute(
            select(NotificationPreferences).where(NotificationPreferences.user_id == user_id)
        )
        prefs = result.scalar_one_or_none()
        if prefs is None:
            prefs = NotificationPreferences(user_id=user_id, **default_preferences(self.settings))
        return prefs

    async def target(self, user_id: str) -> DeliveryTarget:
        """The user's external addresses: preferences contacts plus active push devices."""
        prefs = await self.get(user_id)
        return DeliveryTarget(
            user_id=user_id,
            email=prefs.email_address,
            phone=prefs.phone_number,
            push_token=prefs.push_token,
            push_devices=await PushSubscriptionService(self.session, clock=self.clock).active_devices(user_id),
            locale=self.settings.default_locale,
            timezone=prefs.timezone,
        )

    async def upsert(self, user_id: str, changes: dict) -> NotificationPreferences:
        now = self.clock()
        prefs = await ensure_row(
            self.session,
            NotificationPreferences,
            key={"user_id": user_id},
            defaults={**default_preferences(self.settings), "created_at": now, "updated_at": now},
        )
        for attr, value in changes.items():
            setattr(prefs, attr, value)
        await self.session.flush()
        return prefs

    async def sent_today(self, prefs: NotificationPreferences, now: datetime) -> int:
        """Notifications with at least one external job since the user's local midnight."""
        since = local_midnight_utc(now, get_zone(prefs.timezone, self.settings.default_timezone))
        result = await self.session.execute(
            select(func.count(func.distinct(QueueJob.notification_id))).where(
                QueueJob.user_id == prefs.user_id,
                QueueJob.created_at >= since,
                QueueJob.status != "cancelled",
                QueueJob.channel.in_(EXTERNAL_CHANNELS),
            )
        )
        return result.scalar_one()

    async def plan(
        self,
        user_id: str,
        category: str,
        severity: str,
        channels: list[str],
        title: str | None = None,
        message: str | None = None,
        related_entity: str | None = None,
        related_id: int | None = None,
        not_before: datetime | None = None,
    ) -> DeliveryPlan:
        prefs = await self.get(user_id)
        now = self.clock()
        plan = DeliveryPlan(grouping_enabled=prefs.grouping_enabled)

        category_prefs = (prefs.category_preferences or {}).get(category) or {}
        if category_prefs.get("enabled") is False:
            plan.create = False
            plan.reason = "category_disabled"
            return plan

        if prefs.duplicate_detection and title is not None:
            store = NotificationStore(self.session, clock=self.clock)
            duplicate = await store.find_duplicate(user_id, title, message, related_entity, related_id)
            if duplicate is not None:
                plan.create = False
                plan.reason = "duplicate"
                return plan

        external = []
        for channel in channels:
            if channel in EXTERNAL_CHANNELS and channel not in external:
                external.append(channel)

        critical = severity == "critical"
        kept = []
        for channel in external:
            if not prefs.global_enabled:
                plan.dropped[channel] = "global_disabled"
            elif not getattr(prefs, CHANNEL_FLAGS[channel]):
                plan.dropped[channel] = "channel_disabled"
            elif category_prefs.get(channel) is False:
                plan.dropped[channel] = "category_channel_disabled"
            elif prefs.priority_filtering and SEVERITY_RANK.get(severity, 1) < SEVERITY_RANK["normal"]:
                plan.dropped[channel] = "priority_filtered"
            else:
                kept.append(channel)

        if kept and not critical:
            if await self.sent_today(prefs, now) >= prefs.max_notifications_per_day:
                for channel in kept:
                    plan.dropped[channel] = "daily_cap"
                kept = []

        zone = get_zone(prefs.timezone, self.settings.default_timezone)
        start = parse_hhmm(prefs.quiet_hours_start)
        end = parse_hhmm(prefs.quiet_hours_end)
        base = max(now, not_before) if not_before else now

        for channel in kept:
            job_type = "send_notification"
            due = base
            reason = None
            if channel == "email" and prefs.digest_frequency != "instant" and not critical:
                job_type = "process_digest"
                due = next_digest_boundary(base, prefs.digest_frequency, zone)
                reason = "digest"
            if not critical:
                quiet_end = quiet_hours_end(due, start, end, zone)
                if quiet_end is not None:
                    due = quiet_end
                    reason = reason or "quiet_hours"
            plan.channels.append(ChannelPlan(channel=channel, job_type=job_type, scheduled_for=due, deferred_reason=reason))

        if plan.dropped:
            logger.info(f"Channels dropped for user {user_id}: {plan.dropped}")
        return plan
