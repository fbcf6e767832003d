"""Daily delivery metrics.

`recompute` rebuilds one date's partition from the delivery log and is the
authoritative path (run on a schedule). `record` bumps the partition as
individual delivery events land; concurrent increments of the breakdowns may
race, and the next recompute corrects them. Neither path ever touches the
notification store, and a failure here never fails a delivery.
"""

import logging
from datetime import date, datetime, time, timedelta

from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ventushub.core.errors import AggregationError
from ventushub.core.metrics import AGGREGATION_FAILURES
from ventushub.core.timeutil import utcnow
from ventushub.db.upsert import ensure_row
from ventushub.models.delivery import DeliveryLogEntry
from ventushub.models.metrics import MetricsPartition
from ventushub.models.notification import Notification
from ventushub.schemas.enums import DELIVERY_PROGRESSION

logger = logging.getLogger(__name__)

COUNTERS = ("sent", "delivered", "opened", "clicked", "failed", "bounced")

PROGRESSION_COUNTERS = [s for s in DELIVERY_PROGRESSION if s != "pending"]


def rate(numerator: int, denominator: int) -> float:
    """Percentage with two decimals; 0 when there is nothing to divide by."""
    if not denominator:
        return 0.0
    return round(numerator * 100.0 / denominator, 2)


def reached_counters(previous: str | None, status: str) -> list[str]:
    """Counters a status change adds to. Skipped stages count too (sent → clicked adds three)."""
    if status in ("failed", "bounced"):
        return [status]
    if status not in PROGRESSION_COUNTERS:
        return []
    done = PROGRESSION_COUNTERS.index(previous) + 1 if previous in PROGRESSION_COUNTERS else 0
    return PROGRESSION_COUNTERS[done:PROGRESSION_COUNTERS.index(status) + 1]


def _empty() -> dict:
    return {name: 0 for name in COUNTERS}


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time(0, 0))
    return start, start + timedelta(days=1)


def _average_seconds(pairs) -> float | None:
    deltas = [(end - start).total_seconds() for start, end in pairs if start and end and end >= start]
    if not deltas:
        return None
    return round(sum(deltas) / len(deltas), 2)


class MetricsAggregator:
    def __init__(self, session: AsyncSession, clock=utcnow):
        self.session = session
        self.clock = clock

    async def _partition(self, day: date) -> MetricsPartition:
        now = self.clock()
        return await ensure_row(
            self.session,
            MetricsPartition,
            key={"date_partition": day},
            defaults={
                "total_sent": 0, "total_delivered": 0, "total_opened": 0, "total_clicked": 0,
                "total_failed": 0, "total_bounced": 0, "category_metrics": {}, "channel_metrics": {},
                "active_users": 0, "bounce_rate": 0.0, "click_through_rate": 0.0,
                "created_at": now, "updated_at": now,
            },
        )

    async def recompute(self, day: date) -> MetricsPartition:
        try:
            return await self._recompute(day)
        except SQLAlchemyError as e:
            AGGREGATION_FAILURES.labels(mode="recompute").inc()
            raise AggregationError(f"Metrics recompute for {day} failed: {e}") from e

    async def _recompute(self, day: date) -> MetricsPartition:
        start, end = _day_bounds(day)
        in_day = (DeliveryLogEntry.created_at >= start, DeliveryLogEntry.created_at < end)

        rows = await self.session.execute(
            select(
                DeliveryLogEntry.channel,
                Notification.category,
                func.count(DeliveryLogEntry.sent_at),
                func.count(DeliveryLogEntry.delivered_at),
                func.count(DeliveryLogEntry.opened_at),
                func.count(DeliveryLogEntry.clicked_at),
                func.sum(case((DeliveryLogEntry.status == "failed", 1), else_=0)),
                func.sum(case((DeliveryLogEntry.status == "bounced", 1), else_=0)),
            )
            .join(Notification, Notification.id == DeliveryLogEntry.notification_id)
            .where(*in_day)
            .group_by(DeliveryLogEntry.channel, Notification.category)
        )

        totals = _empty()
        by_channel: dict[str, dict] = {}
        by_category: dict[str, dict] = {}
        for channel, category, *counts in rows.all():
            values = dict(zip(COUNTERS, (int(c or 0) for c in counts)))
            for bucket in (totals, by_channel.setdefault(channel, _empty()), by_category.setdefault(category, _empty())):
                for name, value in values.items():
                    bucket[name] += value

        active_users = (await self.session.execute(
            select(func.count(func.distinct(DeliveryLogEntry.user_id))).where(*in_day)
        )).scalar_one()

        read_pairs = (await self.session.execute(
            select(Notification.created_at, Notification.read_at)
            .where(Notification.read_at >= start, Notification.read_at < end)
        )).all()
        delivery_pairs = (await self.session.execute(
            select(DeliveryLogEntry.created_at, DeliveryLogEntry.delivered_at)
            .where(*in_day, DeliveryLogEntry.delivered_at.is_not(None), DeliveryLogEntry.channel != "in_app")
        )).all()

        partition = await self._partition(day)
        partition.total_sent = totals["sent"]
        partition.total_delivered = totals["delivered"]
        partition.total_opened = totals["opened"]
        partition.total_clicked = totals["clicked"]
        partition.total_failed = totals["failed"]
        partition.total_bounced = totals["bounced"]
        partition.channel_metrics = by_channel
        partition.category_metrics = by_category
        partition.active_users = active_users
        partition.avg_time_to_read_seconds = _average_seconds(read_pairs)
        partition.avg_delivery_time_seconds = _average_seconds(delivery_pairs)
        partition.bounce_rate = rate(totals["bounced"], totals["sent"])
        partition.click_through_rate = rate(totals["clicked"], totals["delivered"])
        await self.session.flush()

        logger.info(
            f"Metrics {day}: sent={totals['sent']} delivered={totals['delivered']} "
            f"failed={totals['failed']} bounce={partition.bounce_rate}% ctr={partition.click_through_rate}%"
        )
        return partition

    async def record(
        self, channel: str, category: str, status: str, previous: str | None = None, at: datetime | None = None,
    ) -> MetricsPartition:
        """Increment the partition for one delivery status change from `previous` to `status`."""
        at = at or self.clock()
        try:
            partition = await self._partition(at.date())
            for name in reached_counters(previous, status):
                attr = f"total_{name}"
                setattr(partition, attr, getattr(partition, attr) + 1)
                for breakdown_attr, key in (("channel_metrics", channel), ("category_metrics", category)):
                    breakdown = {k: dict(v) for k, v in (getattr(partition, breakdown_attr) or {}).items()}
                    bucket = breakdown.setdefault(key, _empty())
                    bucket[name] = bucket.get(name, 0) + 1
                    setattr(partition, breakdown_attr, breakdown)
            partition.bounce_rate = rate(partition.total_bounced, partition.total_sent)
            partition.click_through_rate = rate(partition.total_clicked, partition.total_delivered)
            await self.session.flush()
            return partition
        except SQLAlchemyError as e:
            AGGREGATION_FAILURES.labels(mode="incremental").inc()
            raise AggregationError(f"Metrics increment failed: {e}") from e

    async def list_range(self, start: date, end: date) -> list[MetricsPartition]:
        result = await self.session.execute(
            select(MetricsPartition)
            .where(MetricsPartition.date_partition >= start, MetricsPartition.date_partition <= end)
            .order_by(MetricsPartition.date_partition)
        )
        return list(result.scalars().all())


async def record_delivery_event(
    session_factory: async_sessionmaker, channel: str, category: str, status: str,
    previous: str | None = None, at: datetime | None = None,
) -> None:
    """Bump today's partition in its own transaction. Never raises."""
    try:
        async with session_factory() as session:
            await MetricsAggregator(session).record(channel, category, status, previous, at)
            await session.commit()
    except Exception as e:
        logger.warning(f"Incremental metrics update skipped ({channel}/{category}/{status}): {e}")
