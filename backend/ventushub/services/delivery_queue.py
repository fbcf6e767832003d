"""Delivery queue: enqueue, claim, complete, fail with backoff, cancel.

Claiming is at-most-once across concurrent workers. Candidates are selected
with FOR UPDATE SKIP LOCKED where the database supports it, and each one is
then taken with a compare-and-swap UPDATE guarded by ``status = 'pending'``.
Only the worker whose UPDATE matched a row owns the job.

Attempts count claims. A job is never claimed once ``attempts`` reaches
``max_attempts``; the failure that brings it there marks it ``failed``.
"""

import logging
import random
from datetime import datetime, timedelta

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ventushub.config import Settings, get_settings
from ventushub.core.metrics import QUEUE_JOBS
from ventushub.core.timeutil import utcnow
from ventushub.models.delivery import QueueJob

logger = logging.getLogger(__name__)


def compute_backoff(attempts: int, base: float, max_delay: float, jitter: float, rng=random.random) -> float:
    """Seconds to wait before the next attempt: exponential, capped, with up to `jitter` extra."""
    delay = min(max_delay, base * (2 ** max(attempts - 1, 0)))
    return delay * (1 + rng() * jitter)


class DeliveryQueue:
    def __init__(self, session: AsyncSession, settings: Settings | None = None, clock=utcnow, rng=random.random):
        self.session = session
        self.settings = settings or get_settings()
        self.clock = clock
        self.rng = rng

    async def enqueue(
        self,
        job_type: str,
        data: dict,
        priority: int = 0,
        scheduled_for: datetime | None = None,
        notification_id=None,
        user_id: str | None = None,
        channel: str | None = None,
        max_attempts: int | None = None,
    ) -> QueueJob:
        now = self.clock()
        job = QueueJob(
            job_type=job_type,
            data=data,
            priority=priority,
            scheduled_for=scheduled_for or now,
            notification_id=notification_id,
            user_id=user_id,
            channel=channel,
            status="pending",
            attempts=0,
            max_attempts=max_attempts or self.settings.queue_max_attempts,
            created_at=now,
            updated_at=now,
        )
        self.session.add(job)
        await self.session.flush()
        QUEUE_JOBS.labels(channel=channel or "-", transition="enqueued").inc()
        return job

    async def _take(self, job_id, now: datetime) -> QueueJob | None:
        """Compare-and-swap one job from pending to processing."""
        result = await self.session.execute(
            update(QueueJob)
            .where(
                QueueJob.id == job_id,
                QueueJob.status == "pending",
                QueueJob.attempts < QueueJob.max_attempts,
            )
            .values(status="processing", attempts=QueueJob.attempts + 1, processed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        job = await self.session.get(QueueJob, job_id, populate_existing=True)
        QUEUE_JOBS.labels(channel=job.channel or "-", transition="claimed").inc()
        return job

    async def claim(self, limit: int = 1) -> list[QueueJob]:
        """Claim up to `limit` due jobs, highest priority first, then earliest due."""
        now = self.clock()
        candidates = await self.session.execute(
            select(QueueJob.id)
            .where(
                QueueJob.status == "pending",
                QueueJob.scheduled_for <= now,
                QueueJob.job_type != "process_digest",
            )
            .order_by(QueueJob.priority.desc(), QueueJob.scheduled_for.asc(), QueueJob.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        claimed = []
        for job_id in candidates.scalars().all():
            job = await self._take(job_id, now)
            if job is not None:
                claimed.append(job)
        return claimed

    async def claim_digests(self, limit: int = 10) -> list[list[QueueJob]]:
        """Claim due digest jobs batched per user: one batch becomes one email."""
        now = self.clock()
        users = await self.session.execute(
            select(QueueJob.user_id)
            .where(
                QueueJob.status == "pending",
                QueueJob.job_type == "process_digest",
                QueueJob.scheduled_for <= now,
            )
            .group_by(QueueJob.user_id)
            .order_by(func.min(QueueJob.scheduled_for))
            .limit(limit)
        )
        batches = []
        for user_id in users.scalars().all():
            ids = await self.session.execute(
                select(QueueJob.id)
                .where(
                    QueueJob.status == "pending",
                    QueueJob.job_type == "process_digest",
                    QueueJob.user_id == user_id,
                    QueueJob.scheduled_for <= now,
                )
                .order_by(QueueJob.scheduled_for.asc(), QueueJob.id)
                .with_for_update(skip_locked=True)
            )
            batch = []
            for job_id in ids.scalars().all():
                job = await self._take(job_id, now)
                if job is not None:
                    batch.append(job)
            if batch:
                batches.append(batch)
        return batches

    async def complete(self, job: QueueJob) -> None:
        now = self.clock()
        job.status = "completed"
        job.completed_at = now
        job.last_error = None
        await self.session.flush()
        QUEUE_JOBS.labels(channel=job.channel or "-", transition="completed").inc()

    async def fail(self, job: QueueJob, error: str, fatal: bool = False) -> str:
        """Record a failed attempt. Returns the job's new status."""
        now = self.clock()
        job.last_error = error
        if fatal or job.attempts >= job.max_attempts:
            job.status = "failed"
            job.failure_reason = "fatal" if fatal else "max_attempts"
            job.completed_at = now
            QUEUE_JOBS.labels(channel=job.channel or "-", transition="failed").inc()
            logger.warning(
                f"Job {job.id} ({job.channel}) failed permanently after {job.attempts} attempt(s): {error}"
            )
        else:
            delay = compute_backoff(
                job.attempts,
                self.settings.queue_backoff_base_seconds,
                self.settings.queue_backoff_max_seconds,
                self.settings.queue_backoff_jitter,
                self.rng,
            )
            job.status = "pending"
            job.scheduled_for = now + timedelta(seconds=delay)
            QUEUE_JOBS.labels(channel=job.channel or "-", transition="retried").inc()
            logger.info(f"Job {job.id} ({job.channel}) attempt {job.attempts} failed, retry in {delay:.0f}s: {error}")
        await self.session.flush()
        return job.status

    async def cancel_for_notification(self, notification_id) -> int:
        """Withdraw a notification's not-yet-claimed jobs. Processing jobs are left alone."""
        result = await self.session.execute(
            delete(QueueJob)
            .where(QueueJob.notification_id == notification_id, QueueJob.status == "pending")
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            QUEUE_JOBS.labels(channel="-", transition="cancelled").inc(result.rowcount)
        return result.rowcount

    async def requeue_stale(self, timeout_minutes: int | None = None) -> int:
        """Return jobs stuck in processing (crashed worker) to pending, or fail them if out of attempts."""
        now = self.clock()
        cutoff = now - timedelta(minutes=timeout_minutes or self.settings.stale_job_timeout_minutes)
        stale = QueueJob.status == "processing", QueueJob.processed_at < cutoff

        exhausted = await self.session.execute(
            update(QueueJob)
            .where(*stale, QueueJob.attempts >= QueueJob.max_attempts)
            .values(status="failed", failure_reason="stale", last_error="Worker did not finish the job",
                    completed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        requeued = await self.session.execute(
            update(QueueJob)
            .where(*stale)
            .values(status="pending", scheduled_for=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if exhausted.rowcount or requeued.rowcount:
            logger.warning(f"Stale jobs: {requeued.rowcount} requeued, {exhausted.rowcount} failed")
        return requeued.rowcount

    async def stats(self) -> dict:
        result = await self.session.execute(
            select(QueueJob.status, func.count()).group_by(QueueJob.status)
        )
        return {status: count for status, count in result.all()}
