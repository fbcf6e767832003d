"""Delivery worker.

Claims due queue jobs and hands each to its channel provider. Every attempt,
successful or not, leaves one delivery log row. Provider calls run under a
timeout and behind the channel's circuit breaker, so a hung or failing
provider costs one attempt, never the polling loop.

Each job is processed in its own transaction: the claim is committed first,
then the attempt and its bookkeeping.
"""

import asyncio
import logging
import time

from sqlalchemy.ext.asyncio import async_sessionmaker

from ventushub.config import Settings, get_settings
from ventushub.core.errors import DeliveryError, DeliveryFatalError
from ventushub.core.metrics import DELIVERY_LATENCY
from ventushub.core.timeutil import utcnow
from ventushub.integrations.channels.base import DeliveryResult, DeliveryTarget
from ventushub.integrations.channels.factory import ChannelRegistry
from ventushub.models.delivery import DeliveryLogEntry, QueueJob
from ventushub.models.notification import Notification
from ventushub.services.delivery_queue import DeliveryQueue
from ventushub.services.housekeeping import cleanup_expired
from ventushub.services.metrics_aggregator import record_delivery_event
from ventushub.services.preferences import PreferencesGate
from ventushub.services.push_subscriptions import PushSubscriptionService

logger = logging.getLogger(__name__)


class DeliveryWorker:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        registry: ChannelRegistry | None = None,
        settings: Settings | None = None,
        clock=utcnow,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.registry = registry or ChannelRegistry(self.settings)
        self.clock = clock

    # ── Loop ──

    async def run_once(self, batch_size: int | None = None) -> int:
        """Claim and process one batch. Returns the number of jobs processed."""
        limit = batch_size or self.settings.worker_batch_size
        async with self.session_factory() as session:
            queue = DeliveryQueue(session, self.settings, clock=self.clock)
            jobs = await queue.claim(limit)
            digests = await queue.claim_digests()
            await session.commit()
            job_ids = [job.id for job in jobs]
            digest_ids = [[job.id for job in batch] for batch in digests]

        # One bad job must not strand the rest of the batch in `processing`
        for job_id in job_ids:
            try:
                await self.process_job(job_id)
            except Exception as e:
                logger.exception(f"Job {job_id}: processing failed: {e}")
        for batch in digest_ids:
            try:
                await self.process_digest(batch)
            except Exception as e:
                logger.exception(f"Digest batch {batch}: processing failed: {e}")
        return len(job_ids) + sum(len(batch) for batch in digest_ids)

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        """Poll until `stop_event` is set. Sleeps only when a poll found nothing."""
        stop_event = stop_event or asyncio.Event()
        logger.info("Delivery worker started")
        while not stop_event.is_set():
            try:
                processed = await self.run_once()
            except Exception as e:
                logger.exception(f"Delivery worker poll failed: {e}")
                processed = 0
            if processed == 0:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self.settings.worker_poll_interval_seconds)
                except asyncio.TimeoutError:
                    pass
        logger.info("Delivery worker stopped")

    # ── Jobs ──

    async def process_job(self, job_id) -> str:
        """Run one claimed job. Returns the job's final status for this attempt."""
        async with self.session_factory() as session:
            queue = DeliveryQueue(session, self.settings, clock=self.clock)
            job = await session.get(QueueJob, job_id)
            if job is None:
                # Deleted with its notification after the claim
                logger.info(f"Job {job_id}: gone before processing, skipped")
                return "gone"

            if job.job_type == "cleanup_expired":
                await cleanup_expired(session, clock=self.clock)
                await queue.complete(job)
                await session.commit()
                return job.status

            notification = await session.get(Notification, job.notification_id) if job.notification_id else None
            if notification is None:
                await queue.fail(job, "Notification no longer exists", fatal=True)
                await session.commit()
                return job.status
            if notification.expires_at is not None and notification.expires_at <= self.clock():
                job.status = "cancelled"
                job.last_error = "Notification expired before delivery"
                job.completed_at = self.clock()
                await session.commit()
                return job.status

            target = await self._target(session, job.user_id or notification.user_id)
            started = self.clock()
            try:
                result = await self._attempt(job.channel, lambda provider: provider.send(notification, target))
            except DeliveryError as e:
                status = await self._record_failure(session, queue, job, [notification], e, started)
                if job.channel == "push":
                    await self._sync_push_devices(session, target, e.stale_endpoints, delivered=False)
                await session.commit()
                await self._record_metrics([(job.channel, notification.category, "failed", None)])
                return status

            self._record_success(session, job, notification, result, started)
            if job.channel == "push":
                await self._sync_push_devices(session, target, result.stale_endpoints, delivered=True)
            await queue.complete(job)
            await session.commit()
            await self._record_metrics([(job.channel, notification.category, result.status, None)])
            logger.info(f"Job {job.id}: {job.channel} delivered for notification {notification.id} ({result.external_id})")
            return job.status

    async def process_digest(self, job_ids: list) -> str:
        """Send one combined email for a user's batch of digest jobs."""
        async with self.session_factory() as session:
            queue = DeliveryQueue(session, self.settings, clock=self.clock)
            jobs = [job for job in [await session.get(QueueJob, job_id) for job_id in job_ids] if job is not None]
            if not jobs:
                logger.info(f"Digest batch {job_ids}: all jobs gone before processing, skipped")
                return "gone"
            pairs = []
            for job in jobs:
                notification = await session.get(Notification, job.notification_id) if job.notification_id else None
                if notification is None:
                    await queue.fail(job, "Notification no longer exists", fatal=True)
                else:
                    pairs.append((job, notification))
            if not pairs:
                await session.commit()
                return "failed"

            notifications = [n for _, n in pairs]
            target = await self._target(session, jobs[0].user_id or notifications[0].user_id)
            started = self.clock()
            try:
                result = await self._attempt("email", lambda provider: provider.send_digest(notifications, target))
            except DeliveryError as e:
                status = "failed"
                for job, notification in pairs:
                    status = await self._record_failure(session, queue, job, [notification], e, started)
                await session.commit()
                await self._record_metrics([("email", n.category, "failed", None) for n in notifications])
                return status

            for job, notification in pairs:
                self._record_success(session, job, notification, result, started, digest=True)
                await queue.complete(job)
            await session.commit()
            await self._record_metrics([("email", n.category, result.status, None) for n in notifications])
            logger.info(f"Digest of {len(pairs)} notification(s) sent to user {jobs[0].user_id}")
            return "completed"

    # ── Helpers ──

    async def _target(self, session, user_id: str) -> DeliveryTarget:
        return await PreferencesGate(session, self.settings, clock=self.clock).target(user_id)

    async def _sync_push_devices(self, session, target: DeliveryTarget, stale: list[str], delivered: bool) -> None:
        subscriptions = PushSubscriptionService(session, clock=self.clock)
        await subscriptions.deactivate(target.user_id, stale)
        if delivered:
            await subscriptions.mark_used(
                target.user_id, [d.endpoint for d in target.push_devices if d.endpoint not in stale]
            )

    async def _attempt(self, channel: str, call) -> DeliveryResult:
        """Call the provider behind its breaker and the delivery timeout."""
        provider = self.registry.get(channel)
        breaker = self.registry.breakers.get(channel)
        breaker.guard()
        started = time.monotonic()
        try:
            result = await asyncio.wait_for(call(provider), timeout=self.settings.delivery_timeout_seconds)
        except asyncio.TimeoutError as e:
            breaker.record_failure()
            raise DeliveryError(
                f"{provider.name} timed out after {self.settings.delivery_timeout_seconds}s",
                channel=channel, provider=provider.name,
            ) from e
        except DeliveryFatalError:
            raise
        except DeliveryError:
            breaker.record_failure()
            raise
        except Exception as e:
            breaker.record_failure()
            raise DeliveryError(f"{provider.name} raised {type(e).__name__}: {e}", channel=channel, provider=provider.name) from e
        finally:
            DELIVERY_LATENCY.labels(channel=channel).observe(time.monotonic() - started)
        breaker.record_success()
        if not result.status:
            result.status = "sent"
        return result

    def _record_success(self, session, job: QueueJob, notification: Notification, result: DeliveryResult,
                        started, digest: bool = False) -> None:
        now = self.clock()
        session.add(DeliveryLogEntry(
            notification_id=notification.id,
            user_id=notification.user_id,
            channel=job.channel,
            status=result.status,
            provider=self.registry.providers[job.channel].name,
            external_id=result.external_id,
            payload={"job_id": str(job.id), "digest": digest},
            retry_count=job.attempts - 1,
            scheduled_at=job.scheduled_for,
            sent_at=now,
            delivered_at=now if result.status == "delivered" else None,
            created_at=started,
        ))
        notification.delivery_status = {**(notification.delivery_status or {}), job.channel: result.status}

    async def _record_failure(self, session, queue: DeliveryQueue, job: QueueJob, notifications: list,
                              error: DeliveryError, started) -> str:
        fatal = isinstance(error, DeliveryFatalError)
        for notification in notifications:
            session.add(DeliveryLogEntry(
                notification_id=notification.id,
                user_id=notification.user_id,
                channel=job.channel,
                status="failed",
                provider=error.provider,
                payload={"job_id": str(job.id), "attempt": job.attempts, "fatal": fatal},
                error_message=str(error),
                retry_count=job.attempts - 1,
                scheduled_at=job.scheduled_for,
                created_at=started,
            ))
        status = await queue.fail(job, str(error), fatal=fatal)
        for notification in notifications:
            notification.delivery_status = {
                **(notification.delivery_status or {}),
                job.channel: "failed" if status == "failed" else "retrying",
            }
        logger.error(
            f"Job {job.id}: {job.channel} delivery failed for notification "
            f"{', '.join(str(n.id) for n in notifications)} (attempt {job.attempts}/{job.max_attempts}): {error}"
        )
        return status

    async def _record_metrics(self, events: list[tuple]) -> None:
        for channel, category, status, previous in events:
            await record_delivery_event(self.session_factory, channel, category, status, previous, self.clock())

    async def queue_cleanup(self) -> QueueJob:
        """Schedule a cleanup_expired job on the queue."""
        async with self.session_factory() as session:
            job = await DeliveryQueue(session, self.settings, clock=self.clock).enqueue("cleanup_expired", data={})
            await session.commit()
            return job
