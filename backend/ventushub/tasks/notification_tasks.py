"""Celery entry points for the notification pipeline.

Tasks are synchronous and drive the async services on a fresh event loop.
Each run gets its own engine: asyncpg connections cannot cross event loops.
"""

import asyncio
import logging
from datetime import date, timedelta
from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from ventushub.config import get_settings
from ventushub.core.timeutil import utcnow
from ventushub.integrations.channels.factory import ChannelRegistry
from ventushub.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

MAX_BATCHES_PER_POLL = 10


async def _with_sessions(work):
    settings = get_settings()
    engine = create_async_engine(settings.database_url, poolclass=NullPool)
    try:
        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        return await work(factory)
    finally:
        await engine.dispose()


@lru_cache
def worker_registry() -> ChannelRegistry:
    """Providers and circuit breakers for this worker process; breaker state persists across tasks."""
    return ChannelRegistry(get_settings())


@celery_app.task(name="tasks.process_event")
def process_event(activity_id: str):
    """Evaluate triggers for a logged event."""
    import uuid
    from ventushub.services.events import EventIngestor

    async def _run(factory):
        return await EventIngestor(factory, get_settings()).process(uuid.UUID(activity_id))

    try:
        count = asyncio.run(_with_sessions(_run))
        logger.info(f"Event {activity_id} processed: {count} notification(s)")
        return {"status": "ok", "notifications": count}
    except Exception as e:
        logger.error(f"Trigger processing failed for event {activity_id}: {e}", exc_info=True)
        return {"status": "error", "message": str(e)}


@celery_app.task(name="tasks.poll_delivery_queue")
def poll_delivery_queue():
    """Drain due delivery jobs, a bounded number of batches per run."""
    from ventushub.services.delivery_worker import DeliveryWorker

    async def _run(factory):
        worker = DeliveryWorker(factory, worker_registry(), get_settings())
        total = 0
        for _ in range(MAX_BATCHES_PER_POLL):
            processed = await worker.run_once()
            total += processed
            if processed == 0:
                break
        return total

    try:
        processed = asyncio.run(_with_sessions(_run))
        if processed:
            logger.info(f"Delivery poll processed {processed} job(s)")
        return {"status": "ok", "processed": processed}
    except Exception as e:
        logger.error(f"Delivery poll failed: {e}", exc_info=True)
        return {"status": "error", "message": str(e)}


@celery_app.task(name="tasks.requeue_stale_jobs")
def requeue_stale_jobs():
    """Return jobs abandoned by a crashed worker to the queue."""
    from ventushub.services.delivery_queue import DeliveryQueue

    async def _run(factory):
        async with factory() as session:
            count = await DeliveryQueue(session, get_settings()).requeue_stale()
            await session.commit()
            return count

    try:
        return {"status": "ok", "requeued": asyncio.run(_with_sessions(_run))}
    except Exception as e:
        logger.error(f"Stale job sweep failed: {e}", exc_info=True)
        return {"status": "error", "message": str(e)}


@celery_app.task(name="tasks.aggregate_metrics")
def aggregate_metrics(days_ago: int = 0, day: str | None = None):
    """Recompute one date's metrics partition (today by default).

    Failures are logged and left for the next scheduled run.
    """
    from ventushub.core.errors import AggregationError
    from ventushub.services.metrics_aggregator import MetricsAggregator

    target = date.fromisoformat(day) if day else utcnow().date() - timedelta(days=days_ago)

    async def _run(factory):
        async with factory() as session:
            partition = await MetricsAggregator(session).recompute(target)
            await session.commit()
            return {"sent": partition.total_sent, "delivered": partition.total_delivered}

    try:
        totals = asyncio.run(_with_sessions(_run))
        return {"status": "ok", "date": target.isoformat(), **totals}
    except AggregationError as e:
        logger.error(f"Metrics aggregation for {target} failed, will retry next run: {e}")
        return {"status": "error", "date": target.isoformat(), "message": str(e)}


@celery_app.task(name="tasks.cleanup_notifications")
def cleanup_notifications():
    """Delete expired notifications and auto-archive old read ones."""
    from ventushub.services.housekeeping import auto_archive, cleanup_expired

    async def _run(factory):
        async with factory() as session:
            removed = await cleanup_expired(session)
            archived = await auto_archive(session)
            await session.commit()
            return {"removed": removed, "archived": archived}

    try:
        return {"status": "ok", **asyncio.run(_with_sessions(_run))}
    except Exception as e:
        logger.error(f"Notification cleanup failed: {e}", exc_info=True)
        return {"status": "error", "message": str(e)}
