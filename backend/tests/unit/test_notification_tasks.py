"""Tests for the Celery entry points (called directly, services patched)."""

import uuid
from datetime import date
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ventushub.core.errors import AggregationError
from ventushub.services.delivery_worker import DeliveryWorker
from ventushub.services.events import EventIngestor
from ventushub.services.metrics_aggregator import MetricsAggregator
from ventushub.tasks import notification_tasks


@pytest.fixture
def fake_sessions():
    session = AsyncMock()
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = session

    async def _with_sessions(work):
        return await work(factory)

    with patch.object(notification_tasks, "_with_sessions", _with_sessions):
        yield session


class TestProcessEvent:
    def test_returns_notification_count(self, fake_sessions):
        activity_id = uuid.uuid4()
        with patch.object(EventIngestor, "process", new=AsyncMock(return_value=2)) as process:
            result = notification_tasks.process_event(str(activity_id))
        assert result == {"status": "ok", "notifications": 2}
        process.assert_awaited_once_with(activity_id)

    def test_failure_is_reported_not_raised(self, fake_sessions):
        with patch.object(EventIngestor, "process", new=AsyncMock(side_effect=RuntimeError("db down"))):
            result = notification_tasks.process_event(str(uuid.uuid4()))
        assert result["status"] == "error"
        assert "db down" in result["message"]


class TestPollDeliveryQueue:
    def test_drains_until_empty(self, fake_sessions):
        run_once = AsyncMock(side_effect=[20, 5, 0])
        with patch.object(DeliveryWorker, "run_once", new=run_once):
            result = notification_tasks.poll_delivery_queue()
        assert result == {"status": "ok", "processed": 25}
        assert run_once.await_count == 3

    def test_bounded_batches(self, fake_sessions):
        run_once = AsyncMock(return_value=1)
        with patch.object(DeliveryWorker, "run_once", new=run_once):
            result = notification_tasks.poll_delivery_queue()
        assert result["processed"] == notification_tasks.MAX_BATCHES_PER_POLL

    def test_error(self, fake_sessions):
        with patch.object(DeliveryWorker, "run_once", new=AsyncMock(side_effect=RuntimeError("boom"))):
            assert notification_tasks.poll_delivery_queue()["status"] == "error"


class TestAggregateMetrics:
    def test_explicit_day(self, fake_sessions):
        recompute = AsyncMock(return_value=SimpleNamespace(total_sent=3, total_delivered=2))
        with patch.object(MetricsAggregator, "recompute", new=recompute):
            result = notification_tasks.aggregate_metrics(day="2026-03-10")
        assert result == {"status": "ok", "date": "2026-03-10", "sent": 3, "delivered": 2}
        recompute.assert_awaited_once_with(date(2026, 3, 10))
        fake_sessions.commit.assert_awaited_once()

    def test_aggregation_error_left_for_next_run(self, fake_sessions):
        failing = AsyncMock(side_effect=AggregationError("timeout"))
        with patch.object(MetricsAggregator, "recompute", new=failing):
            result = notification_tasks.aggregate_metrics(day="2026-03-10")
        assert result["status"] == "error"
        assert result["date"] == "2026-03-10"


class TestCleanup:
    def test_removes_and_archives(self, fake_sessions):
        with patch("ventushub.services.housekeeping.cleanup_expired", new=AsyncMock(return_value=1)), \
             patch("ventushub.services.housekeeping.auto_archive", new=AsyncMock(return_value=4)):
            result = notification_tasks.cleanup_notifications()
        assert result == {"status": "ok", "removed": 1, "archived": 4}
