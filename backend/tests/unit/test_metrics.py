"""Tests for Prometheus metrics and structured logging."""

import json
import logging
import sys
from unittest.mock import patch, MagicMock

from ventushub.core.metrics import (
    CIRCUIT_BREAKER_STATE,
    DELIVERY_LATENCY,
    HTTP_REQUESTS,
    NOTIFICATIONS_CREATED,
    QUEUE_JOBS,
    TRIGGERS_EVALUATED,
)
from ventushub.core.circuit_breaker import CircuitBreaker
from ventushub.main import JSONFormatter, metric_path, setup_logging


class TestMetricsDefinition:
    def test_notifications_created_counter(self):
        """Counter increments correctly."""
        before = NOTIFICATIONS_CREATED.labels(category="property", severity="normal")._value.get()
        NOTIFICATIONS_CREATED.labels(category="property", severity="normal").inc()
        after = NOTIFICATIONS_CREATED.labels(category="property", severity="normal")._value.get()
        assert after == before + 1

    def test_queue_jobs_counter(self):
        before = QUEUE_JOBS.labels(channel="email", transition="retried")._value.get()
        QUEUE_JOBS.labels(channel="email", transition="retried").inc()
        assert QUEUE_JOBS.labels(channel="email", transition="retried")._value.get() == before + 1

    def test_trigger_outcome_counter(self):
        before = TRIGGERS_EVALUATED.labels(outcome="rate_limited")._value.get()
        TRIGGERS_EVALUATED.labels(outcome="rate_limited").inc()
        assert TRIGGERS_EVALUATED.labels(outcome="rate_limited")._value.get() == before + 1

    def test_delivery_latency_histogram(self):
        """Histogram observes values."""
        DELIVERY_LATENCY.labels(channel="push").observe(0.3)

    def test_http_request_counter(self):
        before = HTTP_REQUESTS.labels(method="GET", path="/health", status_code="200")._value.get()
        HTTP_REQUESTS.labels(method="GET", path="/health", status_code="200").inc()
        after = HTTP_REQUESTS.labels(method="GET", path="/health", status_code="200")._value.get()
        assert after == before + 1

    def test_circuit_breaker_gauge_tracks_transitions(self):
        cb = CircuitBreaker(name="gauge_test", failure_threshold=1, recovery_timeout=60)
        cb.record_failure()
        assert CIRCUIT_BREAKER_STATE.labels(name="gauge_test")._value.get() == 1


class TestJSONFormatter:
    def test_format_produces_json(self):
        formatter = JSONFormatter()
        record = logging.LogRecord(
            name="test", level=logging.INFO, pathname="", lineno=0,
            msg="hello world", args=(), exc_info=None,
        )
        output = formatter.format(record)
        parsed = json.loads(output)
        assert parsed["msg"] == "hello world"
        assert parsed["level"] == "INFO"
        assert parsed["logger"] == "test"

    def test_non_ascii_is_kept(self):
        record = logging.LogRecord(
            name="test", level=logging.INFO, pathname="", lineno=0,
            msg="Notificação enviada", args=(), exc_info=None,
        )
        assert "Notificação" in JSONFormatter().format(record)

    def test_format_with_exception(self):
        formatter = JSONFormatter()
        try:
            raise ValueError("test error")
        except ValueError:
            record = logging.LogRecord(
                name="test", level=logging.ERROR, pathname="", lineno=0,
                msg="failed", args=(), exc_info=sys.exc_info(),
            )
        output = formatter.format(record)
        parsed = json.loads(output)
        assert "exception" in parsed
        assert "ValueError" in parsed["exception"]


class TestSetupLogging:
    def test_setup_logging_debug_mode(self):
        with patch("ventushub.main.get_settings") as mock_settings:
            mock_settings.return_value = MagicMock(debug=True)
            setup_logging()
            root = logging.getLogger()
            assert len(root.handlers) > 0
            assert not isinstance(root.handlers[0].formatter, JSONFormatter)

    def test_setup_logging_production_mode(self):
        with patch("ventushub.main.get_settings") as mock_settings:
            mock_settings.return_value = MagicMock(debug=False)
            setup_logging()
            root = logging.getLogger()
            handler = root.handlers[0]
            assert isinstance(handler.formatter, JSONFormatter)
            assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING


class TestMetricPath:
    def test_ids_collapsed(self):
        path = "/api/v1/notifications/3f1c2a9e-8d4b-4c51-9a7e-0b6f2d8c1e44/read"
        assert metric_path(path) == "/api/v1/notifications/<id>/read"
        assert metric_path("/api/v1/delivery/logs/42") == "/api/v1/delivery/logs/<id>"

    def test_named_segments_kept(self):
        assert metric_path("/api/v1/templates/pendency_created") == "/api/v1/templates/pendency_created"
        assert metric_path("/health") == "/health"
