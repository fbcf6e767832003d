"""Prometheus metrics for the VentusHub notification service.

Pipeline metrics: events, triggers, notifications, queue jobs, deliveries
System metrics: HTTP requests, circuit breakers
"""

from prometheus_client import Counter, Histogram, Gauge, Info

# ── Pipeline Metrics ─────────────────────────────────────────

EVENTS_INGESTED = Counter(
    "ventushub_events_ingested_total",
    "Activity events written to the event log",
    ["entity_type"],
)

TRIGGERS_EVALUATED = Counter(
    "ventushub_triggers_evaluated_total",
    "Trigger evaluations by outcome",
    ["outcome"],  # fired, no_match, rate_limited, suppressed, error
)

NOTIFICATIONS_CREATED = Counter(
    "ventushub_notifications_created_total",
    "Notification records created",
    ["category", "severity"],
)

QUEUE_JOBS = Counter(
    "ventushub_queue_jobs_total",
    "Delivery queue job transitions",
    ["channel", "transition"],  # enqueued, claimed, completed, retried, failed, cancelled
)

DELIVERY_LATENCY = Histogram(
    "ventushub_delivery_latency_seconds",
    "Channel provider send latency",
    ["channel"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

DELIVERY_EVENTS = Counter(
    "ventushub_delivery_events_total",
    "Delivery log status changes",
    ["channel", "status"],
)

AGGREGATION_FAILURES = Counter(
    "ventushub_metrics_aggregation_failures_total",
    "Metrics partition updates that failed",
    ["mode"],  # recompute, incremental
)

# ── System Metrics ───────────────────────────────────────────

HTTP_REQUESTS = Counter(
    "ventushub_http_requests_total",
    "Total HTTP requests to the API",
    ["method", "path", "status_code"],
)

HTTP_REQUEST_DURATION = Histogram(
    "ventushub_http_request_duration_seconds",
    "HTTP request duration",
    ["method", "path"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)

CIRCUIT_BREAKER_STATE = Gauge(
    "ventushub_circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open, 2=half_open)",
    ["name"],
)

APP_INFO = Info("ventushub_app", "VentusHub notification service info")
