from celery import Celery
from celery.schedules import crontab
from ventushub.config import get_settings

settings = get_settings()

celery_app = Celery(
    "ventushub",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["ventushub.tasks.notification_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.default_timezone,
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,

    # Resilience settings
    task_soft_time_limit=300,      # 5 min soft limit (raises SoftTimeLimitExceeded)
    task_time_limit=360,           # 6 min hard kill
    worker_max_tasks_per_child=100,  # Restart worker after 100 tasks (prevent memory leaks)

    # Queue routing
    task_routes={
        "tasks.process_event": {"queue": "events"},
        "tasks.poll_delivery_queue": {"queue": "delivery"},
        "tasks.requeue_stale_jobs": {"queue": "delivery"},
        "tasks.aggregate_metrics": {"queue": "periodic"},
        "tasks.cleanup_notifications": {"queue": "periodic"},
    },

    # Beat schedule for periodic tasks (local time, configurable via .env)
    beat_schedule={
        "poll-delivery-queue": {
            "task": "tasks.poll_delivery_queue",
            "schedule": float(settings.schedule_queue_poll_seconds),
        },
        "requeue-stale-jobs": {
            "task": "tasks.requeue_stale_jobs",
            "schedule": crontab(minute="*/5"),
        },
        # Today's partition, refreshed through the day
        "aggregate-metrics-today": {
            "task": "tasks.aggregate_metrics",
            "schedule": crontab(minute=f"*/{max(1, settings.schedule_metrics_interval_minutes)}"),
        },
        # Yesterday's partition, finalised once late deliveries have landed
        "aggregate-metrics-yesterday": {
            "task": "tasks.aggregate_metrics",
            "schedule": crontab(
                minute=settings.schedule_daily_metrics_minute,
                hour=settings.schedule_daily_metrics_hour,
            ),
            "kwargs": {"days_ago": 1},
        },
        "cleanup-notifications": {
            "task": "tasks.cleanup_notifications",
            "schedule": crontab(
                minute=settings.schedule_cleanup_minute,
                hour=settings.schedule_cleanup_hour,
            ),
        },
    },
)
