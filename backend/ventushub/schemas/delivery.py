from datetime import date, datetime
from typing import Literal

from pydantic import Field

from ventushub.schemas.events import CamelModel


class DeliveryLogResponse(CamelModel):
    id: str
    notification_id: str
    channel: str
    status: str
    provider: str | None = None
    external_id: str | None = None
    error_message: str | None = None
    retry_count: int
    scheduled_at: datetime | None = None
    sent_at: datetime | None = None
    delivered_at: datetime | None = None
    opened_at: datetime | None = None
    clicked_at: datetime | None = None
    interaction_count: int
    created_at: datetime

    @classmethod
    def from_model(cls, entry) -> "DeliveryLogResponse":
        return cls(
            id=str(entry.id),
            notification_id=str(entry.notification_id),
            channel=entry.channel,
            status=entry.status,
            provider=entry.provider,
            external_id=entry.external_id,
            error_message=entry.error_message,
            retry_count=entry.retry_count,
            scheduled_at=entry.scheduled_at,
            sent_at=entry.sent_at,
            delivered_at=entry.delivered_at,
            opened_at=entry.opened_at,
            clicked_at=entry.clicked_at,
            interaction_count=entry.interaction_count,
            created_at=entry.created_at,
        )


class ProviderWebhook(CamelModel):
    """Status callback posted by an external channel provider."""
    external_id: str = Field(min_length=1)
    status: Literal["delivered", "bounced", "opened", "clicked"]
    error_message: str | None = None
    occurred_at: datetime | None = None


class WebhookResult(CamelModel):
    updated: bool
    status: str | None = None


class ProviderInfo(CamelModel):
    channel: str
    provider: str
    configured: bool
    circuit: dict


class QueueStats(CamelModel):
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0


class MetricsResponse(CamelModel):
    date_partition: date
    total_sent: int
    total_delivered: int
    total_opened: int
    total_clicked: int
    total_failed: int
    total_bounced: int
    category_metrics: dict
    channel_metrics: dict
    active_users: int
    avg_time_to_read_seconds: float | None = None
    avg_delivery_time_seconds: float | None = None
    bounce_rate: float
    click_through_rate: float

    @classmethod
    def from_model(cls, m) -> "MetricsResponse":
        return cls(
            date_partition=m.date_partition,
            total_sent=m.total_sent,
            total_delivered=m.total_delivered,
            total_opened=m.total_opened,
            total_clicked=m.total_clicked,
            total_failed=m.total_failed,
            total_bounced=m.total_bounced,
            category_metrics=m.category_metrics or {},
            channel_metrics=m.channel_metrics or {},
            active_users=m.active_users,
            avg_time_to_read_seconds=m.avg_time_to_read_seconds,
            avg_delivery_time_seconds=m.avg_delivery_time_seconds,
            bounce_rate=float(m.bounce_rate or 0),
            click_through_rate=float(m.click_through_rate or 0),
        )


class ProviderCheckRequest(CamelModel):
    """Addresses to send operator test messages to. Channels without one are skipped."""
    email: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=32)
    push_token: str | None = Field(default=None, max_length=1024)


class ProviderCheckResult(CamelModel):
    channel: str
    provider: str | None = None
    success: bool
    external_id: str | None = None
    error: str | None = None


class ProviderCheckResponse(CamelModel):
    success: bool
    results: list[ProviderCheckResult]
