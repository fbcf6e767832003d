"""Delivery queue jobs and per-attempt delivery log rows."""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ventushub.core.timeutil import utcnow
from ventushub.models.base import Base, JSONType, TimestampMixin, UUIDMixin


class DeliveryLogEntry(Base, UUIDMixin):
    __tablename__ = "notification_delivery_log"
    __table_args__ = (
        CheckConstraint("channel IN ('in_app', 'email', 'push', 'sms')", name="ck_delivery_log_channel"),
        CheckConstraint(
            "status IN ('pending', 'sent', 'delivered', 'failed', 'bounced', 'opened', 'clicked')",
            name="ck_delivery_log_status",
        ),
        Index("ix_delivery_log_provider_external", "provider", "external_id"),
    )

    notification_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("notifications.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    channel: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    provider: Mapped[str | None] = mapped_column(String(50))

    external_id: Mapped[str | None] = mapped_column(String(255))
    payload: Mapped[dict | None] = mapped_column(JSONType)
    error_message: Mapped[str | None] = mapped_column(Text)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    scheduled_at: Mapped[datetime | None] = mapped_column(DateTime)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime)
    opened_at: Mapped[datetime | None] = mapped_column(DateTime)
    clicked_at: Mapped[datetime | None] = mapped_column(DateTime)
    interaction_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False, index=True)

    notification = relationship("Notification", back_populates="delivery_logs")


class QueueJob(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "notification_queue"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'cancelled')",
            name="ck_notification_queue_status",
        ),
        CheckConstraint(
            "job_type IN ('send_notification', 'process_digest', 'cleanup_expired')",
            name="ck_notification_queue_job_type",
        ),
        CheckConstraint("attempts <= max_attempts", name="ck_notification_queue_attempts"),
        Index("ix_notification_queue_poll", "status", "priority", "scheduled_for"),
        Index("ix_notification_queue_user_day", "user_id", "created_at"),
    )

    job_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    data: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    # Denormalised from `data` so the cap, cancellation and digest batching can query them
    notification_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("notifications.id", ondelete="CASCADE"), nullable=True, index=True
    )
    user_id: Mapped[str | None] = mapped_column(String(64))
    channel: Mapped[str | None] = mapped_column(String(20))

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)

    last_error: Mapped[str | None] = mapped_column(Text)
    failure_reason: Mapped[str | None] = mapped_column(Text)

    scheduled_for: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime)
