"""Append-only activity log; the source of trigger evaluation."""

from sqlalchemy import Boolean, CheckConstraint, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ventushub.models.base import Base, JSONType, TimestampMixin, UUIDMixin


class ActivityLogEntry(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "user_activity_log"
    __table_args__ = (
        CheckConstraint(
            "device_type IS NULL OR device_type IN ('desktop', 'mobile', 'tablet', 'unknown')",
            name="ck_activity_log_device_type",
        ),
        Index("ix_activity_log_user", "user_id", "created_at"),
        Index("ix_activity_log_action", "action", "created_at"),
        Index("ix_activity_log_entity", "entity_type", "entity_id"),
    )

    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    session_id: Mapped[str | None] = mapped_column(String(128), index=True)

    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[int | None] = mapped_column(Integer)

    context: Mapped[dict] = mapped_column(JSONType, default=dict)
    changes: Mapped[dict | None] = mapped_column(JSONType)
    previous_state: Mapped[dict | None] = mapped_column(JSONType)
    new_state: Mapped[dict | None] = mapped_column(JSONType)

    ip_address: Mapped[str | None] = mapped_column(String(45))
    user_agent: Mapped[str | None] = mapped_column(Text)
    device_type: Mapped[str | None] = mapped_column(String(50))

    processing_time_ms: Mapped[int | None] = mapped_column(Integer)
    success: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text)

    triggered_notifications: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notification_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
