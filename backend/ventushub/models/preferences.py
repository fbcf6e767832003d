from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ventushub.models.base import Base, JSONType, TimestampMixin, UUIDMixin


class NotificationPreferences(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "notification_preferences"
    __table_args__ = (
        CheckConstraint(
            "digest_frequency IN ('instant', 'hourly', 'daily', 'weekly')",
            name="ck_notification_preferences_digest",
        ),
    )

    user_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    # Global
    global_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    quiet_hours_start: Mapped[str | None] = mapped_column(String(5))  # "HH:MM"
    quiet_hours_end: Mapped[str | None] = mapped_column(String(5))
    timezone: Mapped[str] = mapped_column(String(50), default="America/Sao_Paulo", nullable=False)

    # Channel toggles (in-app is always on)
    email_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    push_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sms_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # {"property": {"enabled": true, "email": false}, ...}
    category_preferences: Mapped[dict] = mapped_column(JSONType, default=dict)

    # Frequency controls
    digest_frequency: Mapped[str] = mapped_column(String(20), default="instant", nullable=False)
    max_notifications_per_day: Mapped[int] = mapped_column(Integer, default=50, nullable=False)

    # Advanced
    grouping_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    auto_archive_days: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    sound_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    vibration_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    smart_delivery_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    priority_filtering: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    duplicate_detection: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Contact addresses for external channels (fallback: none -> fatal delivery error)
    email_address: Mapped[str | None] = mapped_column(String(255))
    phone_number: Mapped[str | None] = mapped_column(String(32))
    push_token: Mapped[str | None] = mapped_column(String(512))


class PushSubscription(Base, UUIDMixin, TimestampMixin):
    """One device registered for push. A user may hold several; unsubscribing deactivates the row."""

    __tablename__ = "push_subscriptions"
    __table_args__ = (UniqueConstraint("user_id", "endpoint", name="uq_push_subscriptions_user_endpoint"),)

    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    endpoint: Mapped[str] = mapped_column(String(1024), nullable=False)
    p256dh_key: Mapped[str | None] = mapped_column(String(255))
    auth_key: Mapped[str | None] = mapped_column(String(255))
    expiration_time: Mapped[datetime | None] = mapped_column(DateTime)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    user_agent: Mapped[str | None] = mapped_column(String(512))
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime)
