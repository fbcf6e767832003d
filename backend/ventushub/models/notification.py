"""Notification records and per-user notification groups."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text,
    UniqueConstraint, Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ventushub.core.timeutil import utcnow
from ventushub.models.base import Base, JSONType, TimestampMixin, UUIDMixin


class Notification(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "notifications"
    __table_args__ = (
        CheckConstraint("type IN ('info', 'success', 'warning', 'error', 'reminder')", name="ck_notifications_type"),
        CheckConstraint("severity IN ('low', 'normal', 'high', 'critical')", name="ck_notifications_severity"),
        CheckConstraint("NOT is_read OR read_at IS NOT NULL", name="ck_notifications_read_at"),
        CheckConstraint("NOT is_archived OR archived_at IS NOT NULL", name="ck_notifications_archived_at"),
        Index("ix_notifications_user_unread", "user_id", "is_read", "created_at"),
        Index("ix_notifications_category", "category", "created_at"),
        Index("ix_notifications_related", "related_entity", "related_id"),
        Index("ix_notifications_trigger_window", "trigger_key", "user_id", "created_at"),
    )

    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    type: Mapped[str] = mapped_column(String(20), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default="normal")
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    category: Mapped[str] = mapped_column(String(50), nullable=False)
    subcategory: Mapped[str | None] = mapped_column(String(50))
    source_system: Mapped[str] = mapped_column(String(50), nullable=False, default="ventushub")

    related_entity: Mapped[str | None] = mapped_column(String(50))
    related_id: Mapped[int | None] = mapped_column(Integer)
    parent_notification_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("notifications.id", ondelete="SET NULL"), nullable=True
    )

    action_url: Mapped[str | None] = mapped_column(String(500))
    action_data: Mapped[dict | None] = mapped_column(JSONType)

    delivery_channels: Mapped[list] = mapped_column(JSONType, default=lambda: ["in_app"])
    # channel -> latest delivery status
    delivery_status: Mapped[dict] = mapped_column(JSONType, default=dict)

    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime)
    is_pinned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    pinned_at: Mapped[datetime | None] = mapped_column(DateTime)

    scheduled_for: Mapped[datetime | None] = mapped_column(DateTime, index=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, index=True)

    rich_content: Mapped[dict | None] = mapped_column(JSONType)
    meta: Mapped[dict] = mapped_column("metadata", JSONType, default=dict)

    # Trigger bookkeeping: frequency-limit window lookups and the dedup backstop
    trigger_key: Mapped[str | None] = mapped_column(String(100))
    dedup_key: Mapped[str | None] = mapped_column(String(255), unique=True)
    group_key: Mapped[str | None] = mapped_column(String(150), index=True)

    parent = relationship("Notification", remote_side="Notification.id")
    delivery_logs = relationship(
        "DeliveryLogEntry", back_populates="notification", cascade="all, delete-orphan", passive_deletes=True
    )


class NotificationGroup(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "notification_groups"
    __table_args__ = (
        UniqueConstraint("user_id", "group_key", name="uq_notification_groups_user_key"),
    )

    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    group_key: Mapped[str] = mapped_column(String(150), nullable=False)  # e.g. "property:123:property"
    group_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)

    total_notifications: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unread_notifications: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_collapsed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    meta: Mapped[dict] = mapped_column("metadata", JSONType, default=dict)
    related_entity: Mapped[str | None] = mapped_column(String(50))
    related_id: Mapped[int | None] = mapped_column(Integer)
    last_activity_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False, index=True)
