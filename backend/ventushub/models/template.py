"""Operator-managed notification templates and the triggers that fire them."""

import uuid

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ventushub.models.base import Base, JSONType, TimestampMixin, UUIDMixin


class NotificationTemplate(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "notification_templates"

    template_key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)

    title_template: Mapped[str] = mapped_column(Text, nullable=False)
    message_template: Mapped[str] = mapped_column(Text, nullable=False)

    default_type: Mapped[str] = mapped_column(String(20), nullable=False, default="info")
    default_severity: Mapped[str] = mapped_column(String(20), nullable=False, default="normal")
    default_category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    default_channels: Mapped[list] = mapped_column(JSONType, default=lambda: ["in_app"])

    rich_content_template: Mapped[dict | None] = mapped_column(JSONType)
    conditions: Mapped[dict | None] = mapped_column(JSONType)

    locale: Mapped[str] = mapped_column(String(10), default="pt-BR")
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    triggers = relationship("NotificationTrigger", back_populates="template")


class NotificationTrigger(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "notification_triggers"

    trigger_key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)

    event_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    conditions: Mapped[dict | None] = mapped_column(JSONType)

    template_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("notification_templates.id", ondelete="RESTRICT"), nullable=False
    )
    override_settings: Mapped[dict | None] = mapped_column(JSONType)

    delay_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    # {"max_count": 1, "window_hours": 24, "scope": "entity"}
    frequency_limit: Mapped[dict | None] = mapped_column(JSONType)

    target_roles: Mapped[list | None] = mapped_column(JSONType)
    target_conditions: Mapped[dict | None] = mapped_column(JSONType)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    # Higher fires first
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False, index=True)

    template = relationship("NotificationTemplate", back_populates="triggers", lazy="joined")
