import uuid
from datetime import datetime

from pydantic import Field

from ventushub.schemas.enums import Channel, NotificationType, Severity
from ventushub.schemas.events import CamelModel


class NotificationCreate(CamelModel):
    user_id: str | None = Field(default=None, min_length=1, max_length=64)
    type: NotificationType = NotificationType.INFO
    severity: Severity = Severity.NORMAL
    title: str = Field(min_length=1, max_length=255)
    message: str = Field(min_length=1)
    category: str = Field(min_length=1, max_length=50)
    subcategory: str | None = Field(default=None, max_length=50)
    source_system: str = "ventushub"
    related_entity: str | None = Field(default=None, max_length=50)
    related_id: int | None = None
    parent_notification_id: uuid.UUID | None = None
    action_url: str | None = Field(default=None, max_length=500)
    action_data: dict | None = None
    delivery_channels: list[Channel] = Field(default_factory=lambda: [Channel.IN_APP])
    scheduled_for: datetime | None = None
    expires_at: datetime | None = None
    rich_content: dict | None = None
    metadata: dict = Field(default_factory=dict)


class NotificationResponse(CamelModel):
    """Outbound notification contract consumed by the UI and channel providers."""

    id: str
    type: str
    severity: str
    title: str
    message: str
    category: str
    subcategory: str | None = None
    action_url: str | None = None
    rich_content: dict | None = None
    related_entity: str | None = None
    related_id: int | None = None
    group_key: str | None = None
    is_read: bool
    is_archived: bool = False
    is_pinned: bool
    read_at: datetime | None = None
    scheduled_for: datetime | None = None
    expires_at: datetime | None = None
    delivery_status: dict = {}
    created_at: datetime

    @classmethod
    def from_model(cls, n) -> "NotificationResponse":
        return cls(
            id=str(n.id),
            type=n.type,
            severity=n.severity,
            title=n.title,
            message=n.message,
            category=n.category,
            subcategory=n.subcategory,
            action_url=n.action_url,
            rich_content=n.rich_content,
            related_entity=n.related_entity,
            related_id=n.related_id,
            group_key=n.group_key,
            is_read=n.is_read,
            is_archived=n.is_archived,
            is_pinned=n.is_pinned,
            read_at=n.read_at,
            scheduled_for=n.scheduled_for,
            expires_at=n.expires_at,
            delivery_status=n.delivery_status or {},
            created_at=n.created_at,
        )


class NotificationListResponse(CamelModel):
    notifications: list[NotificationResponse]
    unread_count: int
    total: int


class NotificationSummary(CamelModel):
    total: int
    unread: int
    pinned: int
    archived: int
    by_category: dict[str, int]
    by_severity: dict[str, int]


class GroupResponse(CamelModel):
    id: str
    group_key: str
    group_type: str
    title: str
    description: str | None = None
    total_notifications: int
    unread_notifications: int
    is_collapsed: bool
    related_entity: str | None = None
    related_id: int | None = None
    last_activity_at: datetime

    @classmethod
    def from_model(cls, g) -> "GroupResponse":
        return cls(
            id=str(g.id),
            group_key=g.group_key,
            group_type=g.group_type,
            title=g.title,
            description=g.description,
            total_notifications=g.total_notifications,
            unread_notifications=g.unread_notifications,
            is_collapsed=g.is_collapsed,
            related_entity=g.related_entity,
            related_id=g.related_id,
            last_activity_at=g.last_activity_at,
        )


class NotificationCreateResult(CamelModel):
    created: bool
    notification: NotificationResponse | None = None


class MarkAllReadResult(CamelModel):
    updated: int


class WithdrawResult(CamelModel):
    cancelled_jobs: int
