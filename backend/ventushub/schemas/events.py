from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ventushub.schemas.enums import DeviceType, EntityType, EventType


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, use_enum_values=True)


class EventIn(CamelModel):
    """Inbound event contract produced by every mutating operation in the app."""

    user_id: str | None = Field(default=None, max_length=64)
    action: EventType
    entity_type: EntityType
    entity_id: int | None = None
    context: dict = Field(default_factory=dict)
    changes: dict | None = None
    previous_state: dict | None = None
    new_state: dict | None = None

    session_id: str | None = None
    ip_address: str | None = Field(default=None, max_length=45)
    user_agent: str | None = None
    device_type: DeviceType | None = None
    processing_time_ms: int | None = None
    success: bool = True
    error_message: str | None = None


class ActivityResponse(CamelModel):
    id: str
    user_id: str
    action: str
    entity_type: str
    entity_id: int | None = None
    context: dict = {}
    triggered_notifications: bool
    notification_count: int
    created_at: datetime

    @classmethod
    def from_model(cls, entry) -> "ActivityResponse":
        return cls(
            id=str(entry.id),
            user_id=entry.user_id,
            action=entry.action,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            context=entry.context or {},
            triggered_notifications=entry.triggered_notifications,
            notification_count=entry.notification_count,
            created_at=entry.created_at,
        )


class EventAccepted(CamelModel):
    id: str
    status: str
    notification_count: int | None = None
