"""Operator-facing template and trigger schemas.

Nested JSON settings (frequency limit, overrides, audience) are typed here and
validated when a trigger is written. The database only sees their dumps.
"""

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import Field, TypeAdapter, field_validator

from ventushub.schemas.conditions import dump_condition, parse_condition
from ventushub.schemas.enums import Channel, EntityType, EventType, NotificationType, Severity
from ventushub.schemas.events import CamelModel


def _normalise_condition(value: dict | None) -> dict | None:
    try:
        return dump_condition(parse_condition(value))
    except ValueError as e:
        raise ValueError(f"Invalid condition: {e}") from e


# ── Trigger settings ──

class FrequencyLimit(CamelModel):
    max_count: int = Field(default=1, ge=1)
    window_hours: float = Field(default=24, gt=0)
    # entity: per (trigger, user, entity); user: per (trigger, user)
    scope: Literal["entity", "user"] = "entity"


class TriggerOverrides(CamelModel):
    type: NotificationType | None = None
    severity: Severity | None = None
    category: str | None = None
    subcategory: str | None = None
    channels: list[Channel] | None = None
    action_url: str | None = None
    expires_in_hours: float | None = Field(default=None, gt=0)


class ActorTarget(CamelModel):
    kind: Literal["actor"] = "actor"


class FieldTarget(CamelModel):
    kind: Literal["field"]
    path: str


class UsersTarget(CamelModel):
    kind: Literal["users"]
    user_ids: list[str]


TargetSpec = Annotated[Union[ActorTarget, FieldTarget, UsersTarget], Field(discriminator="kind")]

target_adapter = TypeAdapter(TargetSpec)


# ── Templates ──

class TemplateCreate(CamelModel):
    template_key: str = Field(min_length=1, max_length=100)
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    title_template: str = Field(min_length=1)
    message_template: str = Field(min_length=1)
    default_type: NotificationType = NotificationType.INFO
    default_severity: Severity = Severity.NORMAL
    default_category: str = Field(min_length=1, max_length=50)
    default_channels: list[Channel] = Field(default_factory=lambda: [Channel.IN_APP])
    rich_content_template: dict | None = None
    conditions: dict | None = None
    locale: str = "pt-BR"
    is_active: bool = True

    @field_validator("conditions")
    @classmethod
    def validate_conditions(cls, v):
        return _normalise_condition(v)


class TemplateUpdate(CamelModel):
    name: str | None = None
    description: str | None = None
    title_template: str | None = Field(default=None, min_length=1)
    message_template: str | None = Field(default=None, min_length=1)
    default_type: NotificationType | None = None
    default_severity: Severity | None = None
    default_category: str | None = None
    default_channels: list[Channel] | None = None
    rich_content_template: dict | None = None
    conditions: dict | None = None
    locale: str | None = None
    is_active: bool | None = None

    @field_validator("conditions")
    @classmethod
    def validate_conditions(cls, v):
        return _normalise_condition(v)


class TemplateResponse(CamelModel):
    id: str
    template_key: str
    name: str
    description: str | None = None
    title_template: str
    message_template: str
    default_type: str
    default_severity: str
    default_category: str
    default_channels: list[str]
    rich_content_template: dict | None = None
    conditions: dict | None = None
    locale: str
    version: int
    is_active: bool
    updated_at: datetime

    @classmethod
    def from_model(cls, t) -> "TemplateResponse":
        return cls(
            id=str(t.id),
            template_key=t.template_key,
            name=t.name,
            description=t.description,
            title_template=t.title_template,
            message_template=t.message_template,
            default_type=t.default_type,
            default_severity=t.default_severity,
            default_category=t.default_category,
            default_channels=t.default_channels or [],
            rich_content_template=t.rich_content_template,
            conditions=t.conditions,
            locale=t.locale,
            version=t.version,
            is_active=t.is_active,
            updated_at=t.updated_at,
        )


class TemplatePreviewRequest(CamelModel):
    context: dict = Field(default_factory=dict)


class TemplatePreviewResponse(CamelModel):
    title: str
    message: str
    rich_content: dict | None = None


# ── Triggers ──

class TriggerCreate(CamelModel):
    trigger_key: str = Field(min_length=1, max_length=100)
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    event_type: EventType
    entity_type: EntityType
    conditions: dict | None = None
    template_key: str
    override_settings: TriggerOverrides | None = None
    delay_minutes: int = Field(default=0, ge=0)
    frequency_limit: FrequencyLimit | None = None
    target_roles: list[str] | None = None
    target_conditions: TargetSpec | None = None
    is_active: bool = True
    priority: int = 0

    @field_validator("conditions")
    @classmethod
    def validate_conditions(cls, v):
        return _normalise_condition(v)


class TriggerUpdate(CamelModel):
    name: str | None = None
    description: str | None = None
    conditions: dict | None = None
    template_key: str | None = None
    override_settings: TriggerOverrides | None = None
    delay_minutes: int | None = Field(default=None, ge=0)
    frequency_limit: FrequencyLimit | None = None
    target_roles: list[str] | None = None
    target_conditions: TargetSpec | None = None
    is_active: bool | None = None
    priority: int | None = None

    @field_validator("conditions")
    @classmethod
    def validate_conditions(cls, v):
        return _normalise_condition(v)


class TriggerResponse(CamelModel):
    id: str
    trigger_key: str
    name: str
    description: str | None = None
    event_type: str
    entity_type: str
    conditions: dict | None = None
    template_key: str
    override_settings: dict | None = None
    delay_minutes: int
    frequency_limit: dict | None = None
    target_roles: list[str] | None = None
    target_conditions: dict | None = None
    is_active: bool
    priority: int

    @classmethod
    def from_model(cls, t) -> "TriggerResponse":
        return cls(
            id=str(t.id),
            trigger_key=t.trigger_key,
            name=t.name,
            description=t.description,
            event_type=t.event_type,
            entity_type=t.entity_type,
            conditions=t.conditions,
            template_key=t.template.template_key,
            override_settings=t.override_settings,
            delay_minutes=t.delay_minutes,
            frequency_limit=t.frequency_limit,
            target_roles=t.target_roles,
            target_conditions=t.target_conditions,
            is_active=t.is_active,
            priority=t.priority,
        )
