from datetime import datetime, timezone
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator

from ventushub.core.timeutil import parse_hhmm
from ventushub.schemas.enums import DigestFrequency
from ventushub.schemas.events import CamelModel


class CategoryPreference(CamelModel):
    """Per-category override. `enabled=False` suppresses the category entirely."""
    enabled: bool = True
    email: bool | None = None
    push: bool | None = None
    sms: bool | None = None


class PreferencesUpdate(CamelModel):
    global_enabled: bool | None = None
    quiet_hours_start: str | None = None
    quiet_hours_end: str | None = None
    timezone: str | None = None

    email_enabled: bool | None = None
    push_enabled: bool | None = None
    sms_enabled: bool | None = None

    category_preferences: dict[str, CategoryPreference] | None = None

    digest_frequency: DigestFrequency | None = None
    max_notifications_per_day: int | None = Field(default=None, ge=1, le=1000)

    grouping_enabled: bool | None = None
    auto_archive_days: int | None = Field(default=None, ge=1, le=365)
    sound_enabled: bool | None = None
    vibration_enabled: bool | None = None
    smart_delivery_enabled: bool | None = None
    priority_filtering: bool | None = None
    duplicate_detection: bool | None = None

    email_address: str | None = Field(default=None, max_length=255)
    phone_number: str | None = Field(default=None, max_length=32)
    push_token: str | None = Field(default=None, max_length=512)

    @field_validator("quiet_hours_start", "quiet_hours_end")
    @classmethod
    def validate_hhmm(cls, v):
        if v is None:
            return v
        try:
            parsed = parse_hhmm(v)
        except ValueError as e:
            raise ValueError("Expected HH:MM") from e
        return parsed.strftime("%H:%M")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v):
        if v is None:
            return v
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone '{v}'") from e
        return v


class PreferencesResponse(CamelModel):
    user_id: str
    global_enabled: bool
    quiet_hours_start: str | None = None
    quiet_hours_end: str | None = None
    timezone: str
    email_enabled: bool
    push_enabled: bool
    sms_enabled: bool
    category_preferences: dict
    digest_frequency: str
    max_notifications_per_day: int
    grouping_enabled: bool
    auto_archive_days: int
    sound_enabled: bool
    vibration_enabled: bool
    smart_delivery_enabled: bool
    priority_filtering: bool
    duplicate_detection: bool
    email_address: str | None = None
    phone_number: str | None = None
    push_token: str | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, p) -> "PreferencesResponse":
        return cls(
            user_id=p.user_id,
            global_enabled=p.global_enabled,
            quiet_hours_start=p.quiet_hours_start,
            quiet_hours_end=p.quiet_hours_end,
            timezone=p.timezone,
            email_enabled=p.email_enabled,
            push_enabled=p.push_enabled,
            sms_enabled=p.sms_enabled,
            category_preferences=p.category_preferences or {},
            digest_frequency=p.digest_frequency,
            max_notifications_per_day=p.max_notifications_per_day,
            grouping_enabled=p.grouping_enabled,
            auto_archive_days=p.auto_archive_days,
            sound_enabled=p.sound_enabled,
            vibration_enabled=p.vibration_enabled,
            smart_delivery_enabled=p.smart_delivery_enabled,
            priority_filtering=p.priority_filtering,
            duplicate_detection=p.duplicate_detection,
            email_address=p.email_address,
            phone_number=p.phone_number,
            push_token=p.push_token,
            updated_at=p.updated_at,
        )


class PushKeys(CamelModel):
    p256dh: str = Field(min_length=1, max_length=255)
    auth: str = Field(min_length=1, max_length=255)


class PushSubscriptionCreate(CamelModel):
    """A browser PushSubscription as serialized by the client."""
    endpoint: str = Field(min_length=1, max_length=1024)
    keys: PushKeys | None = None
    # Milliseconds since the epoch, as PushSubscription.expirationTime reports it
    expiration_time: int | None = None

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, v):
        if not v.startswith(("https://", "http://")):
            raise ValueError("Endpoint must be an http(s) URL")
        return v

    def expires_at(self) -> datetime | None:
        if self.expiration_time is None:
            return None
        return datetime.fromtimestamp(self.expiration_time / 1000, tz=timezone.utc).replace(tzinfo=None)


class PushUnsubscribe(CamelModel):
    endpoint: str = Field(min_length=1, max_length=1024)


class PushSubscriptionResponse(CamelModel):
    id: str
    endpoint: str
    user_agent: str | None = None
    is_active: bool
    expiration_time: datetime | None = None
    last_used_at: datetime | None = None
    created_at: datetime

    @classmethod
    def from_model(cls, s) -> "PushSubscriptionResponse":
        return cls(
            id=str(s.id),
            endpoint=s.endpoint,
            user_agent=s.user_agent,
            is_active=s.is_active,
            expiration_time=s.expiration_time,
            last_used_at=s.last_used_at,
            created_at=s.created_at,
        )


class ChannelTestRequest(CamelModel):
    type: Literal["push", "email", "sms"]
    message: str | None = Field(default=None, max_length=500)
