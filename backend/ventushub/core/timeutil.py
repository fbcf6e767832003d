"""Time helpers.

All persisted timestamps are naive UTC. User-facing windows (quiet hours, the
daily cap, digest boundaries) are computed in the user's IANA timezone and
converted back to naive UTC before they touch the database.
"""

from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_zone(name: str | None, fallback: str = "UTC") -> ZoneInfo:
    try:
        return ZoneInfo(name or fallback)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(fallback)


def to_local(naive_utc: datetime, zone: ZoneInfo) -> datetime:
    return naive_utc.replace(tzinfo=timezone.utc).astimezone(zone)


def to_naive_utc(local: datetime) -> datetime:
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def parse_hhmm(value: str | time | None) -> time | None:
    if value is None or isinstance(value, time):
        return value
    hours, minutes = value.split(":")[:2]
    return time(int(hours), int(minutes))


def in_quiet_hours(local: datetime, start: time, end: time) -> bool:
    """True when `local` falls inside [start, end). Windows may wrap midnight."""
    current = local.time().replace(tzinfo=None)
    if start == end:
        return False
    if start < end:
        return start <= current < end
    return current >= start or current < end


def quiet_hours_end(now_utc: datetime, start: time | None, end: time | None, zone: ZoneInfo) -> datetime | None:
    """Return the naive-UTC instant the current quiet window closes, or None if not in one."""
    if start is None or end is None:
        return None
    local = to_local(now_utc, zone)
    if not in_quiet_hours(local, start, end):
        return None
    candidate = local.replace(hour=end.hour, minute=end.minute, second=0, microsecond=0)
    if candidate <= local:
        candidate = datetime.combine(local.date() + timedelta(days=1), end, tzinfo=zone)
    return to_naive_utc(candidate)


def local_midnight_utc(now_utc: datetime, zone: ZoneInfo) -> datetime:
    local = to_local(now_utc, zone)
    midnight = datetime.combine(local.date(), time(0, 0), tzinfo=zone)
    return to_naive_utc(midnight)


def next_digest_boundary(now_utc: datetime, frequency: str, zone: ZoneInfo) -> datetime:
    """Next hour / midnight / Monday midnight in the user's zone, as naive UTC."""
    local = to_local(now_utc, zone)
    if frequency == "hourly":
        boundary = local.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
    elif frequency == "daily":
        boundary = datetime.combine(local.date() + timedelta(days=1), time(0, 0), tzinfo=zone)
    elif frequency == "weekly":
        days_ahead = 7 - local.weekday()
        boundary = datetime.combine(local.date() + timedelta(days=days_ahead), time(0, 0), tzinfo=zone)
    else:
        return now_utc
    return to_naive_utc(boundary)
