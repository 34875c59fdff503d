"""Time zone helpers for UTC storage and local presentation."""

from __future__ import annotations

import calendar
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config import settings


def get_local_timezone(timezone_name: str | None = None) -> ZoneInfo:
    """Return the configured local timezone."""
    timezone_name = timezone_name or settings.user.timezone
    try:
        return ZoneInfo(timezone_name)
    except ZoneInfoNotFoundError as exc:
        raise ValueError(f"Invalid timezone: {timezone_name}") from exc


def to_local(value: datetime, tz: ZoneInfo | None = None) -> datetime:
    """Convert a datetime to the configured local timezone."""
    local_tz = tz or get_local_timezone()
    if value.tzinfo is None:
        return value.replace(tzinfo=local_tz)
    return value.astimezone(local_tz)


def to_utc(value: datetime) -> datetime:
    """Convert a datetime to UTC, treating naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 timestamp (``Z`` suffix accepted) into aware UTC."""
    if isinstance(value, datetime):
        return to_utc(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return to_utc(datetime.fromisoformat(text))


def isoformat(value: datetime) -> str:
    """Render an aware datetime as ISO-8601 UTC with millisecond precision."""
    return to_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def subtract_months(value: datetime, months: int) -> datetime:
    """Step back whole calendar months, clamping to the last valid day."""
    month_index = value.year * 12 + (value.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)
