from __future__ import annotations

from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

from compound_access.core.config import get_settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # Some drivers (SQLite) hand back naive datetimes; everything is stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_day_start(day: date) -> datetime:
    tz = ZoneInfo(get_settings().timezone)
    return datetime.combine(day, time.min).replace(tzinfo=tz).astimezone(timezone.utc)


def local_day_end(day: date) -> datetime:
    tz = ZoneInfo(get_settings().timezone)
    return datetime.combine(day, time(23, 59, 59)).replace(tzinfo=tz).astimezone(timezone.utc)


def local_today(now: datetime | None = None) -> date:
    tz = ZoneInfo(get_settings().timezone)
    return (now or utcnow()).astimezone(tz).date()
