"""Time helpers shared by services and the repository."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Callable
from zoneinfo import ZoneInfo


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_timezone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def local_day_bounds(day: date, tz: tzinfo) -> tuple[datetime, datetime]:
    """Return the UTC [start, end) instants of a local calendar day."""
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def to_storage(value: datetime) -> str:
    if value.tzinfo is None:
        raise ValueError("naive datetimes cannot be stored")
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_storage(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)
