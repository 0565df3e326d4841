"""
Boundary normalization for time values.

Requests and stored catalog rows carry times in several shapes: full ISO
timestamps (with or without offset / trailing ``Z``), bare ``HH:mm`` or
``HH:mm:ss`` clock strings, and native ``datetime``/``time`` objects. Everything
inside the engine works on one representation: naive ``datetime`` values on
the UTC clock, and ``time`` values for branch opening hours.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union

from services.errors import ValidationError

TimeInput = Union[str, datetime, time, None]


def utcnow() -> datetime:
    return datetime.utcnow().replace(microsecond=0)


def to_canonical(dt: datetime) -> datetime:
    """Aware datetimes are converted to UTC and stripped of tzinfo."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def parse_datetime(value, field: str = "datetime") -> datetime:
    if isinstance(value, datetime):
        return to_canonical(value)
    if isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            return to_canonical(datetime.fromisoformat(raw))
        except ValueError:
            pass
    raise ValidationError(f"Invalid {field}. Use ISO e.g. 2026-01-20T18:00:00")


def parse_date(value, field: str = "date") -> date:
    if isinstance(value, datetime):
        return to_canonical(value).date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            pass
    raise ValidationError(f"Invalid {field}. Use YYYY-MM-DD")


def parse_clock(value: TimeInput, default: Optional[time] = None) -> Optional[time]:
    """
    Returns the wall-clock part of ``value``.

    Malformed or missing input yields ``default`` instead of raising, so callers
    that must never fail (slot generation) can pass their fallback here.
    """
    if isinstance(value, datetime):
        return to_canonical(value).time().replace(second=0, microsecond=0)
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0, tzinfo=None)
    if not isinstance(value, str) or not value.strip():
        return default

    raw = value.strip()
    if "T" in raw:
        raw = raw.split("T", 1)[1]
    parts = raw.split(":")
    if len(parts) < 2:
        return default
    try:
        hour = int(parts[0])
        minute = int(parts[1][:2])
    except ValueError:
        return default
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return default
    return time(hour, minute)


def combine(day: date, clock: time) -> datetime:
    return datetime.combine(day, clock)


def day_bounds(day: date):
    start = datetime(day.year, day.month, day.day)
    return start, start + timedelta(days=1)


def minutes_between(start: datetime, end: datetime) -> int:
    return int(round((end - start).total_seconds() / 60))


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    # half-open intervals: touching edges do not overlap
    return start_a < end_b and end_a > start_b


def isoformat(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None
