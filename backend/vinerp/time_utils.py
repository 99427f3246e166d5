from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Optional, Union

DayLike = Union[date, datetime]


def utcnow() -> datetime:
    """Naive UTC timestamp; every stored datetime uses this convention."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Read an ISO-8601 value coming from a request body or query string.

    A bare date means midnight, naive values are taken as UTC, and offsets
    (including a trailing "Z") are converted to UTC. Blank input gives None.
    """
    text = (value or "").strip()
    if not text:
        return None
    if text[-1] in "zZ":
        text = text[:-1] + "+00:00"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.replace(tzinfo=None)


def _as_date(value: DayLike) -> date:
    return value.date() if isinstance(value, datetime) else value


def start_of_day(value: DayLike) -> datetime:
    return datetime.combine(_as_date(value), time.min)


def end_of_day(value: DayLike) -> datetime:
    """Last representable instant of the day, for inclusive report ranges."""
    return datetime.combine(_as_date(value), time.max)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Serialize for JSON: whole seconds, UTC, 'Z' suffix."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"
