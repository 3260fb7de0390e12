from __future__ import annotations

import calendar
from datetime import date, datetime, time, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def parse_day(value: str) -> date:
    """Parse a 'YYYY-MM-DD' calendar day."""
    return date.fromisoformat(value.strip())


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min)


def end_of_day(day: date) -> datetime:
    """Last representable instant of the day (inclusive upper bound)."""
    return datetime.combine(day, time.max)


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    last_day = calendar.monthrange(year, month)[1]
    return start_of_day(date(year, month, 1)), end_of_day(date(year, month, last_day))


def year_bounds(year: int) -> tuple[datetime, datetime]:
    return start_of_day(date(year, 1, 1)), end_of_day(date(year, 12, 31))
