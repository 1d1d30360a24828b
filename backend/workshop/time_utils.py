from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from typing import Callable, Optional

_clock: Optional[Callable[[], datetime]] = None


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    if _clock is not None:
        return _clock()
    return datetime.now(timezone.utc).replace(tzinfo=None)


def set_clock(clock: Optional[Callable[[], datetime]]) -> None:
    """Replace the source of utcnow(); pass None to restore the system clock."""
    global _clock
    _clock = clock


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DD" is midnight of that day
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    # Normalize to UTC-naive
    if dt.tzinfo is None:
        return dt

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


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


def start_of_day(dt: datetime) -> datetime:
    return datetime.combine(dt.date(), time.min)


def end_of_day(dt: datetime) -> datetime:
    return datetime.combine(dt.date(), time.max)


def start_of_month(dt: datetime) -> datetime:
    return datetime(dt.year, dt.month, 1)


def next_month(dt: datetime) -> datetime:
    if dt.month == 12:
        return datetime(dt.year + 1, 1, 1)
    return datetime(dt.year, dt.month + 1, 1)


def resolve_period(
    start: datetime | str | None,
    end: datetime | str | None,
) -> tuple[datetime, datetime]:
    """
    Resolve a reporting window.

    Defaults to the first of the current month through the end of today.
    The end bound is pushed to the last instant of its day (inclusive).
    """
    if isinstance(start, str):
        start = parse_iso_datetime(start)
    if isinstance(end, str):
        end = parse_iso_datetime(end)

    now = utcnow()
    start_dt = start if start is not None else start_of_month(now)
    end_dt = end_of_day(end if end is not None else now)
    return start_dt, end_dt


def today_bounds() -> tuple[datetime, datetime]:
    today = start_of_day(utcnow())
    return today, today + timedelta(days=1)
