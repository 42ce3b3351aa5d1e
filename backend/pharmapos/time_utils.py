from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DD" is midnight UTC of that day
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)
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


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    """Inclusive [first instant, last instant] of a calendar month, UTC-naive."""
    if not 1 <= month <= 12:
        raise ValueError("month must be between 1 and 12")
    start = datetime(year, month, 1)
    if month == 12:
        next_start = datetime(year + 1, 1, 1)
    else:
        next_start = datetime(year, month + 1, 1)
    return start, next_start - timedelta(microseconds=1)


def resolve_period(
    start: Optional[str],
    end: Optional[str],
    *,
    now: Optional[datetime] = None,
) -> tuple[datetime, datetime]:
    """
    Turn optional ISO strings into a concrete reporting window.

    Missing bounds default to the current calendar month. A bare end date
    ("2026-01-31") covers that whole day.
    """
    now = now or utcnow()
    default_start, default_end = month_bounds(now.year, now.month)

    start_dt = parse_iso_datetime(start) or default_start
    end_dt = parse_iso_datetime(end)
    if end_dt is None:
        end_dt = default_end
    elif end is not None and len(end.strip()) == 10:
        end_dt = end_dt + timedelta(days=1) - timedelta(microseconds=1)

    if end_dt < start_dt:
        raise ValueError("end must not be before start")
    return start_dt, end_dt
