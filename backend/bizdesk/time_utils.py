from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

# All timestamps are stored and compared as UTC-naive datetimes.


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 date or datetime into UTC-naive.

    "" and None give None. A bare date is midnight UTC. Naive values are
    taken as UTC; "Z" and offsets are converted.

    Raises ValueError on anything unparseable.
    """
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    if text[-1] in "zZ":
        text = f"{text[:-1]}+00:00"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Second-precision ISO-8601 with a trailing Z; naive input is UTC."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"


def resolve_window(
    start: Optional[str],
    end: Optional[str],
    default_days: int = 30,
) -> tuple[datetime, datetime]:
    """
    Inclusive reporting window from optional ISO bounds.

    Missing bounds fall back to the last `default_days` ending now.
    Raises ValueError when a bound is unparseable or start > end.
    """
    now = utcnow()
    start_dt = parse_iso_datetime(start) or now - timedelta(days=default_days)
    end_dt = parse_iso_datetime(end) or now
    if start_dt > end_dt:
        raise ValueError("start must be before end")
    return start_dt, end_dt


def year_bounds(year: int) -> tuple[datetime, datetime]:
    """Half-open [Jan 1 year, Jan 1 year+1)."""
    return datetime(year, 1, 1), datetime(year + 1, 1, 1)
