from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

# All timestamps are stored UTC-naive; offsets are resolved at the edges.


def utcnow() -> datetime:
    """Current UTC time without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _strip_to_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    allocationDate / filter parsing.

    Blank -> None. A bare date is midnight of that day. Offsets (including a
    trailing "Z") are converted to UTC; values without one are taken as UTC.
    Raises ValueError on anything fromisoformat() cannot read.
    """
    raw = (value or "").strip()
    if not raw:
        return None
    if raw[-1] in "zZ":
        raw = f"{raw[:-1]}+00:00"
    return _strip_to_utc(datetime.fromisoformat(raw))


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """Calendar day from "YYYY-MM-DD"; a full timestamp is cut to its UTC day."""
    raw = (value or "").strip()
    if not raw:
        return None
    if len(raw) == 10:
        return date.fromisoformat(raw)
    return parse_iso_datetime(raw).date()


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """[midnight, next midnight) of a calendar day, for range filters."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Second-precision ISO-8601 with a "Z" suffix; naive input is UTC."""
    if dt is None:
        return None
    stamp = dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt.astimezone(timezone.utc)
    return stamp.replace(microsecond=0).strftime("%Y-%m-%dT%H:%M:%SZ")
