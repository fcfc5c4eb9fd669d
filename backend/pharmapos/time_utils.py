# Overview: UTC time helpers; every stored timestamp is UTC-naive.

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current UTC time without tzinfo, the form every column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_utc_naive(dt: datetime) -> datetime:
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    ISO-8601 string to UTC-naive datetime.

    Blank -> None. A trailing 'Z' or an explicit offset is converted to UTC;
    a value without offset is taken to already be UTC.
    Raises ValueError on anything fromisoformat rejects.
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    if text[-1] in "zZ":
        text = f"{text[:-1]}+00:00"
    return _as_utc_naive(datetime.fromisoformat(text))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """'2026-01-14T09:30:12Z' style string, seconds precision."""
    if dt is None:
        return None
    return _as_utc_naive(dt).replace(microsecond=0).isoformat() + "Z"


def utc_day_bounds(dt: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """[start, end) of the UTC calendar day containing dt (default: now)."""
    start = (dt or utcnow()).replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)
