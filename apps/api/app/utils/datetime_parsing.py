"""Datetime helpers for pipeline timestamps.

Entity timestamps arrive in several shapes: epoch milliseconds (the format
phase timestamps and notes are stored in), ISO 8601 strings, and datetimes
read back from the database (naive on SQLite). Everything is normalized to
timezone-aware UTC before any arithmetic.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_datetime(value: Any) -> datetime | None:
    """Coerce epoch ms, ISO strings or datetimes to aware UTC; None if unusable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        if value <= 0:
            return None
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        if raw.isdigit():
            return to_datetime(int(raw))
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
        return ensure_utc(parsed)
    return None


def to_epoch_ms(value: datetime) -> int:
    return int(round(ensure_utc(value).timestamp() * 1000))
