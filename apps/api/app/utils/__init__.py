"""Utility modules."""

from app.utils.datetime_parsing import ensure_utc, to_datetime, to_epoch_ms, utcnow
from app.utils.normalization import (
    normalize_email,
    normalize_name,
    normalize_phone,
)

__all__ = [
    # Datetimes
    "ensure_utc",
    "to_datetime",
    "to_epoch_ms",
    "utcnow",
    # Normalization
    "normalize_email",
    "normalize_name",
    "normalize_phone",
]
