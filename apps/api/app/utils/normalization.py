"""Normalization helpers for contact fields."""

import re
from typing import Optional


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """
    Normalize phone to E.164 format (+15551234567).

    Accepts:
    - 10 digits: 5551234567 → +15551234567
    - 11 digits starting with 1: 15551234567 → +15551234567
    - Already E.164: +15551234567 → +15551234567

    Returns:
        E.164 formatted phone, or None if empty or not a valid US number.
        Automations skip delivery instead of failing on a bad number.
    """
    if not phone:
        return None

    digits = re.sub(r"\D", "", str(phone).strip())

    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    return None


def normalize_email(email: Optional[str]) -> Optional[str]:
    """
    Normalize email to lowercase.

    Returns:
        Lowercased email or None if empty
    """
    if not email:
        return None
    cleaned = str(email).strip().lower()
    return cleaned or None


def normalize_name(name: Optional[str]) -> Optional[str]:
    """Normalize name by stripping whitespace and collapsing multiple spaces."""
    if not name:
        return None
    cleaned = " ".join(str(name).split())
    return cleaned or None
