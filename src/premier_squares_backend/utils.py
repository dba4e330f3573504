"""
Utility functions for input sanitization, numbers and timestamps.

This module provides helper functions for:
- Sanitizing user-provided strings before validation
- Checking decimal precision of monetary amounts
- Producing and serializing UTC timestamps
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

# Pattern to match characters that could open or close HTML tags
SANITIZE_PATTERN = re.compile(r"[<>]")


def sanitize_text(value: Any) -> Any:
    """
    Trim a user-provided string and strip angle brackets.

    Non-string values are returned untouched so that type validation can
    report them properly.

    Example:
        >>> sanitize_text("  <b>Alice</b> ")
        "bAlice/b"
    """
    if not isinstance(value, str):
        return value
    return SANITIZE_PATTERN.sub("", value.strip())


def sanitize_payload(data: Any) -> Any:
    """Recursively sanitize every string inside a decoded JSON payload."""
    if isinstance(data, str):
        return sanitize_text(data)
    if isinstance(data, list):
        return [sanitize_payload(item) for item in data]
    if isinstance(data, dict):
        return {key: sanitize_payload(value) for key, value in data.items()}
    return data


def is_number(value: Any) -> bool:
    """True for ints and floats, but not for booleans."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def has_max_decimal_places(value: float, places: int = 2) -> bool:
    """
    Check that a number carries at most ``places`` fractional digits.

    The check goes through the shortest decimal representation of the float,
    so ``19.99`` passes while ``19.999`` does not.
    """
    try:
        exponent = Decimal(str(value)).normalize().as_tuple().exponent
    except InvalidOperation:
        return False
    if not isinstance(exponent, int):
        # NaN and infinities
        return False
    return exponent >= -places


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Serialize datetime to ISO format string."""
    return dt.isoformat() if dt else None
