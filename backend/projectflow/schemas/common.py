"""Shared helpers for record schemas"""

from datetime import datetime, timezone
from typing import Any


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime"""
    return datetime.now(timezone.utc)


def ensure_utc(value: Any) -> Any:
    """
    Attach UTC to naive datetimes.

    Rows come back naive from some drivers and aware from others; collections
    are sorted by these values so they must all be comparable.
    """
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
