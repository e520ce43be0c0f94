"""
Datetime utility functions.
All persisted timestamps are timezone-aware UTC.
"""

from datetime import datetime
from typing import Optional
import pytz


# "Never read" watermark: every message is newer than this
EPOCH_ZERO = datetime(1970, 1, 1, tzinfo=pytz.UTC)


def utcnow() -> datetime:
    """
    Get current UTC datetime using pytz.UTC.

    Returns:
        Current UTC datetime with pytz timezone information
    """
    return datetime.now(pytz.UTC)


def ensure_utc(value: datetime) -> datetime:
    """
    Attach UTC to naive datetimes read back from stores that drop tzinfo
    (SQLite), and convert aware ones to UTC.
    """
    if value.tzinfo is None:
        return pytz.UTC.localize(value)
    return value.astimezone(pytz.UTC)


def isoformat_or_none(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime for API payloads."""
    if value is None:
        return None
    return ensure_utc(value).isoformat()
