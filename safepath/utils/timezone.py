"""
Timezone utilities for the SafePath backend

All timestamps are stored and compared in UTC. Time-of-day safety penalties
need the traveler's local hour, which clients send as a UTC offset.
"""

from datetime import datetime, timezone, timedelta
from typing import Optional


def now_utc() -> datetime:
    """Get current datetime in UTC"""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime] = None) -> datetime:
    """
    Ensure datetime is timezone-aware UTC.
    If dt is None, returns current UTC time.
    If dt has no timezone, assumes it's already UTC.
    """
    if dt is None:
        return now_utc()

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def local_hour(dt: Optional[datetime] = None, utc_offset_minutes: int = 0) -> int:
    """Hour of day (0-23) at the traveler's location"""
    return (ensure_utc(dt) + timedelta(minutes=utc_offset_minutes)).hour


def utc_isoformat(dt: Optional[datetime] = None) -> str:
    """Get ISO format string for UTC datetime"""
    return ensure_utc(dt).isoformat()

