"""
UTC clock helpers.

All persisted timestamps are timezone-aware UTC. SQLite drops tzinfo on
read, so values coming back from storage go through ensure_utc().
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_timestamp(seconds: Optional[int]) -> Optional[datetime]:
    """Convert an epoch-seconds value (as sent by Stripe) to aware UTC."""
    if seconds is None:
        return None
    return datetime.fromtimestamp(int(seconds), tz=timezone.utc)
