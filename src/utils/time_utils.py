"""
Time helpers shared by quota, retry and polling logic
"""

from datetime import datetime, date, UTC
from typing import Optional
from zoneinfo import ZoneInfo

from config.config import QUOTA_TIMEZONE


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime read from the database to aware UTC

    SQLite drops tzinfo on DateTime(timezone=True) columns; values are
    always written in UTC so a naive value is UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def quota_today(now: Optional[datetime] = None) -> date:
    """Current calendar date in the quota timezone"""
    now = now or utcnow()
    return as_utc(now).astimezone(ZoneInfo(QUOTA_TIMEZONE)).date()
