"""
UTC helpers.

SQLite hands DateTime columns back without tzinfo, so timestamps are kept
as naive UTC throughout the bot.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> datetime:
    """Normalize an optional datetime to naive UTC, defaulting to now"""
    if value is None:
        return utcnow()
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def week_bounds(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Monday 00:00 UTC of the week containing now, and the following Monday"""
    now = to_naive_utc(now)
    week_start = (now - timedelta(days=now.weekday())).replace(hour=0, minute=0, second=0, microsecond=0)
    return week_start, week_start + timedelta(days=7)


def format_week(week_start: datetime) -> str:
    week_last_day = week_start + timedelta(days=6)
    return f"{week_start.strftime('%b %d')} - {week_last_day.strftime('%b %d')}"
