"""
Standardized Date/Time Handling Utilities

Progression rules are evaluated against the user's local calendar: the
completion date, the completion hour and the quest periods all come from
the user's timezone.

CRITICAL RULES:
- Always store datetimes as timezone-aware values (use ensure_utc())
- Always evaluate days and hours in the user's timezone (use resolve_now())
- Never mix naive and aware datetimes
"""

import logging
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from questhabit.config import DEFAULT_TIMEZONE

logger = logging.getLogger(__name__)


def get_timezone(tz_name: Optional[str]) -> ZoneInfo:
    """
    Resolve an IANA timezone name, falling back to DEFAULT_TIMEZONE

    Args:
        tz_name: Timezone name from the user's profile

    Returns:
        ZoneInfo object
    """
    if not tz_name:
        return ZoneInfo(DEFAULT_TIMEZONE)

    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        logger.error(f"Invalid timezone '{tz_name}': {e}")
        return ZoneInfo(DEFAULT_TIMEZONE)


def now_utc() -> datetime:
    """
    Get current datetime in UTC (timezone-aware)

    Returns:
        Current datetime in UTC with timezone info
    """
    return datetime.now(ZoneInfo("UTC"))


def resolve_now(now: Optional[datetime], tz_name: Optional[str]) -> datetime:
    """
    The instant an operation happens, expressed in the user's timezone

    Args:
        now: Explicit instant (naive values are taken as the user's local time)
        tz_name: User's timezone

    Returns:
        Timezone-aware datetime in the user's timezone
    """
    user_tz = get_timezone(tz_name)

    if now is None:
        return datetime.now(user_tz)
    if now.tzinfo is None:
        return now.replace(tzinfo=user_tz)
    return now.astimezone(user_tz)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure datetime is in UTC (for database queries)

    Args:
        dt: Datetime (can be None, naive, or aware)

    Returns:
        Datetime in UTC, or None if input was None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        # Assume UTC for naive datetimes
        logger.warning(f"Received naive datetime, assuming UTC: {dt}")
        return dt.replace(tzinfo=ZoneInfo("UTC"))

    return dt.astimezone(ZoneInfo("UTC"))
