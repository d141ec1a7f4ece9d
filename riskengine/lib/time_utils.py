"""
Time utilities for trading operations.

This module provides timezone-aware helpers for:
- Normalizing timestamps to UTC
- Deriving the calendar trading day of an update
- Session hour checks used by entry filters and session-end exits

All session hours are expressed in UTC to match the broker server clock.
"""

from datetime import datetime, date
from typing import Optional

from riskengine.lib.constants import UTC_TIMEZONE


def get_utc_now() -> datetime:
    """
    Get current time in UTC.

    Returns:
        Current datetime in UTC
    """
    return datetime.now(UTC_TIMEZONE)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime to UTC.

    Naive datetimes are assumed to already be UTC (broker server time).

    Args:
        dt: Datetime to convert

    Returns:
        Datetime in UTC timezone
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC_TIMEZONE)
    return dt.astimezone(UTC_TIMEZONE)


def trading_day(dt: Optional[datetime] = None) -> date:
    """
    Get the calendar trading day for a timestamp.

    Args:
        dt: Timestamp (uses current UTC time if None)

    Returns:
        UTC calendar date
    """
    if dt is None:
        dt = get_utc_now()
    return to_utc(dt).date()


def utc_hour(dt: datetime) -> int:
    """Get the UTC hour (0-23) of a timestamp."""
    return to_utc(dt).hour


def is_within_session(dt: datetime, start_hour: int, end_hour: int) -> bool:
    """
    Check if a timestamp falls inside the trading session.

    The session is the half-open hour range [start_hour, end_hour).

    Args:
        dt: Timestamp to check
        start_hour: First tradable hour (UTC)
        end_hour: First hour after the session (UTC)

    Returns:
        True if new positions may be opened at this hour
    """
    hour = utc_hour(dt)
    return start_hour <= hour < end_hour


def is_session_end_window(dt: datetime, end_hour: int, cutoff_hour: int) -> bool:
    """
    Check if a timestamp falls inside the end-of-session exit window.

    The window runs from end_hour up to (but excluding) cutoff_hour. When
    end_hour >= cutoff_hour the window is empty and the exit never fires.

    Args:
        dt: Timestamp to check
        end_hour: Session end hour (UTC)
        cutoff_hour: Late-night hour from which the exit stops firing

    Returns:
        True if open positions should be closed for the session end
    """
    hour = utc_hour(dt)
    return end_hour <= hour < cutoff_hour
