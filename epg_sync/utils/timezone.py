"""
Date and Time utilities

This module handles conversions between UTC milliseconds and datetimes,
ISO8601 parsing for the query API, and sync window calculation.
All sync arithmetic is done on integer UTC milliseconds so window and tiling
boundaries are exact.
"""
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo
import logging
import time

from epg_sync.services.sync_types import SyncWindow

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class DateFormatError(ValueError):
    """Raised when date format is invalid"""
    pass


class SystemClock:
    """Wall clock reporting UTC milliseconds since the epoch"""

    def now_ms(self) -> int:
        return time.time_ns() // 1_000_000


def ms_to_utc_datetime(timestamp_ms: int) -> datetime:
    """Convert UTC milliseconds since the epoch to an aware UTC datetime"""
    return EPOCH + timedelta(milliseconds=timestamp_ms)


def utc_datetime_to_ms(dt: datetime) -> int:
    """Convert a datetime to UTC milliseconds; naive values are taken as UTC"""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    delta = dt - EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def compute_sync_window(now_ms: int, period_ms: int) -> SyncWindow:
    """
    Calculate the sync window for a pass starting at ``now_ms``

    The start is aligned down to the current hour so every device syncing
    within the same hour lands on the same boundary.

    Args:
        now_ms: Current time in UTC milliseconds
        period_ms: Requested window length in milliseconds

    Returns:
        SyncWindow covering [hour_start, hour_start + period_ms)

    Raises:
        ValueError: If period_ms is not positive
    """
    if period_ms <= 0:
        raise ValueError(f"Sync period must be positive, got {period_ms} ms")
    start_ms = now_ms - now_ms % HOUR_MS
    return SyncWindow(start_ms=start_ms, end_ms=start_ms + period_ms)


def _normalize_iso8601_string(date_str: str) -> str:
    """Normalize ISO8601 string by replacing 'Z' with '+00:00'

    Args:
        date_str: ISO8601 datetime string

    Returns:
        Normalized string with explicit timezone offset
    """
    return date_str.replace('Z', '+00:00') if date_str.endswith('Z') else date_str


def parse_iso8601_to_utc(date_str: str) -> datetime:
    """
    Parse ISO8601 date string and convert to UTC datetime

    Args:
        date_str: ISO8601 datetime string (e.g., '2025-10-09T00:00:00Z' or '2025-10-09T00:00:00+01:00')

    Returns:
        Timezone-aware datetime in UTC

    Raises:
        DateFormatError: If the date string format is invalid
    """
    try:
        normalized = _normalize_iso8601_string(date_str)
        dt = datetime.fromisoformat(normalized)
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    except (ValueError, AttributeError) as e:
        raise DateFormatError(f"Invalid ISO8601 datetime format: '{date_str}'") from e


def format_ms_in_timezone(timestamp_ms: int, target_tz: str) -> str:
    """
    Render a UTC millisecond timestamp as ISO8601 in the target timezone

    Args:
        timestamp_ms: UTC milliseconds since the epoch
        target_tz: Target timezone (IANA format or 'UTC')

    Returns:
        ISO8601 timestamp in target timezone
    """
    dt = ms_to_utc_datetime(timestamp_ms)

    if target_tz == "UTC":
        return dt.isoformat()

    return dt.astimezone(ZoneInfo(target_tz)).isoformat()
