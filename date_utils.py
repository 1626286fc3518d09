"""
Date and time helpers for the tracker.

All timestamps handled by the engine are timezone-aware UTC datetimes.
External GPS feeds send ``dt_tracker`` either as ISO 8601 strings, epoch
milliseconds, or naive ``datetime`` objects; :func:`parse_timestamp` folds
all of them into one representation.
"""

import logging
from datetime import UTC, datetime

from dateutil import parser

logger = logging.getLogger(__name__)


def get_current_utc_time() -> datetime:
    """Return the current time as a timezone-aware datetime object in UTC."""
    return datetime.now(UTC)


def parse_timestamp(ts: str | int | float | datetime | None) -> datetime | None:
    """
    Parse a timestamp and ensure it is timezone-aware, defaulting to UTC.

    Args:
        ts: ISO 8601 string, epoch milliseconds, or a datetime object.

    Returns:
        A timezone-aware datetime object, or None if parsing fails.
    """
    if ts is None or ts == "":
        return None

    if isinstance(ts, datetime):
        return ensure_utc(ts)

    if isinstance(ts, bool):
        return None

    if isinstance(ts, (int, float)):
        try:
            return datetime.fromtimestamp(ts / 1000, tz=UTC)
        except (OverflowError, OSError, ValueError) as e:
            logger.debug("Failed to parse epoch timestamp %s: %s", ts, e)
            return None

    try:
        parsed_time = parser.isoparse(ts)
    except (ValueError, TypeError):
        try:
            parsed_time = parser.parse(ts)
        except (ValueError, TypeError, OverflowError) as e:
            logger.debug("Failed to parse timestamp '%s': %s", ts, e)
            return None
    return ensure_utc(parsed_time)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Return the datetime as an explicit UTC-aware value."""

    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)

    return dt.astimezone(UTC)


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes elapsed from ``start`` to ``end`` (floored)."""
    return int((ensure_utc(end) - ensure_utc(start)).total_seconds() // 60)
