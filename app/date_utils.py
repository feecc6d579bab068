"""
Date parsing utilities for query parameters and request bodies.
All timestamps are stored as naive UTC datetimes.
"""
import logging
import re
from datetime import date, datetime, time, timezone
from typing import Any, Optional

import dateparser

logger = logging.getLogger(__name__)

ISO_DATE_PATTERN = r'^\d{4}-\d{2}-\d{2}$'

# Naive input is read as UTC; aware results are normalized by to_naive_utc
DATEPARSER_SETTINGS = {
    'TIMEZONE': 'UTC',
    'RETURN_AS_TIMEZONE_AWARE': True,
}


def utc_now() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_datetime_param(value: Any, end_of_day: bool = False) -> Optional[datetime]:
    """
    Parse a date or datetime query parameter.

    Supports:
    - ISO dates: 2026-02-22 (start of day, or end of day when end_of_day=True)
    - ISO datetimes: 2026-02-22T10:30:00, with optional offset or trailing Z
    - Other layouts via dateparser: 2026/02/22, 22 Feb 2026, Feb 22 2026 10:30
    - datetime/date objects passed through

    Args:
        value: Raw parameter value
        end_of_day: Expand bare dates to 23:59:59.999999 instead of midnight

    Returns:
        Naive UTC datetime, or None if the value is empty or unparseable
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.max if end_of_day else time.min)

    text = str(value).strip()
    if not text or text.lower() in ("null", "none", "undefined"):
        return None

    # Try ISO date first (YYYY-MM-DD)
    if re.match(ISO_DATE_PATTERN, text):
        try:
            parsed_date = date.fromisoformat(text)
            return datetime.combine(parsed_date, time.max if end_of_day else time.min)
        except ValueError:
            pass

    iso_text = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        return to_naive_utc(datetime.fromisoformat(iso_text))
    except ValueError:
        pass

    # Anything else goes through dateparser
    try:
        parsed = dateparser.parse(text, settings=DATEPARSER_SETTINGS)
    except Exception as e:
        logger.debug(f"dateparser failed for '{text}': {e}")
        parsed = None

    if parsed is None:
        logger.debug(f"Could not parse date parameter: '{value}'")
        return None

    parsed = to_naive_utc(parsed)
    if end_of_day and ":" not in text and parsed.time() == time.min:
        # Bare date in another layout (2026/01/31, 31 Jan 2026)
        return datetime.combine(parsed.date(), time.max)
    return parsed


def format_datetime_iso(d: Optional[datetime]) -> Optional[str]:
    """
    Format a stored datetime to ISO 8601 with a trailing Z.

    Args:
        d: Naive UTC datetime or None

    Returns:
        ISO format string or None
    """
    if d is None:
        return None
    return d.isoformat() + "Z"
