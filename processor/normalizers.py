"""Date and time normalization shared by every source format."""
import logging
import re
from datetime import date, datetime, timezone
from typing import Any, Optional

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

MONTH_NAMES = [
    'January', 'February', 'March', 'April', 'May', 'June',
    'July', 'August', 'September', 'October', 'November', 'December'
]

ASPNET_DATE_PATTERN = re.compile(r'^/Date\((-?\d+)(?:[+-]\d{4})?\)/$')
ISO_DATE_PATTERN = re.compile(r'^(\d{4})-(\d{2})-(\d{2})(?:[T\s]|$)')
US_DATE_PATTERN = re.compile(r'^(\d{1,2})/(\d{1,2})/(\d{4})\b')
COMPACT_DATE_PATTERN = re.compile(r'^(\d{4})(\d{2})(\d{2})(?:T\d{0,6}Z?)?$')
MONTH_NAME_PATTERN = re.compile(
    r'(' + '|'.join(MONTH_NAMES) + r')\s+(\d{1,2})(?:st|nd|rd|th)?,?\s+(\d{4})',
    re.IGNORECASE
)
TIME_PATTERN = re.compile(r'(\d{1,2}):(\d{2})(?::\d{2})?\s*([AaPp][Mm])?')

# Epoch milliseconds have at least ten digits
EPOCH_MILLIS_FLOOR = 10 ** 9

# Two distinct fill-in values for parts missing from free-form text
PARSE_DEFAULTS = (datetime(2000, 1, 1), datetime(2001, 2, 2))


def _iso(year: int, month: int, day: int) -> Optional[str]:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def _from_epoch_millis(millis: float) -> Optional[str]:
    try:
        moment = datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
    return moment.date().isoformat()


def normalize_date(raw: Any) -> Optional[str]:
    """
    Normalize a date in any supported shape to ISO 8601 (YYYY-MM-DD).

    Shapes are tried in a fixed order: epoch milliseconds, ISO datetime,
    US M/D/YYYY, compact YYYYMMDD, full month name, then generic parsing.

    Args:
        raw: Date value as found in the source

    Returns:
        ISO date string or None if the value cannot be resolved
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        if abs(raw) >= EPOCH_MILLIS_FLOOR:
            return _from_epoch_millis(raw)
        if not isinstance(raw, int):
            return None
        # Short integers are only ever compact YYYYMMDD dates
        match = COMPACT_DATE_PATTERN.match(str(raw))
        if not match:
            return None
        return _iso(int(match.group(1)), int(match.group(2)), int(match.group(3)))

    value = str(raw).strip()
    if not value:
        return None

    match = ASPNET_DATE_PATTERN.match(value)
    if match:
        return _from_epoch_millis(int(match.group(1)))

    match = ISO_DATE_PATTERN.match(value)
    if match:
        return _iso(int(match.group(1)), int(match.group(2)), int(match.group(3)))

    if '/' in value:
        match = US_DATE_PATTERN.match(value)
        if match:
            return _iso(int(match.group(3)), int(match.group(1)), int(match.group(2)))

    match = COMPACT_DATE_PATTERN.match(value)
    if match:
        return _iso(int(match.group(1)), int(match.group(2)), int(match.group(3)))

    match = MONTH_NAME_PATTERN.search(value)
    if match:
        month = MONTH_NAMES.index(match.group(1).capitalize()) + 1
        return _iso(int(match.group(3)), month, int(match.group(2)))

    try:
        parsed = {
            date_parser.parse(value, default=default).date()
            for default in PARSE_DEFAULTS
        }
    except (ValueError, OverflowError) as e:
        logger.debug(f"Unable to parse date '{value}': {e}")
        return None

    # A result that moves with the defaults was never in the text
    if len(parsed) != 1:
        logger.debug(f"Incomplete date '{value}'")
        return None
    return parsed.pop().isoformat()


def normalize_time(raw: Any) -> Optional[str]:
    """
    Normalize a time to 24-hour HH:MM.

    Args:
        raw: Time text such as "3:00 PM" or "15:00"

    Returns:
        HH:MM string or None when no time can be read
    """
    if raw is None or isinstance(raw, (bool, int, float)):
        return None

    match = TIME_PATTERN.search(str(raw))
    if not match:
        return None

    hours = int(match.group(1))
    minutes = int(match.group(2))
    meridiem = match.group(3)

    if meridiem:
        meridiem = meridiem.upper()
        if hours < 1 or hours > 12:
            return None
        if meridiem == 'PM' and hours < 12:
            hours += 12
        elif meridiem == 'AM' and hours == 12:
            hours = 0

    if hours > 23 or minutes > 59:
        return None

    return f"{hours:02d}:{minutes:02d}"
