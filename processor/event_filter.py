"""Filter for A/B day rotation markers."""
import logging
import re
from typing import List

from processor.models import NormalizedEvent

logger = logging.getLogger(__name__)

SCHEDULE_MARKER_TITLES = frozenset(['a day', 'b day', 'day a', 'day b'])
SCHEDULE_MARKER_PATTERNS = (
    re.compile(r'^[ab]\s+day$', re.IGNORECASE),
    re.compile(r'^day\s+[ab]$', re.IGNORECASE),
)


def is_schedule_marker(title: str) -> bool:
    """Return True if the title only flags an A/B rotation day."""
    if not title:
        return False
    lowered = title.strip().lower()
    if lowered in SCHEDULE_MARKER_TITLES:
        return True
    return any(pattern.match(lowered) for pattern in SCHEDULE_MARKER_PATTERNS)


def filter_schedule_markers(events: List[NormalizedEvent]) -> List[NormalizedEvent]:
    """
    Drop schedule markers from a list of events.

    Safe to apply more than once; the surviving list does not change.
    """
    kept = [event for event in events if not is_schedule_marker(event.title)]
    dropped = len(events) - len(kept)
    if dropped:
        logger.info(
            f"Filtered {dropped} schedule marker entries",
            extra={'stage': 'filter', 'dropped': dropped}
        )
    return kept
