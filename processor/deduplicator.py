"""Insert-or-skip decisions keyed by (school, date, title)."""
import logging
from enum import Enum
from typing import Callable, List, Tuple

from processor.models import NormalizedEvent

logger = logging.getLogger(__name__)

EventKey = Tuple[str, str, str]
ExistsLookup = Callable[[str, str, str], bool]


class Decision(Enum):
    INSERT = 'insert'
    SKIP = 'skip'


def event_key(event: NormalizedEvent) -> EventKey:
    """Exact-string identity of an event; no case or whitespace folding."""
    return (event.school, event.date, event.title)


def should_insert(candidate: NormalizedEvent, lookup: ExistsLookup) -> Decision:
    """
    Decide whether a candidate is new to the store.

    Args:
        candidate: Normalized event about to be stored
        lookup: Existence check taking (school, date, title)

    Returns:
        Decision.INSERT if no stored event shares the key, else Decision.SKIP
    """
    if lookup(*event_key(candidate)):
        return Decision.SKIP
    return Decision.INSERT


def dedupe_batch(events: List[NormalizedEvent]) -> List[NormalizedEvent]:
    """Keep the first event for each key, preserving order."""
    seen = set()
    unique = []
    for event in events:
        key = event_key(event)
        if key in seen:
            continue
        seen.add(key)
        unique.append(event)

    if len(unique) < len(events):
        logger.info(
            f"Removed {len(events) - len(unique)} duplicate events within batch",
            extra={'stage': 'dedupe', 'duplicates': len(events) - len(unique)}
        )
    return unique
