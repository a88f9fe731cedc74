"""Classify raw payloads by shape."""
import logging
import re
from typing import Any

from processor.models import FormatKind

logger = logging.getLogger(__name__)

RSS_ITEM_PATTERN = re.compile(r'<item(?:\s[^>]*)?>', re.IGNORECASE)


def payload_text(payload: Any) -> str:
    """Best-effort text view of a payload for sniffing only."""
    if isinstance(payload, bytes):
        return payload.decode('utf-8', errors='replace')
    if isinstance(payload, str):
        return payload
    return ''


def detect(payload: Any,
           declared_content_type: str = '') -> FormatKind:
    """
    Classify a payload as JSON, iCal, RSS or unrecognized.

    Args:
        payload: Raw body text/bytes, or an already parsed JSON value
        declared_content_type: Content type reported by the source, if any

    Returns:
        The detected FormatKind. Never raises.
    """
    if isinstance(payload, list):
        return FormatKind.JSON_ARRAY
    if isinstance(payload, dict):
        return FormatKind.JSON_WRAPPED
    if payload is None:
        return FormatKind.UNRECOGNIZED

    content_type = (declared_content_type or '').lower()
    text = payload_text(payload).lstrip('\ufeff')
    stripped = text.strip()

    if 'calendar' in content_type or stripped.startswith('BEGIN:VCALENDAR'):
        kind = FormatKind.ICAL
    elif 'json' in content_type or stripped[:1] in ('{', '['):
        if stripped.startswith('['):
            kind = FormatKind.JSON_ARRAY
        else:
            kind = FormatKind.JSON_WRAPPED
    elif RSS_ITEM_PATTERN.search(text):
        kind = FormatKind.RSS
    else:
        kind = FormatKind.UNRECOGNIZED

    logger.debug(
        f"Detected payload format: {kind.value}",
        extra={'stage': 'detect', 'content_type': content_type}
    )
    return kind
