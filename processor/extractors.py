"""Field extraction for each supported payload format.

Alternate field spellings live in ordered rule tables so that a new source
spelling is a data change. The first non-empty value in a table wins.
"""
import json
import logging
import re
from datetime import date, datetime
from typing import Any, Iterable, List, Optional, Tuple, Union

import feedparser
from bs4 import BeautifulSoup
from icalendar import Calendar, Component, Event

from processor.errors import DecodeFailure
from processor.models import FormatKind, RawEventRecord

logger = logging.getLogger(__name__)

FIELD_RULES = {
    'title': (
        'Title', 'EventTitle', 'Subject', 'title', 'name', 'summary',
        'Summary', 'subject', 'Name', 'eventTitle'
    ),
    'date': (
        'Start', 'StartDate', 'EventDate', 'Date', 'start', 'startDate',
        'start_date', 'date', 'eventDate'
    ),
    'time': ('StartTime', 'Time', 'startTime', 'start_time', 'time', 'start'),
    'description': (
        'Description', 'Body', 'description', 'Details', 'details', 'body', 'desc'
    ),
}

# Checked in this order; the first key holding a list wins
WRAPPER_KEYS = ('Events', 'items', 'data', 'events', 'Items', 'results')

SCRIPT_PATTERNS = (
    re.compile(r'var\s+events\s*=\s*(\[[\s\S]*?\]);'),
    re.compile(r'var\s+eventData\s*=\s*(\[[\s\S]*?\]);'),
    re.compile(r'var\s+calendarEvents\s*=\s*(\[[\s\S]*?\]);'),
    re.compile(r'var\s+calendarData\s*=\s*(\[[\s\S]*?\]);'),
    re.compile(r'Bb\.Calendar\.events\s*=\s*(\[[\s\S]*?\]);'),
    re.compile(r'\.fullCalendar\([^,]+,\s*(\[[\s\S]*?\])\s*\)'),
    re.compile(r'events\s*:\s*(\[[\s\S]*?\])[,\s]*[}\)]'),
)
DATA_ATTRIBUTES = ('data-event', 'data-events')


def _first_value(item: dict, keys: Iterable[str]) -> Optional[Any]:
    for key in keys:
        value = item.get(key)
        if value is None or isinstance(value, (dict, list, bool)):
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def extract_fields(item: Any) -> Optional[RawEventRecord]:
    """
    Pull title/date/time/description from one JSON-like event object.

    Args:
        item: A single element of an event list

    Returns:
        RawEventRecord or None if the element is not a mapping
    """
    if not isinstance(item, dict):
        return None
    return RawEventRecord(
        title=_first_value(item, FIELD_RULES['title']),
        date=_first_value(item, FIELD_RULES['date']),
        time=_first_value(item, FIELD_RULES['time']),
        description=_first_value(item, FIELD_RULES['description'])
    )


def _unwrap_envelope(data: Any) -> Any:
    """Unwrap ASP.NET page-method responses of the form {"d": ...}."""
    if isinstance(data, dict) and data.get('d') is not None:
        data = data['d']
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except ValueError as e:
                raise DecodeFailure(f"Invalid JSON inside 'd' envelope: {e}")
    return data


def locate_event_list(data: Any) -> List[Any]:
    """Find the list of event objects in a parsed JSON value."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in WRAPPER_KEYS:
            if isinstance(data.get(key), list):
                return data[key]
    return []


def _records_from_items(items: List[Any]) -> List[RawEventRecord]:
    records = []
    for item in items:
        try:
            record = extract_fields(item)
            if record:
                records.append(record)
        except Exception as e:
            logger.warning(f"Failed to extract event fields: {e}")
            continue
    return records


def extract_json_records(data: Union[str, list, dict]) -> List[RawEventRecord]:
    """
    Extract raw records from a JSON payload.

    Raises:
        DecodeFailure: If the text is not valid JSON
    """
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except ValueError as e:
            raise DecodeFailure(f"Invalid JSON payload: {e}")

    data = _unwrap_envelope(data)
    items = locate_event_list(data)
    logger.info(
        f"Found {len(items)} raw JSON events",
        extra={'stage': 'extract', 'format': 'json', 'raw_count': len(items)}
    )
    return _records_from_items(items)


def _ical_text(component: Component, name: str) -> Optional[str]:
    value = component.get(name)
    if value is None:
        return None
    return str(value).strip()


def _ical_start(component: Component) -> Tuple[Optional[str], Optional[str]]:
    """DTSTART as an ISO value plus its wall-clock time, if it has one."""
    prop = component.get('DTSTART')
    if prop is None:
        return None, None
    start = getattr(prop, 'dt', None)
    if isinstance(start, datetime):
        return start.isoformat(), start.strftime('%H:%M')
    if isinstance(start, date):
        return start.isoformat(), None
    return str(prop), None


def _ical_fragments(text: str) -> List[Component]:
    """Parse VEVENT blocks one at a time when the calendar as a whole is rejected."""
    events = []
    for chunk in text.split('BEGIN:VEVENT')[1:]:
        block = chunk.split('END:VEVENT')[0].strip('\r\n')
        try:
            events.append(Event.from_ical(f"BEGIN:VEVENT\r\n{block}\r\nEND:VEVENT"))
        except Exception as e:
            logger.warning(f"Failed to parse VEVENT block: {e}")
    return events


def extract_ical_records(text: str) -> List[RawEventRecord]:
    """
    Extract raw records from iCalendar text, one per VEVENT.

    Raises:
        DecodeFailure: If the text holds neither a calendar nor an event
    """
    if 'BEGIN:VEVENT' not in text and 'BEGIN:VCALENDAR' not in text:
        raise DecodeFailure("Payload is not iCalendar text")

    try:
        components = Calendar.from_ical(text).walk('VEVENT')
    except ValueError as e:
        logger.warning(
            f"Calendar rejected, parsing events individually: {e}",
            extra={'stage': 'extract', 'format': 'ical'}
        )
        components = _ical_fragments(text)

    records = []
    for component in components:
        try:
            start, time = _ical_start(component)
            records.append(RawEventRecord(
                title=_ical_text(component, 'SUMMARY'),
                date=start,
                time=time,
                description=_ical_text(component, 'DESCRIPTION')
            ))
        except Exception as e:
            logger.warning(f"Failed to extract VEVENT: {e}")
            continue

    logger.info(
        f"Found {len(records)} iCal events",
        extra={'stage': 'extract', 'format': 'ical', 'raw_count': len(records)}
    )
    return records


def _strip_markup(content: str) -> str:
    return BeautifulSoup(content, 'html.parser').get_text(' ', strip=True)


def _entry_text(entry, *keys: str) -> Optional[str]:
    for key in keys:
        value = entry.get(key)
        if value:
            return _strip_markup(value)
    return None


def extract_rss_records(text: str) -> List[RawEventRecord]:
    """Extract raw records from RSS text, one per feed entry."""
    feed = feedparser.parse(text.encode('utf-8'))
    if feed.bozo and not feed.entries:
        logger.warning(f"Unreadable RSS feed: {feed.get('bozo_exception')}")

    records = []
    for entry in feed.entries:
        try:
            published = entry.get('published') or entry.get('updated')
            records.append(RawEventRecord(
                title=_entry_text(entry, 'title'),
                date=published,
                time=published,
                description=_entry_text(entry, 'summary', 'description')
            ))
        except Exception as e:
            logger.warning(f"Failed to extract RSS item: {e}")
            continue

    logger.info(
        f"Found {len(records)} RSS items",
        extra={'stage': 'extract', 'format': 'rss', 'raw_count': len(records)}
    )
    return records


def repair_quasi_json(text: str) -> str:
    """
    Rewrite a JavaScript literal into something json.loads may accept.

    Lossy: apostrophes inside strings become double quotes.
    """
    text = re.sub(
        r'new\s+Date\(\s*([^)]*?)\s*\)',
        lambda m: '"' + m.group(1).strip('\'"') + '"',
        text
    )
    text = text.replace("'", '"')
    text = re.sub(r'([{,]\s*)([A-Za-z_$][\w$]*)\s*:', r'\1"\2":', text)
    text = re.sub(r',\s*([}\]])', r'\1', text)
    return text


def parse_embedded_json(text: str) -> Any:
    """
    Parse JSON embedded in a page, repairing it if needed.

    Raises:
        DecodeFailure: If the text cannot be parsed even after repair
    """
    try:
        return json.loads(text)
    except ValueError:
        pass
    try:
        return json.loads(repair_quasi_json(text))
    except ValueError as e:
        raise DecodeFailure(f"Unable to repair embedded event data: {e}")


def _records_from_embedded(value: Any) -> List[RawEventRecord]:
    if isinstance(value, dict) and not locate_event_list(value):
        return _records_from_items([value])
    return _records_from_items(locate_event_list(value))


def extract_html_records(html: str) -> List[RawEventRecord]:
    """
    Scan an HTML page for event data in scripts and data attributes.

    Every failing match is logged and skipped.
    """
    soup = BeautifulSoup(html, 'html.parser')
    scripts = [script.string or '' for script in soup.find_all('script')]
    if not scripts and not soup.find():
        scripts = [html]

    records = []
    matches = 0

    for script in scripts:
        for pattern in SCRIPT_PATTERNS:
            for match in pattern.finditer(script):
                matches += 1
                try:
                    records.extend(
                        _records_from_embedded(parse_embedded_json(match.group(1)))
                    )
                except DecodeFailure as e:
                    logger.warning(
                        f"Failed to parse script event data: {e}",
                        extra={'stage': 'extract', 'pattern': pattern.pattern}
                    )

    for attribute in DATA_ATTRIBUTES:
        for element in soup.find_all(attrs={attribute: True}):
            matches += 1
            try:
                records.extend(
                    _records_from_embedded(parse_embedded_json(element[attribute]))
                )
            except DecodeFailure as e:
                logger.warning(
                    f"Failed to parse {attribute} attribute: {e}",
                    extra={'stage': 'extract'}
                )

    logger.info(
        f"Found {len(records)} embedded events in {matches} matches",
        extra={'stage': 'extract', 'format': 'html', 'raw_count': len(records)}
    )
    return records


def extract_records(body: Union[str, list, dict], kind: FormatKind) -> List[RawEventRecord]:
    """
    Extract raw records from a payload of a detected format.

    Unrecognized payloads get the HTML-embedded scan.

    Raises:
        DecodeFailure: If the payload is malformed for its format
    """
    if kind in (FormatKind.JSON_ARRAY, FormatKind.JSON_WRAPPED):
        return extract_json_records(body)
    if not isinstance(body, str):
        raise DecodeFailure(f"Expected text for {kind.value} payload")
    if kind == FormatKind.ICAL:
        return extract_ical_records(body)
    if kind == FormatKind.RSS:
        return extract_rss_records(body)
    return extract_html_records(body)
