"""Data models for event ingestion."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

SCHOOLS = ('wlhs', 'wvhs')


class FormatKind(Enum):
    """Shape of a raw source payload."""
    JSON_ARRAY = 'json_array'
    JSON_WRAPPED = 'json_wrapped'
    ICAL = 'ical'
    RSS = 'rss'
    UNRECOGNIZED = 'unrecognized'


class SourceOrigin(Enum):
    """Where a payload claims to come from."""
    API_JSON = 'api-json'
    HTML_EMBEDDED = 'html-embedded'
    ICAL = 'ical'
    RSS = 'rss'
    UNKNOWN = 'unknown'


@dataclass(frozen=True)
class RawSourcePayload:
    """Raw body returned by one source, before any parsing."""
    body: Union[str, bytes, list, dict]
    content_type: str = ''
    origin: SourceOrigin = SourceOrigin.UNKNOWN
    source_name: str = 'payload'


@dataclass(frozen=True)
class SourceStrategy:
    """One way of retrieving calendar data for a target month."""
    name: str
    fetch: Callable[[str], RawSourcePayload]


@dataclass
class RawEventRecord:
    """Loosely typed event fields pulled from one source item."""
    title: Optional[Any] = None
    date: Optional[Any] = None
    time: Optional[Any] = None
    description: Optional[Any] = None


@dataclass
class NormalizedEvent:
    """Canonical event, the only shape the store accepts."""
    school: str
    date: str
    title: str
    department: str
    time: Optional[str] = None
    description: str = ''

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.school, self.date, self.title)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'school': self.school,
            'date': self.date,
            'time': self.time,
            'title': self.title,
            'description': self.description,
            'department': self.department
        }


@dataclass
class SourceAttempt:
    """Outcome of trying one source strategy."""
    strategy: str
    status: str
    reason: Optional[str] = None
    event_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'strategy': self.strategy,
            'status': self.status,
            'reason': self.reason,
            'eventCount': self.event_count
        }


@dataclass
class PipelineReport:
    """Result of one pipeline run."""
    month: str
    processed: int = 0
    inserted: int = 0
    skipped: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)
    events: List[NormalizedEvent] = field(default_factory=list)
    fetch_only: bool = False
    source: Optional[str] = None
    attempts: List[SourceAttempt] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize as the HTTP response body."""
        body = {
            'success': True,
            'month': self.month,
            'fetchOnly': self.fetch_only,
            'processed': self.processed,
            'inserted': self.inserted,
            'skipped': self.skipped,
            'errors': self.errors,
            'events': [event.to_dict() for event in self.events],
            'source': self.source
        }
        if self.attempts:
            body['attempts'] = [attempt.to_dict() for attempt in self.attempts]
        return body
