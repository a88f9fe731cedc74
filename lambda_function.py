"""AWS Lambda handler for school calendar event ingestion."""
import json
import logging
import os
import re
import time
from datetime import datetime
from typing import Any, Dict

from processor.errors import DecodeFailure, StoreFailure, ValidationFailure
from processor.models import SCHOOLS, RawSourcePayload, SourceOrigin
from processor.pipeline import CalendarPipeline
from scraper.wlwv_calendar import WLWVCalendarScraper
from storage.dynamodb_manager import DynamoDBManager

MONTH_PATTERN = re.compile(r'^\d{4}-(0[1-9]|1[0-2])$')

# Attributes present on every LogRecord; anything else came in via `extra`
RESERVED_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {'message', 'asctime'}

ORIGIN_HINTS = {
    'calendar': SourceOrigin.ICAL,
    'json': SourceOrigin.API_JSON,
    'rss': SourceOrigin.RSS,
    'xml': SourceOrigin.RSS,
    'html': SourceOrigin.HTML_EMBEDDED,
}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including structured extras."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in record.__dict__.items():
            if key not in RESERVED_ATTRS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'headers': {'Content-Type': 'application/json'},
        'body': json.dumps(body)
    }


def parse_request(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Read pipeline parameters from an API Gateway or direct invocation event.

    Raises:
        DecodeFailure: If the request body is not a JSON object
        ValidationFailure: If school or targetMonth are invalid
    """
    body = event.get('body') if isinstance(event, dict) and 'body' in event else event
    if isinstance(body, str):
        try:
            body = json.loads(body) if body.strip() else {}
        except ValueError as e:
            raise DecodeFailure(f"Request body is not valid JSON: {e}")
    if body is None:
        body = {}
    if not isinstance(body, dict):
        raise DecodeFailure("Request body must be a JSON object")

    target_month = body.get('targetMonth') or datetime.now().strftime('%Y-%m')
    school = body.get('school') or os.environ.get('DEFAULT_SCHOOL', 'wlhs')
    department = body.get('department') or os.environ.get('DEFAULT_DEPARTMENT', 'Life')

    if not isinstance(target_month, str) or not MONTH_PATTERN.match(target_month):
        raise ValidationFailure("targetMonth must be in YYYY-MM format")
    if school not in SCHOOLS:
        raise ValidationFailure(f"school must be one of: {', '.join(SCHOOLS)}")

    fetch_only = body.get('fetchOnly', False)
    if isinstance(fetch_only, str):
        fetch_only = fetch_only.strip().lower() in ('true', '1', 'yes')

    return {
        'target_month': target_month,
        'school': school,
        'department': str(department),
        'fetch_only': bool(fetch_only),
        'raw_payload': body.get('rawPayload'),
        'content_type_hint': body.get('contentTypeHint') or ''
    }


def build_payload(raw_payload: Any, content_type_hint: str) -> RawSourcePayload:
    """Wrap a caller-supplied payload, guessing its origin from the hint."""
    origin = SourceOrigin.UNKNOWN
    hint = content_type_hint.lower()
    for marker, candidate in ORIGIN_HINTS.items():
        if marker in hint:
            origin = candidate
            break
    return RawSourcePayload(
        body=raw_payload,
        content_type=content_type_hint,
        origin=origin,
        source_name='request'
    )


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler for calendar ingestion.

    Args:
        event: API Gateway proxy event or direct invocation payload
        context: Lambda context object

    Returns:
        Response dict with statusCode and the pipeline report as body
    """
    # Read configuration from environment variables
    table_name = os.environ.get('TABLE_NAME', 'school-calendar-events')
    log_level = os.environ.get('LOG_LEVEL', 'INFO')
    timeout_seconds = int(os.environ.get('TIMEOUT_SECONDS', '30'))
    max_retries = int(os.environ.get('MAX_RETRIES', '3'))

    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()

    try:
        request = parse_request(event)
    except ValidationFailure as e:
        logger.warning(f"Invalid request: {e}")
        return _response(400, {'error': 'Invalid request', 'details': str(e)})
    except DecodeFailure as e:
        logger.error(f"Unreadable request: {e}")
        return _response(500, {'error': 'Unreadable request', 'details': str(e)})

    logger.info(
        "Calendar ingestion started",
        extra={
            'stage': 'request',
            'target_month': request['target_month'],
            'school': request['school'],
            'fetch_only': request['fetch_only'],
            'table_name': table_name
        }
    )

    try:
        store = None
        if not request['fetch_only']:
            store = DynamoDBManager(table_name=table_name)
            store.check_available()

        pipeline = CalendarPipeline(store=store)

        if request['raw_payload'] is not None:
            report = pipeline.run(
                build_payload(request['raw_payload'], request['content_type_hint']),
                school=request['school'],
                department=request['department'],
                target_month=request['target_month'],
                fetch_only=request['fetch_only']
            )
        else:
            scraper = WLWVCalendarScraper(
                timeout=timeout_seconds,
                max_retries=max_retries,
                base_url=os.environ.get('CALENDAR_BASE_URL'),
                calendar_id=os.environ.get('CALENDAR_ID'),
                rss_url=os.environ.get('CALENDAR_RSS_URL')
            )
            report = pipeline.run_sources(
                scraper.strategies(),
                school=request['school'],
                department=request['department'],
                target_month=request['target_month'],
                fetch_only=request['fetch_only']
            )

    except StoreFailure as e:
        logger.error(
            f"Event store unavailable: {e}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return _response(500, {'error': 'Event store unavailable', 'details': str(e)})
    except DecodeFailure as e:
        logger.error(f"Payload could not be decoded: {e}", exc_info=True)
        return _response(500, {'error': 'Scraping failed', 'details': str(e)})
    except Exception as e:
        logger.error(
            f"Calendar ingestion failed: {e}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return _response(500, {'error': 'Scraping failed', 'details': str(e)})

    duration = time.time() - start_time
    logger.info(
        "Calendar ingestion completed",
        extra={
            'stage': 'response',
            'duration_seconds': round(duration, 2),
            'processed': report.processed,
            'inserted': report.inserted,
            'skipped': report.skipped,
            'error_count': len(report.errors)
        }
    )
    return _response(200, report.to_dict())
