"""Integration tests for Lambda handler."""
import json
import logging
import os
from unittest.mock import Mock, patch

import pytest

from lambda_function import JsonFormatter, lambda_handler, parse_request, setup_logging
from processor.errors import StoreFailure, TransportFailure
from processor.models import RawSourcePayload, SourceOrigin, SourceStrategy

ICAL_CONCERT = (
    "BEGIN:VCALENDAR\r\n"
    "BEGIN:VEVENT\r\n"
    "SUMMARY:Spring Concert\r\n"
    "DTSTART:20250613T180000\r\n"
    "END:VEVENT\r\n"
    "END:VCALENDAR\r\n"
)


@pytest.fixture
def mock_env(dynamodb_table):
    """Set up environment variables for testing."""
    env_vars = {
        'TABLE_NAME': dynamodb_table.name,
        'LOG_LEVEL': 'INFO',
        'TIMEOUT_SECONDS': '5',
        'MAX_RETRIES': '1'
    }
    with patch.dict(os.environ, env_vars):
        yield env_vars


@pytest.fixture
def mock_context():
    """Create a mock Lambda context."""
    context = Mock()
    context.function_name = 'test-function'
    context.aws_request_id = 'test-request-id'
    return context


def api_event(body):
    """Wrap a request body the way API Gateway proxy integration does."""
    return {'httpMethod': 'POST', 'body': json.dumps(body)}


class TestLambdaHandler:
    """Test cases for Lambda handler."""

    def test_raw_ical_payload_is_stored(self, mock_env, mock_context):
        """Test end-to-end ingestion of a caller-supplied iCal payload."""
        event = api_event({
            'targetMonth': '2025-06',
            'school': 'wlhs',
            'department': 'Life',
            'rawPayload': ICAL_CONCERT,
            'contentTypeHint': 'text/calendar'
        })

        response = lambda_handler(event, mock_context)

        assert response['statusCode'] == 200
        body = json.loads(response['body'])
        assert body['success'] is True
        assert body['month'] == '2025-06'
        assert body['processed'] == 1
        assert body['inserted'] == 1
        assert body['skipped'] == 0
        assert body['events'] == [{
            'school': 'wlhs',
            'date': '2025-06-13',
            'time': '18:00',
            'title': 'Spring Concert',
            'description': '',
            'department': 'Life'
        }]

    def test_repeat_request_skips_existing(self, mock_env, mock_context):
        """Test the second identical request inserts nothing."""
        event = api_event({'targetMonth': '2025-06', 'rawPayload': ICAL_CONCERT})

        lambda_handler(event, mock_context)
        body = json.loads(lambda_handler(event, mock_context)['body'])

        assert body['inserted'] == 0
        assert body['skipped'] == body['processed'] == 1

    def test_schedule_marker_payload(self, mock_env, mock_context):
        event = api_event({
            'targetMonth': '2025-06',
            'fetchOnly': True,
            'rawPayload': {'Events': [{'Title': 'A Day', 'StartDate': '6/2/2025'}]}
        })

        body = json.loads(lambda_handler(event, mock_context)['body'])

        assert body['events'] == []
        assert body['processed'] == 0

    @patch('lambda_function.DynamoDBManager')
    def test_fetch_only_skips_store(self, mock_dynamodb_class, mock_context):
        event = {
            'targetMonth': '2025-06',
            'fetchOnly': True,
            'rawPayload': [{'Title': 'Art Show', 'StartDate': '6/20/2025'}]
        }

        response = lambda_handler(event, mock_context)

        assert response['statusCode'] == 200
        body = json.loads(response['body'])
        assert body['fetchOnly'] is True
        assert body['events'][0]['title'] == 'Art Show'
        mock_dynamodb_class.assert_not_called()

    @patch('lambda_function.WLWVCalendarScraper')
    def test_scrapes_when_no_payload(self, mock_scraper_class, mock_env, mock_context):
        """Test source strategies are used when no payload is supplied."""
        failing = SourceStrategy('api-post-json', Mock(side_effect=TransportFailure('503')))
        ical = SourceStrategy(
            'ical-export',
            Mock(return_value=RawSourcePayload(
                body=ICAL_CONCERT, content_type='text/calendar',
                origin=SourceOrigin.ICAL, source_name='ical-export'
            ))
        )
        mock_scraper_class.return_value.strategies.return_value = [failing, ical]

        response = lambda_handler(api_event({'targetMonth': '2025-06'}), mock_context)

        assert response['statusCode'] == 200
        body = json.loads(response['body'])
        assert body['source'] == 'ical-export'
        assert body['inserted'] == 1
        assert [attempt['status'] for attempt in body['attempts']] == ['failed', 'ok']
        mock_scraper_class.assert_called_once_with(
            timeout=5, max_retries=1, base_url=None, calendar_id=None, rss_url=None
        )

    @patch('lambda_function.WLWVCalendarScraper')
    def test_all_sources_failing_is_not_fatal(self, mock_scraper_class, mock_env, mock_context):
        mock_scraper_class.return_value.strategies.return_value = [
            SourceStrategy('api-post-json', Mock(side_effect=TransportFailure('timeout')))
        ]

        response = lambda_handler(api_event({'targetMonth': '2025-06'}), mock_context)

        assert response['statusCode'] == 200
        body = json.loads(response['body'])
        assert body['events'] == []
        assert body['attempts'][0]['reason'] == 'timeout'

    @pytest.mark.parametrize('raw_payload', [5, True])
    def test_scalar_payload_is_empty_report(self, raw_payload, mock_context):
        """Test a bare JSON scalar payload gives a report, not a server error."""
        event = api_event({'targetMonth': '2025-06', 'fetchOnly': True, 'rawPayload': raw_payload})

        response = lambda_handler(event, mock_context)

        assert response['statusCode'] == 200
        body = json.loads(response['body'])
        assert body['events'] == []
        assert body['processed'] == 0

    def test_invalid_school(self, mock_context):
        response = lambda_handler(api_event({'school': 'lohs'}), mock_context)

        assert response['statusCode'] == 400
        assert 'school' in json.loads(response['body'])['details']

    def test_invalid_month(self, mock_context):
        response = lambda_handler(api_event({'targetMonth': '2025-13'}), mock_context)

        assert response['statusCode'] == 400

    def test_unreadable_body(self, mock_context):
        response = lambda_handler({'body': '{not json'}, mock_context)

        assert response['statusCode'] == 500
        assert json.loads(response['body'])['error'] == 'Unreadable request'

    @patch('lambda_function.DynamoDBManager')
    def test_store_unavailable(self, mock_dynamodb_class, mock_context):
        """Test an unreachable table fails the whole request."""
        mock_dynamodb_class.return_value.check_available.side_effect = StoreFailure('no table')

        response = lambda_handler(api_event({'rawPayload': ICAL_CONCERT}), mock_context)

        assert response['statusCode'] == 500
        body = json.loads(response['body'])
        assert body['error'] == 'Event store unavailable'
        assert 'no table' in body['details']

    @patch('lambda_function.DynamoDBManager')
    def test_per_event_store_errors_are_reported(self, mock_dynamodb_class, mock_context):
        store = mock_dynamodb_class.return_value
        store.exists.return_value = False
        store.insert.side_effect = StoreFailure('throttled')

        response = lambda_handler(api_event({'rawPayload': ICAL_CONCERT}), mock_context)

        assert response['statusCode'] == 200
        body = json.loads(response['body'])
        assert body['inserted'] == 0
        assert body['errors'] == [{'eventTitle': 'Spring Concert', 'reason': 'throttled'}]

    @patch('lambda_function.setup_logging')
    def test_logging_output(self, mock_setup_logging, mock_context, caplog):
        """Test that each pipeline stage logs."""
        event = {'fetchOnly': True, 'targetMonth': '2025-06', 'rawPayload': ICAL_CONCERT}

        with caplog.at_level(logging.INFO):
            response = lambda_handler(event, mock_context)

        assert response['statusCode'] == 200
        stages = {getattr(record, 'stage', None) for record in caplog.records}
        assert {'request', 'detect', 'extract', 'normalize', 'report', 'response'} <= stages


class TestParseRequest:
    """Test cases for request parsing."""

    def test_defaults(self):
        request = parse_request({})

        assert request['school'] == 'wlhs'
        assert request['department'] == 'Life'
        assert request['fetch_only'] is False
        assert request['raw_payload'] is None
        assert len(request['target_month']) == 7

    def test_string_fetch_only(self):
        assert parse_request({'body': '{"fetchOnly": "false"}'})['fetch_only'] is False
        assert parse_request({'body': '{"fetchOnly": "true"}'})['fetch_only'] is True

    def test_empty_api_gateway_body(self):
        assert parse_request({'body': None})['school'] == 'wlhs'


class TestSetupLogging:
    """Test cases for logging setup."""

    def test_setup_logging_default_level(self):
        """Test logging setup with default INFO level."""
        setup_logging()
        assert logging.getLogger().level == logging.INFO

    def test_setup_logging_debug_level(self):
        """Test logging setup with DEBUG level."""
        setup_logging('DEBUG')
        assert logging.getLogger().level == logging.DEBUG

    def test_json_formatter_includes_extras(self):
        record = logging.LogRecord('pipeline', logging.INFO, __file__, 1, 'Stored events', None, None)
        record.stage = 'store'
        record.inserted = 2

        data = json.loads(JsonFormatter().format(record))

        assert data['message'] == 'Stored events'
        assert data['stage'] == 'store'
        assert data['inserted'] == 2
        assert 'lineno' not in data
