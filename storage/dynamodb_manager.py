"""DynamoDB manager for event storage operations."""
import hashlib
import logging
from datetime import datetime, timezone
from typing import List

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from processor.errors import StoreFailure
from processor.models import NormalizedEvent

logger = logging.getLogger(__name__)


class DynamoDBManager:
    """Append-only event store keyed by (school, date, title)."""

    def __init__(self, table_name: str):
        """
        Initialize DynamoDB client and table reference.

        Args:
            table_name: Name of the DynamoDB table
        """
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBManager for table: {table_name}")

    @staticmethod
    def generate_event_id(school: str, date: str, title: str) -> str:
        """
        Generate the row identifier for an event key.

        The strings are hashed exactly as given, so keys that differ only in
        case or whitespace map to different rows.

        Returns:
            SHA256 hex digest of school|date|title
        """
        composite = f"{school}|{date}|{title}"
        return hashlib.sha256(composite.encode('utf-8')).hexdigest()

    def check_available(self) -> None:
        """
        Verify that the table can be reached.

        Raises:
            StoreFailure: If the table does not exist or cannot be described
        """
        try:
            self.table.load()
        except ClientError as e:
            logger.error(f"Event table {self.table_name} unavailable: {e}")
            raise StoreFailure(f"Event table {self.table_name} unavailable: {e}")

    def exists(self, school: str, date: str, title: str) -> bool:
        """Return True if an event with this exact key is stored."""
        event_id = self.generate_event_id(school, date, title)
        try:
            response = self.table.get_item(
                Key={'event_id': event_id},
                ProjectionExpression='event_id'
            )
        except ClientError as e:
            raise StoreFailure(f"Lookup failed for '{title}': {e}")
        return 'Item' in response

    def insert(self, event: NormalizedEvent) -> str:
        """
        Store a new event.

        Args:
            event: NormalizedEvent to write

        Returns:
            The event_id of the new row

        Raises:
            StoreFailure: If the write fails or the key is already stored
        """
        item = self._event_to_item(event)
        try:
            self.table.put_item(
                Item=item,
                ConditionExpression='attribute_not_exists(event_id)'
            )
        except ClientError as e:
            code = e.response.get('Error', {}).get('Code')
            if code == 'ConditionalCheckFailedException':
                raise StoreFailure(f"Event '{event.title}' already stored")
            raise StoreFailure(f"Insert failed for '{event.title}': {e}")

        logger.debug(f"Inserted event {item['event_id']}: {event.title}")
        return item['event_id']

    def list_events(self, school: str) -> List[NormalizedEvent]:
        """
        Retrieve stored events for a school, ordered by date and time.

        Store utility for inspecting what ingestion has written; the
        ingestion handler itself only calls exists and insert.

        Args:
            school: School code

        Returns:
            List of NormalizedEvent objects
        """
        logger.info(f"Scanning DynamoDB table for {school} events")
        try:
            response = self.table.scan(FilterExpression=Attr('school').eq(school))
            items = response.get('Items', [])

            # Handle pagination
            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    FilterExpression=Attr('school').eq(school),
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                items.extend(response.get('Items', []))
        except ClientError as e:
            logger.error(f"Error scanning DynamoDB table: {e}")
            raise StoreFailure(f"Scan failed: {e}")

        events = [self._item_to_event(item) for item in items]
        events = [event for event in events if event]
        events.sort(key=lambda event: (event.date, event.time or ''))
        logger.info(f"Retrieved {len(events)} events from DynamoDB")
        return events

    def _event_to_item(self, event: NormalizedEvent) -> dict:
        item = {
            'event_id': self.generate_event_id(*event.key),
            'school': event.school,
            'event_date': event.date,
            'title': event.title,
            'department': event.department,
            'description': event.description,
            'created_at': datetime.now(timezone.utc).isoformat()
        }
        # Add optional fields if present
        if event.time:
            item['start_time'] = event.time
        return item

    def _item_to_event(self, item: dict):
        try:
            return NormalizedEvent(
                school=item['school'],
                date=item['event_date'],
                title=item['title'],
                department=item.get('department', ''),
                time=item.get('start_time'),
                description=item.get('description', '')
            )
        except KeyError as e:
            logger.warning(f"Failed to convert item to NormalizedEvent: {e}")
            return None
