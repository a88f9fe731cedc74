"""Event processor for validating and normalizing raw event records."""
import logging
from typing import List, Optional

from processor.event_filter import is_schedule_marker
from processor.models import NormalizedEvent, RawEventRecord
from processor.normalizers import normalize_date, normalize_time

logger = logging.getLogger(__name__)


class EventProcessor:
    """Processor for validating and normalizing raw event records."""

    MAX_TITLE_LENGTH = 200
    MAX_DESCRIPTION_LENGTH = 2000

    def process_records(
        self,
        raw_records: List[RawEventRecord],
        school: str,
        department: str,
        target_month: Optional[str] = None
    ) -> List[NormalizedEvent]:
        """
        Normalize raw records into canonical events.

        Args:
            raw_records: Records pulled from one source payload
            school: School code attached to every event
            department: Department label attached to every event
            target_month: If given (YYYY-MM), drop events outside that month

        Returns:
            List of NormalizedEvent objects, schedule markers excluded
        """
        events = []

        for record in raw_records:
            try:
                event = self._process_single_record(record, school, department)
            except Exception as e:
                logger.warning(
                    f"Failed to process event '{record.title}': {e}"
                )
                continue

            if not event:
                continue
            if target_month and not event.date.startswith(target_month):
                logger.debug(
                    f"Skipping event '{event.title}' outside {target_month}"
                )
                continue
            events.append(event)

        logger.info(
            f"Normalized {len(events)} events out of "
            f"{len(raw_records)} raw records",
            extra={
                'stage': 'normalize',
                'raw_count': len(raw_records),
                'normalized_count': len(events)
            }
        )
        return events

    def _process_single_record(
        self,
        record: RawEventRecord,
        school: str,
        department: str
    ) -> Optional[NormalizedEvent]:
        """
        Process a single record.

        Returns:
            NormalizedEvent or None if the record has no usable title or date
        """
        title = self._clean_text(record.title)
        if not title:
            logger.warning("Event missing required field: title")
            return None

        if is_schedule_marker(title):
            logger.debug(f"Skipping schedule marker '{title}'")
            return None

        normalized_date = normalize_date(record.date)
        if not normalized_date:
            logger.warning(
                f"Invalid or missing date for event '{title}': {record.date}"
            )
            return None

        description = self._clean_text(record.description)

        return NormalizedEvent(
            school=school,
            date=normalized_date,
            title=title[:self.MAX_TITLE_LENGTH].strip(),
            department=department,
            time=normalize_time(record.time),
            description=description[:self.MAX_DESCRIPTION_LENGTH]
        )

    def _clean_text(self, value) -> str:
        if value is None:
            return ''
        return str(value).strip()
