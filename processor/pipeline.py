"""Ingestion pipeline: detect, extract, normalize, filter, dedupe, store."""
import logging
from typing import Any, List, Optional, Sequence, Union

from processor.deduplicator import Decision, dedupe_batch, should_insert
from processor.errors import DecodeFailure, StoreFailure, TransportFailure
from processor.event_filter import filter_schedule_markers
from processor.event_processor import EventProcessor
from processor.extractors import extract_records
from processor.format_detector import detect
from processor.models import (
    NormalizedEvent,
    PipelineReport,
    RawSourcePayload,
    SourceAttempt,
    SourceOrigin,
    SourceStrategy,
)

logger = logging.getLogger(__name__)


def decode_body(body: Any) -> Union[str, list, dict]:
    """
    Turn a raw body into text, leaving parsed JSON lists and objects untouched.

    Bare scalars such as numbers or booleans carry no events and become ''.

    Raises:
        DecodeFailure: If bytes cannot be decoded as any supported encoding
    """
    if isinstance(body, (str, list, dict)):
        return body
    if not isinstance(body, bytes):
        return ''
    for encoding in ('utf-8-sig', 'cp1252'):
        try:
            return body.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise DecodeFailure("Payload could not be decoded as text")


class CalendarPipeline:
    """
    Stateless ingestion of one source payload into the event store.

    The store collaborator needs `exists(school, date, title)` and
    `insert(event)`. It is never touched in fetch-only runs and may be None.
    """

    def __init__(self, store=None, processor: Optional[EventProcessor] = None):
        self.store = store
        self.processor = processor or EventProcessor()

    def collect(
        self,
        payload: RawSourcePayload,
        school: str,
        department: str,
        target_month: str
    ) -> List[NormalizedEvent]:
        """
        Reduce a payload to unique, filtered canonical events.

        Malformed payloads yield an empty list.

        Raises:
            DecodeFailure: If the payload bytes are not text at all
        """
        body = decode_body(payload.body)
        kind = detect(body, payload.content_type)
        logger.info(
            f"Detected {kind.value} payload from {payload.source_name}",
            extra={'stage': 'detect', 'format': kind.value, 'source': payload.source_name}
        )

        try:
            records = extract_records(body, kind)
        except DecodeFailure as e:
            logger.warning(
                f"Could not decode {kind.value} payload: {e}",
                extra={'stage': 'extract', 'source': payload.source_name}
            )
            records = []

        # Embedded page data spans neighbouring months
        month_filter = None
        if payload.origin == SourceOrigin.HTML_EMBEDDED:
            month_filter = target_month

        events = self.processor.process_records(
            records, school, department, target_month=month_filter
        )
        events = filter_schedule_markers(events)
        return dedupe_batch(events)

    def run(
        self,
        payload: RawSourcePayload,
        school: str,
        department: str,
        target_month: str,
        fetch_only: bool = False
    ) -> PipelineReport:
        """
        Run the pipeline over a single payload.

        Args:
            payload: Raw source payload
            school: School code for the events
            department: Department label for the events
            target_month: Month being ingested (YYYY-MM)
            fetch_only: Return normalized events without storing them

        Returns:
            PipelineReport with counts and the normalized events
        """
        events = self.collect(payload, school, department, target_month)
        report = PipelineReport(
            month=target_month,
            processed=len(events),
            events=events,
            fetch_only=fetch_only,
            source=payload.source_name
        )
        if not fetch_only:
            self._commit(report)
        self._log_report(report)
        return report

    def run_sources(
        self,
        strategies: Sequence[SourceStrategy],
        school: str,
        department: str,
        target_month: str,
        fetch_only: bool = False
    ) -> PipelineReport:
        """
        Try source strategies in order and ingest the first non-empty result.

        Failed or empty strategies are recorded in the report attempts.
        """
        report = PipelineReport(month=target_month, fetch_only=fetch_only)

        for strategy in strategies:
            logger.info(
                f"Trying source strategy {strategy.name}",
                extra={'stage': 'fetch', 'strategy': strategy.name}
            )
            try:
                payload = strategy.fetch(target_month)
                events = self.collect(payload, school, department, target_month)
            except Exception as e:
                logger.warning(
                    f"Source strategy {strategy.name} failed: {e}",
                    extra={
                        'stage': 'fetch',
                        'strategy': strategy.name,
                        'error_type': type(e).__name__
                    },
                    exc_info=not isinstance(e, (TransportFailure, DecodeFailure))
                )
                report.attempts.append(
                    SourceAttempt(strategy=strategy.name, status='failed', reason=str(e))
                )
                continue

            if not events:
                report.attempts.append(
                    SourceAttempt(
                        strategy=strategy.name,
                        status='empty',
                        reason='No events found'
                    )
                )
                continue

            report.attempts.append(
                SourceAttempt(
                    strategy=strategy.name, status='ok', event_count=len(events)
                )
            )
            report.events = events
            report.processed = len(events)
            report.source = strategy.name
            break
        else:
            logger.warning(
                f"No source strategy produced events for {target_month}",
                extra={'stage': 'fetch', 'attempts': len(report.attempts)}
            )

        if report.events and not fetch_only:
            self._commit(report)
        self._log_report(report)
        return report

    def _commit(self, report: PipelineReport) -> None:
        """Insert new events one at a time, recording per-event failures."""
        if self.store is None:
            raise StoreFailure("No event store configured")

        for event in report.events:
            try:
                if should_insert(event, self.store.exists) == Decision.SKIP:
                    report.skipped += 1
                    continue
                self.store.insert(event)
                report.inserted += 1
            except Exception as e:
                logger.warning(
                    f"Failed to store event '{event.title}': {e}",
                    extra={'stage': 'store', 'error_type': type(e).__name__}
                )
                report.errors.append({'eventTitle': event.title, 'reason': str(e)})

        logger.info(
            f"Stored events: {report.inserted} inserted, {report.skipped} skipped, "
            f"{len(report.errors)} errors",
            extra={
                'stage': 'store',
                'inserted': report.inserted,
                'skipped': report.skipped,
                'errors': len(report.errors)
            }
        )

    def _log_report(self, report: PipelineReport) -> None:
        logger.info(
            f"Pipeline finished for {report.month}",
            extra={
                'stage': 'report',
                'processed': report.processed,
                'inserted': report.inserted,
                'skipped': report.skipped,
                'fetch_only': report.fetch_only,
                'source': report.source
            }
        )
