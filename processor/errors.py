"""Error taxonomy for calendar ingestion.

Only a request that cannot be read at all, or a store that is unavailable,
fails a whole run. Every other failure degrades to a partial report.
"""
from typing import Optional


class CalendarSyncError(Exception):
    """Base class for all ingestion errors."""


class TransportFailure(CalendarSyncError):
    """Upstream fetch did not complete or returned no usable body."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DecodeFailure(CalendarSyncError):
    """Payload could not be parsed under its detected format."""


class ValidationFailure(CalendarSyncError):
    """Request input or an extracted record failed validation."""


class StoreFailure(CalendarSyncError):
    """Lookup or insert against the event store failed."""
