"""Source strategies for the West Linn-Wilsonville district calendar."""
import calendar
import logging
import time
from typing import List, Optional, Tuple

import requests

from processor.errors import TransportFailure
from processor.models import RawSourcePayload, SourceOrigin, SourceStrategy

logger = logging.getLogger(__name__)


class WLWVCalendarScraper:
    """Fetcher for the district's Blackboard calendar."""

    BASE_URL = "https://www.wlwv.k12.or.us"
    CALENDAR_ID = "3526"
    EVENTS_PATH = "/site/UserControls/Calendar/CalendarController.aspx/GetEvents"
    EXPORT_PATH = "/site/UserControls/Calendar/EventExportByDateRangeWrapper.aspx"
    PAGE_PATH = "/Page/3071"
    USER_AGENT = "Mozilla/5.0 (compatible; CalendarScraper/1.0)"

    def __init__(
        self,
        timeout: int = 30,
        max_retries: int = 3,
        base_delay: float = 1,
        base_url: Optional[str] = None,
        calendar_id: Optional[str] = None,
        rss_url: Optional[str] = None
    ):
        """
        Initialize the calendar scraper.

        Args:
            timeout: HTTP request timeout in seconds (default: 30)
            max_retries: Attempts per request for transient failures
            base_delay: First backoff delay in seconds, doubled per retry
            base_url: District site root
            calendar_id: Numeric Blackboard calendar identifier
            rss_url: Optional RSS feed URL; the RSS strategy is skipped without it
        """
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay
        self.base_url = (base_url or self.BASE_URL).rstrip('/')
        self.calendar_id = str(calendar_id or self.CALENDAR_ID).strip()
        self.rss_url = rss_url

        if not self.calendar_id.isdigit():
            raise ValueError(f"calendar_id must be numeric, got {calendar_id!r}")

    def strategies(self) -> List[SourceStrategy]:
        """Source strategies in the order they should be tried."""
        strategies = [
            SourceStrategy('api-post-json', self.fetch_api_json),
            SourceStrategy('api-get', self.fetch_api_get),
            SourceStrategy('api-post-form', self.fetch_api_form),
            SourceStrategy('ical-export', self.fetch_ical_export),
            SourceStrategy('html-page', self.fetch_calendar_page),
        ]
        if self.rss_url:
            strategies.append(SourceStrategy('rss-feed', self.fetch_rss_feed))
        return strategies

    def month_range(self, target_month: str) -> Tuple[str, str]:
        """
        First and last day of a month in the M/D/YYYY form the API expects.

        Args:
            target_month: Month as YYYY-MM

        Returns:
            Tuple of (start_date, end_date)
        """
        year, month = (int(part) for part in target_month.split('-'))
        last_day = calendar.monthrange(year, month)[1]
        return f"{month}/1/{year}", f"{month}/{last_day}/{year}"

    def fetch_api_json(self, target_month: str) -> RawSourcePayload:
        start_date, end_date = self.month_range(target_month)
        response = self._request(
            'POST',
            self.base_url + self.EVENTS_PATH,
            json={
                'calendarId': int(self.calendar_id),
                'startDate': start_date,
                'endDate': end_date,
                'templatePath': '',
                'templateName': '',
                'calendarName': '',
                'culture': 'en-US'
            },
            headers={
                'Accept': 'application/json, text/javascript, */*; q=0.01',
                'X-Requested-With': 'XMLHttpRequest'
            }
        )
        return self._payload(response, SourceOrigin.API_JSON, 'api-post-json')

    def fetch_api_get(self, target_month: str) -> RawSourcePayload:
        start_date, end_date = self.month_range(target_month)
        response = self._request(
            'GET',
            self.base_url + self.EVENTS_PATH,
            params={
                'calendarId': self.calendar_id,
                'startDate': start_date,
                'endDate': end_date
            },
            headers={'Accept': 'application/json, text/plain, */*'}
        )
        return self._payload(response, SourceOrigin.API_JSON, 'api-get')

    def fetch_api_form(self, target_month: str) -> RawSourcePayload:
        start_date, end_date = self.month_range(target_month)
        response = self._request(
            'POST',
            self.base_url + self.EVENTS_PATH,
            data={
                'calendarId': self.calendar_id,
                'startDate': start_date,
                'endDate': end_date
            },
            headers={'Accept': 'application/json'}
        )
        return self._payload(response, SourceOrigin.API_JSON, 'api-post-form')

    def fetch_ical_export(self, target_month: str) -> RawSourcePayload:
        start_date, end_date = self.month_range(target_month)
        response = self._request(
            'GET',
            self.base_url + self.EXPORT_PATH,
            params={
                'calendarId': self.calendar_id,
                'startDate': start_date,
                'endDate': end_date
            }
        )
        return self._payload(response, SourceOrigin.ICAL, 'ical-export')

    def fetch_calendar_page(self, target_month: str) -> RawSourcePayload:
        response = self._request(
            'GET',
            self.base_url + self.PAGE_PATH,
            headers={'Accept': 'text/html,application/xhtml+xml'}
        )
        return self._payload(response, SourceOrigin.HTML_EMBEDDED, 'html-page')

    def fetch_rss_feed(self, target_month: str) -> RawSourcePayload:
        response = self._request(
            'GET',
            self.rss_url,
            headers={'Accept': 'application/rss+xml, application/xml, text/xml'}
        )
        return self._payload(response, SourceOrigin.RSS, 'rss-feed')

    def _payload(
        self,
        response: requests.Response,
        origin: SourceOrigin,
        name: str
    ) -> RawSourcePayload:
        if not response.text.strip():
            raise TransportFailure(
                f"Empty response body from {name}", status_code=response.status_code
            )
        return RawSourcePayload(
            body=response.text,
            content_type=response.headers.get('Content-Type', ''),
            origin=origin,
            source_name=name
        )

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        """
        Send an HTTP request with retry logic.

        Connection errors, timeouts and 5xx responses are retried with
        exponential backoff. Other non-2xx responses fail immediately.

        Raises:
            TransportFailure: If no successful response was received
        """
        headers = {'User-Agent': self.USER_AGENT}
        headers.update(kwargs.pop('headers', {}))

        for attempt in range(self.max_retries):
            try:
                logger.info(
                    f"{method} {url} (attempt {attempt + 1}/{self.max_retries})"
                )
                response = requests.request(
                    method, url, headers=headers, timeout=self.timeout, **kwargs
                )
                response.raise_for_status()
                return response

            except requests.HTTPError as e:
                status = e.response.status_code if e.response is not None else None
                if status is not None and status < 500:
                    raise TransportFailure(
                        f"{method} {url} returned {status}", status_code=status
                    )
                last_error = e
            except requests.RequestException as e:
                last_error = e

            if attempt < self.max_retries - 1:
                # Calculate exponential backoff delay
                delay = self.base_delay * (2 ** attempt)
                logger.warning(
                    f"Request failed (attempt {attempt + 1}/{self.max_retries}): "
                    f"{last_error}. Retrying in {delay} seconds..."
                )
                time.sleep(delay)

        logger.error(
            f"All {self.max_retries} retry attempts failed. Last error: {last_error}"
        )
        status = None
        if isinstance(last_error, requests.HTTPError) and last_error.response is not None:
            status = last_error.response.status_code
        raise TransportFailure(str(last_error), status_code=status)
