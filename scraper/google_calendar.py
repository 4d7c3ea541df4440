"""Google Calendar API v3 adapter for public calendars."""
import logging
import os
import re
from datetime import datetime, time, timezone
from typing import Optional, Tuple
from urllib.parse import quote

import requests

from processor.models import RawEvent, Source, SourceKind
from scraper.base import (
    ScrapeResult,
    SourceAdapter,
    build_date_window,
    extract_labeled_fields,
    google_maps_search_url,
    match_group_patterns,
    split_summary,
    strip_html_tags,
)

logger = logging.getLogger(__name__)

EVENTS_URL = 'https://www.googleapis.com/calendar/v3/calendars/{calendar_id}/events'
PAGE_SIZE = 250
MAX_DESCRIPTION_LENGTH = 2000

_LOCAL_DATETIME = re.compile(r'^(\d{4}-\d{2}-\d{2})T(\d{2}):(\d{2})')
_GENERIC_HARES = re.compile(r'^(?:that be you|you|all|everyone)\b', re.IGNORECASE)


def local_date_and_time(start: dict) -> Tuple[Optional[str], Optional[str]]:
    """
    Read the wall-clock date and time from an event's start.

    The date is taken from the string as written, never shifted to UTC.
    All-day events have no start time.
    """
    date_time = start.get('dateTime')
    if date_time:
        match = _LOCAL_DATETIME.match(date_time)
        if match:
            return match.group(1), f"{match.group(2)}:{match.group(3)}"
        return date_time[:10] or None, None
    return start.get('date'), None


class GoogleCalendarAdapter(SourceAdapter):
    """The source url holds the calendar id, not a fetchable address."""

    kind = SourceKind.GOOGLE_CALENDAR

    def __init__(self, timeout: int = 30, api_key: Optional[str] = None):
        super().__init__(timeout=timeout)
        self.api_key = api_key or os.environ.get('GOOGLE_API_KEY')

    def fetch(self, source: Source, days: int = 90) -> ScrapeResult:
        result = ScrapeResult()
        if not self.api_key:
            result.add_fetch_error('Missing GOOGLE_API_KEY for Google Calendar')
            return result

        config = source.config if isinstance(source.config, dict) else {}
        start, end = build_date_window(days)
        url = EVENTS_URL.format(calendar_id=quote(source.url, safe=''))
        params = {
            'key': self.api_key,
            'timeMin': datetime.combine(start, time.min, tzinfo=timezone.utc).isoformat(),
            'timeMax': datetime.combine(end, time.max, tzinfo=timezone.utc).isoformat(),
            'singleEvents': 'true',
            'orderBy': 'startTime',
            'maxResults': PAGE_SIZE,
        }

        pages = 0
        items_returned = 0
        while True:
            try:
                response = self._get(url, params=params)
            except requests.RequestException as e:
                result.add_fetch_error(f"Google Calendar request failed: {e}", url=url)
                break
            if not response.ok:
                result.add_fetch_error(
                    f"Google Calendar API {response.status_code}: {response.text[:200]}",
                    url=url,
                    status=response.status_code
                )
                break

            try:
                data = response.json()
            except ValueError:
                data = None
            if not isinstance(data, dict):
                # a lost page means the listing is incomplete
                result.add_fetch_error('Google Calendar API returned a non-JSON page', url=url, status=response.status_code)
                break
            pages += 1
            items = data.get('items') or []
            items_returned += len(items)
            for index, item in enumerate(items):
                try:
                    event = self._to_raw_event(item, config)
                except (ValueError, TypeError, AttributeError) as e:
                    result.add_parse_error(
                        f"Event parse error ({item.get('summary', 'unknown')}): {e}",
                        row=index
                    )
                    continue
                if event is not None:
                    result.events.append(event)

            page_token = data.get('nextPageToken')
            if not page_token:
                break
            params['pageToken'] = page_token

        result.diagnostic_context = {
            'calendar_id': source.url,
            'pages_processed': pages,
            'items_returned': items_returned,
        }
        logger.info(f"Google Calendar source {source.id} produced {len(result.events)} events")
        return result

    def _to_raw_event(self, item: dict, config: dict) -> Optional[RawEvent]:
        if item.get('status') == 'cancelled':
            return None
        summary = item.get('summary')
        if not summary:
            return None
        event_date, start_time = local_date_and_time(item.get('start') or {})
        if not event_date:
            return None

        text = strip_html_tags(item.get('description'))
        hares = extract_labeled_fields(text).get('hares')
        if hares and _GENERIC_HARES.match(hares):
            hares = None

        prefix_tag, run_number, title = split_summary(summary)
        tag = (
            match_group_patterns(summary, config.get('kennelPatterns'))
            or config.get('defaultKennelTag')
            or prefix_tag
        )
        if not tag:
            return None

        location = item.get('location') or None
        return RawEvent(
            date=event_date,
            group_tag=tag,
            title=title,
            description=text[:MAX_DESCRIPTION_LENGTH] or None,
            hares=hares,
            location=location,
            location_url=google_maps_search_url(location) if location else None,
            start_time=start_time,
            run_number=run_number,
            source_url=item.get('htmlLink'),
        )
