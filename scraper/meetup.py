"""Meetup group events adapter."""
import logging
from typing import Optional
from urllib.parse import quote

import requests

from processor.models import RawEvent, Source, SourceKind
from scraper.base import (
    ScrapeResult,
    SourceAdapter,
    SourceConfigError,
    build_date_window,
    google_maps_search_url,
    in_window,
    strip_html_tags,
    validate_source_config,
)

logger = logging.getLogger(__name__)

EVENTS_URL = 'https://api.meetup.com/{group}/events'
EVENT_FIELDS = 'id,name,status,time,local_date,local_time,duration,description,venue,link'
MAX_DESCRIPTION_LENGTH = 2000


def venue_location(venue: Optional[dict]) -> Optional[str]:
    if not venue:
        return None
    parts = [venue.get(key) for key in ('name', 'address_1', 'city', 'state')]
    joined = ', '.join(part for part in parts if part)
    return joined or None


class MeetupAdapter(SourceAdapter):
    """Reads upcoming and past events of one Meetup group."""

    kind = SourceKind.MEETUP

    def fetch(self, source: Source, days: int = 90) -> ScrapeResult:
        result = ScrapeResult()
        try:
            config = validate_source_config(
                source.config,
                'MeetupAdapter',
                {'groupUrlname': str, 'kennelTag': str}
            )
        except SourceConfigError as e:
            result.add_fetch_error(str(e))
            return result

        url = EVENTS_URL.format(group=quote(config['groupUrlname'], safe=''))
        params = {'status': 'upcoming,past', 'page': 100, 'only': EVENT_FIELDS}
        try:
            response = self._get(url, params=params, headers={'Accept': 'application/json'})
        except requests.RequestException as e:
            result.add_fetch_error(f"Failed to fetch Meetup events: {e}", url=url)
            return result
        if not response.ok:
            result.add_fetch_error(
                f"Meetup API error {response.status_code} for group '{config['groupUrlname']}'",
                url=url,
                status=response.status_code
            )
            return result

        try:
            items = response.json()
        except ValueError:
            items = None
        if not isinstance(items, list):
            result.add_parse_error('Meetup API returned non-array response', row=0)
            return result

        window = build_date_window(days)
        for index, item in enumerate(items):
            event_date = item.get('local_date')
            if not event_date:
                result.add_parse_error(f"Meetup event {item.get('id')} has no local_date", row=index)
                continue
            if not in_window(event_date, window) or item.get('status') == 'cancelled':
                continue
            location = venue_location(item.get('venue'))
            description = strip_html_tags(item.get('description'))
            result.events.append(RawEvent(
                date=event_date,
                group_tag=config['kennelTag'],
                title=item.get('name') or None,
                description=description[:MAX_DESCRIPTION_LENGTH] or None,
                location=location,
                location_url=google_maps_search_url(location) if location else None,
                start_time=item.get('local_time') or None,
                source_url=item.get('link'),
            ))

        result.diagnostic_context = {'group_urlname': config['groupUrlname'], 'items': len(items)}
        logger.info(f"Meetup source {source.id} produced {len(result.events)} events")
        return result
