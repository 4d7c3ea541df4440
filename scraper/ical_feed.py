"""iCalendar (.ics) feed adapter."""
import logging
import re
from typing import Optional

import requests
from ics import Calendar

from processor.models import RawEvent, Source, SourceKind
from scraper.base import (
    ScrapeResult,
    SourceAdapter,
    build_date_window,
    extract_labeled_fields,
    google_maps_search_url,
    in_window,
    match_group_patterns,
    split_summary,
)

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 2000


def _geo_url(event) -> Optional[str]:
    geo = getattr(event, 'geo', None)
    if not geo:
        return None
    latitude, longitude = geo
    return f"https://www.google.com/maps/search/?api=1&query={latitude},{longitude}"


class ICalFeedAdapter(SourceAdapter):
    """Reads VEVENTs from a published calendar feed."""

    kind = SourceKind.ICAL_FEED

    def fetch(self, source: Source, days: int = 90) -> ScrapeResult:
        result = ScrapeResult()
        config = source.config if isinstance(source.config, dict) else {}

        try:
            response = self._get(source.url)
        except requests.RequestException as e:
            result.add_fetch_error(f"iCal fetch error: {e}", url=source.url)
            return result
        if not response.ok:
            result.add_fetch_error(
                f"iCal fetch failed {response.status_code}: {response.text[:500]}",
                url=source.url,
                status=response.status_code
            )
            return result

        try:
            calendar = Calendar(response.text)
        except (ValueError, TypeError, IndexError, AttributeError, NotImplementedError) as e:
            result.add_parse_error(f"iCal parse error: {e}", row=0)
            return result

        skip_patterns = []
        for pattern in config.get('skipPatterns') or []:
            try:
                skip_patterns.append(re.compile(pattern, re.IGNORECASE))
            except re.error:
                logger.warning(f"Skipping malformed skip pattern: {pattern}")

        window = build_date_window(days)
        counts = {'vevents': 0, 'skipped_date_range': 0, 'skipped_pattern': 0}

        vevents = list(calendar.events)
        counts['vevents'] = len(vevents)
        # events without DTSTART cannot be dated or ordered
        dated = sorted((e for e in vevents if e.begin is not None), key=lambda e: e.begin)

        for index, vevent in enumerate(dated):
            summary = (vevent.name or '').strip()
            if not summary:
                continue
            if (getattr(vevent, 'status', None) or '').upper() == 'CANCELLED':
                continue
            if any(pattern.search(summary) for pattern in skip_patterns):
                counts['skipped_pattern'] += 1
                continue

            event_date = vevent.begin.date().isoformat()
            if not in_window(event_date, window):
                counts['skipped_date_range'] += 1
                continue

            try:
                result.events.append(self._to_raw_event(vevent, summary, event_date, config))
            except (ValueError, TypeError, AttributeError) as e:
                result.add_parse_error(f"Event parse error ({summary}): {e}", row=index)

        result.diagnostic_context = counts
        logger.info(f"iCal source {source.id} produced {len(result.events)} events")
        return result

    def _to_raw_event(self, vevent, summary: str, event_date: str, config: dict) -> RawEvent:
        prefix_tag, run_number, title = split_summary(summary)
        tag = (
            match_group_patterns(summary, config.get('kennelPatterns'))
            or config.get('defaultKennelTag')
            or prefix_tag
            or 'UNKNOWN'
        )
        description = (vevent.description or '').strip()
        location = (vevent.location or '').strip() or None
        start_time = None if vevent.all_day else vevent.begin.strftime('%H:%M')

        return RawEvent(
            date=event_date,
            group_tag=tag,
            title=title or None,
            description=description[:MAX_DESCRIPTION_LENGTH] or None,
            hares=extract_labeled_fields(description).get('hares'),
            location=location,
            location_url=_geo_url(vevent) or (google_maps_search_url(location) if location else None),
            start_time=start_time,
            run_number=run_number,
            source_url=getattr(vevent, 'url', None) or None,
        )
