"""Synthetic events for groups that run on a fixed recurrence."""
import logging
import re
from datetime import date, datetime, time
from typing import List, Optional

from dateutil.rrule import rrulestr

from processor.models import RawEvent, Source, SourceKind
from scraper.base import (
    ScrapeResult,
    SourceAdapter,
    SourceConfigError,
    build_date_window,
    google_maps_search_url,
    parse_12_hour_time,
    validate_source_config,
)

logger = logging.getLogger(__name__)

_HH_MM = re.compile(r'^\d{2}:\d{2}$')


def normalize_start_time(raw: Optional[str]) -> Optional[str]:
    """Accept "HH:MM" as is, otherwise parse a 12-hour time like "10:17 AM"."""
    if not raw:
        return None
    raw = raw.strip()
    if _HH_MM.match(raw):
        return raw
    return parse_12_hour_time(raw)


def expand_occurrences(
    rule: str,
    window_start: date,
    window_end: date,
    anchor: Optional[date] = None
) -> List[str]:
    """
    Expand an RRULE inside a date window.

    Args:
        rule: RRULE body, e.g. "FREQ=WEEKLY;BYDAY=SA"
        window_start: First date of the window (inclusive)
        window_end: Last date of the window (inclusive)
        anchor: Series start used for INTERVAL phase; defaults to window_start

    Returns:
        YYYY-MM-DD dates in order

    Raises:
        ValueError: If the rule cannot be parsed
    """
    body = rule.strip()
    if body.upper().startswith('RRULE:'):
        body = body[6:]
    dtstart = datetime.combine(anchor or window_start, time(12, 0))
    recurrence = rrulestr(body, dtstart=dtstart)
    occurrences = recurrence.between(
        datetime.combine(window_start, time.min),
        datetime.combine(window_end, time.max),
        inc=True
    )
    return [occurrence.date().isoformat() for occurrence in occurrences]


class StaticScheduleAdapter(SourceAdapter):
    """Produces one event per recurrence date; makes no network calls."""

    kind = SourceKind.STATIC_SCHEDULE

    def fetch(self, source: Source, days: int = 90) -> ScrapeResult:
        result = ScrapeResult()
        try:
            config = validate_source_config(
                source.config,
                'StaticScheduleAdapter',
                {'kennelTag': str, 'rrule': str}
            )
        except SourceConfigError as e:
            result.add_fetch_error(str(e))
            return result

        window_start, window_end = build_date_window(days)
        try:
            anchor = date.fromisoformat(config['anchorDate']) if config.get('anchorDate') else None
        except (TypeError, ValueError):
            result.add_fetch_error(f"StaticScheduleAdapter: invalid anchorDate '{config['anchorDate']}' (expected YYYY-MM-DD)")
            return result
        try:
            dates = expand_occurrences(config['rrule'], window_start, window_end, anchor)
        except ValueError as e:
            result.add_parse_error(f"Invalid rrule '{config['rrule']}': {e}", row=0)
            return result

        location = config.get('defaultLocation')
        start_time = normalize_start_time(config.get('startTime'))
        for event_date in dates:
            result.events.append(RawEvent(
                date=event_date,
                group_tag=config['kennelTag'],
                title=config.get('defaultTitle'),
                description=config.get('defaultDescription'),
                location=location,
                location_url=google_maps_search_url(location) if location else None,
                start_time=start_time,
                source_url=source.url or None,
            ))

        result.diagnostic_context = {'rrule': config['rrule'], 'occurrences': len(dates)}
        logger.info(f"Static schedule source {source.id} produced {len(result.events)} events")
        return result
