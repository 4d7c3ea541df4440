"""Adapter lookup: exactly one adapter class per SourceKind."""
from typing import Dict, Type

from processor.models import SourceKind
from scraper.base import SourceAdapter
from scraper.google_calendar import GoogleCalendarAdapter
from scraper.google_sheets import GoogleSheetsAdapter
from scraper.hashrego import HashRegoAdapter
from scraper.ical_feed import ICalFeedAdapter
from scraper.meetup import MeetupAdapter
from scraper.rss_feed import RssFeedAdapter
from scraper.static_schedule import StaticScheduleAdapter
from scraper.wordpress_api import WordPressApiAdapter

ADAPTERS: Dict[SourceKind, Type[SourceAdapter]] = {
    SourceKind.GOOGLE_SHEETS: GoogleSheetsAdapter,
    SourceKind.GOOGLE_CALENDAR: GoogleCalendarAdapter,
    SourceKind.ICAL_FEED: ICalFeedAdapter,
    SourceKind.RSS_FEED: RssFeedAdapter,
    SourceKind.MEETUP: MeetupAdapter,
    SourceKind.HASHREGO: HashRegoAdapter,
    SourceKind.WORDPRESS_API: WordPressApiAdapter,
    SourceKind.STATIC_SCHEDULE: StaticScheduleAdapter,
}

_missing = set(SourceKind) - set(ADAPTERS)
if _missing:
    raise ImportError(f"No adapter registered for: {sorted(kind.value for kind in _missing)}")


def get_adapter(kind: SourceKind, timeout: int = 30) -> SourceAdapter:
    """
    Build the adapter for a source kind.

    Args:
        kind: Source kind (enum member or its string value)
        timeout: HTTP request timeout passed to the adapter

    Returns:
        A fresh adapter instance
    """
    return ADAPTERS[SourceKind(kind)](timeout=timeout)
