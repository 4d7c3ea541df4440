"""RSS/Atom feed adapter: one event per feed item."""
import logging
from datetime import datetime, timezone
from typing import Optional

import feedparser
import requests

from processor.models import RawEvent, Source, SourceKind
from scraper.base import (
    ScrapeResult,
    SourceAdapter,
    SourceConfigError,
    build_date_window,
    extract_labeled_fields,
    in_window,
    strip_html_tags,
    validate_source_config,
)

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 2000


def entry_datetime(entry) -> Optional[datetime]:
    """Published time of a feed entry, falling back to its updated time."""
    parsed = getattr(entry, 'published_parsed', None) or getattr(entry, 'updated_parsed', None)
    if not parsed:
        return None
    return datetime(*parsed[:6], tzinfo=timezone.utc)


class RssFeedAdapter(SourceAdapter):
    """Assigns every item of a feed to the configured group tag."""

    kind = SourceKind.RSS_FEED

    def fetch(self, source: Source, days: int = 90) -> ScrapeResult:
        result = ScrapeResult()
        try:
            config = validate_source_config(source.config, 'RssFeedAdapter', {'kennelTag': str})
        except SourceConfigError as e:
            result.add_fetch_error(str(e))
            return result

        try:
            response = self._get(source.url)
        except requests.RequestException as e:
            result.add_fetch_error(f"Failed to fetch RSS feed: {e}", url=source.url)
            return result
        if not response.ok:
            result.add_fetch_error(
                f"Failed to fetch RSS feed: HTTP {response.status_code}",
                url=source.url,
                status=response.status_code
            )
            return result

        feed = feedparser.parse(response.content)
        if feed.bozo and not feed.entries:
            result.add_parse_error(f"Failed to parse RSS feed: {feed.get('bozo_exception')}", row=0)
            return result

        window = build_date_window(days)
        for index, entry in enumerate(feed.entries):
            published = entry_datetime(entry)
            if published is None:
                continue
            event_date = published.date().isoformat()
            if not in_window(event_date, window):
                continue

            content = entry.get('content')
            raw_html = content[0].get('value') if content else entry.get('summary')
            text = strip_html_tags(raw_html)
            result.events.append(RawEvent(
                date=event_date,
                group_tag=config['kennelTag'],
                title=(entry.get('title') or '').strip() or None,
                description=text[:MAX_DESCRIPTION_LENGTH] or None,
                hares=extract_labeled_fields(text).get('hares'),
                source_url=(entry.get('link') or '').strip() or None,
            ))

        result.diagnostic_context = {
            'feed_title': feed.feed.get('title'),
            'item_count': len(feed.entries),
        }
        logger.info(f"RSS source {source.id} produced {len(result.events)} events")
        return result
