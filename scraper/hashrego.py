"""Hash Rego registration-platform adapter."""
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import List, Optional

import requests
from bs4 import BeautifulSoup

from processor.models import RawEvent, Source, SourceKind
from scraper.base import (
    ScrapeResult,
    SourceAdapter,
    SourceConfigError,
    build_date_window,
    google_maps_search_url,
    in_window,
    parse_12_hour_time,
    validate_source_config,
)

logger = logging.getLogger(__name__)

BASE_URL = 'https://hashrego.com'
INDEX_URL = f'{BASE_URL}/events'
MAX_DESCRIPTION_LENGTH = 2000

# 11:59 PM is the platform's "no time set" placeholder
NO_TIME_PLACEHOLDER = '23:59'

_EVENT_HREF = re.compile(r'^/events/([^/]+)')
_KENNEL_HREF = re.compile(r'^/kennels/([^/]+)')
_INDEX_DATE = re.compile(r'^(\d{1,2})/(\d{1,2})/(\d{2,4})')
_OG_TITLE_PREFIX = re.compile(r'^\d{2}/\d{2}\s+')


@dataclass
class IndexEntry:
    """One row of the public events table."""
    slug: str
    kennel_slug: str
    title: str
    start_date: str
    start_time: str
    event_type: str = ''
    cost: str = ''


def parse_index_date(text: str) -> Optional[str]:
    match = _INDEX_DATE.match((text or '').strip())
    if not match:
        return None
    month, day, year = (int(part) for part in match.groups())
    if year < 100:
        year += 2000
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def parse_index_time(text: str) -> Optional[str]:
    parsed = parse_12_hour_time(text)
    return None if parsed == NO_TIME_PLACEHOLDER else parsed


def parse_events_index(html: str) -> List[IndexEntry]:
    """
    Parse the events index table.

    Args:
        html: HTML of the events index page

    Returns:
        IndexEntry per well-formed row
    """
    soup = BeautifulSoup(html, 'html.parser')
    entries = []
    for row in soup.select('#eventListTable tbody tr'):
        cells = row.find_all('td')
        if len(cells) < 6:
            continue
        event_link = cells[0].find('a')
        kennel_link = cells[2].find('a')
        if event_link is None or kennel_link is None:
            continue
        slug_match = _EVENT_HREF.match(event_link.get('href', ''))
        kennel_match = _KENNEL_HREF.match(kennel_link.get('href', ''))
        if not slug_match or not kennel_match:
            continue
        date_parts = list(cells[3].stripped_strings)
        entries.append(IndexEntry(
            slug=slug_match.group(1),
            kennel_slug=kennel_match.group(1),
            title=event_link.get_text(strip=True),
            start_date=date_parts[0] if date_parts else '',
            start_time=date_parts[1] if len(date_parts) > 1 else '',
            event_type=cells[1].get_text(strip=True),
            cost=cells[4].get_text(strip=True),
        ))
    return entries


def _extract_field(text: str, name: str) -> Optional[str]:
    bold = re.search(rf'\*\*{re.escape(name)}:?\*\*:?\s*(.+?)(?:\n|$)', text, re.IGNORECASE)
    if bold:
        return bold.group(1).strip()
    plain = re.search(rf'(?:^|\n)\s*{re.escape(name)}:?\s+(.+?)(?:\n|$)', text, re.IGNORECASE)
    return plain.group(1).strip() if plain else None


class HashRegoAdapter(SourceAdapter):
    """Watches the public events index for the configured kennel slugs."""

    kind = SourceKind.HASHREGO

    def fetch(self, source: Source, days: int = 90) -> ScrapeResult:
        result = ScrapeResult()
        try:
            config = validate_source_config(source.config, 'HashRegoAdapter', {'kennelSlugs': list})
        except SourceConfigError:
            result.errors.append('No kennelSlugs configured: nothing to scrape')
            return result
        kennel_slugs = {slug.upper() for slug in config['kennelSlugs']}
        if not kennel_slugs:
            result.errors.append('No kennelSlugs configured: nothing to scrape')
            return result

        try:
            response = self._get(INDEX_URL)
        except requests.RequestException as e:
            result.add_fetch_error(f"Index fetch error: {e}", url=INDEX_URL)
            return result
        if not response.ok:
            result.add_fetch_error(
                f"Index fetch failed: HTTP {response.status_code}",
                url=INDEX_URL,
                status=response.status_code
            )
            return result

        entries = parse_events_index(response.text)
        matching = [entry for entry in entries if entry.kennel_slug.upper() in kennel_slugs]
        window = build_date_window(days)

        for entry in matching:
            event = self._fetch_detail(entry, result) or self._from_index(entry)
            if event is not None and in_window(event.date, window):
                result.events.append(event)

        result.diagnostic_context = {
            'total_index_entries': len(entries),
            'matching_entries': len(matching),
            'kennel_slugs': config['kennelSlugs'],
        }
        logger.info(f"Hash Rego source {source.id} produced {len(result.events)} events")
        return result

    def _from_index(self, entry: IndexEntry) -> Optional[RawEvent]:
        event_date = parse_index_date(entry.start_date)
        if event_date is None:
            return None
        return RawEvent(
            date=event_date,
            group_tag=entry.kennel_slug,
            title=entry.title or None,
            start_time=parse_index_time(entry.start_time),
            source_url=f"{BASE_URL}/events/{entry.slug}",
        )

    def _fetch_detail(self, entry: IndexEntry, result: ScrapeResult) -> Optional[RawEvent]:
        """Enrich an index row from its detail page; None falls back to index data."""
        url = f"{BASE_URL}/events/{entry.slug}"
        try:
            response = self._get(url)
        except requests.RequestException as e:
            result.add_fetch_error(f"Detail fetch error for {entry.slug}: {e}", url=url)
            return None
        if not response.ok:
            result.add_fetch_error(
                f"Detail fetch failed for {entry.slug}: HTTP {response.status_code}",
                url=url,
                status=response.status_code
            )
            return None

        base = self._from_index(entry)
        if base is None:
            return None

        soup = BeautifulSoup(response.text, 'html.parser')
        og_title = soup.find('meta', attrs={'property': 'og:title'})
        og_description = soup.find('meta', attrs={'property': 'og:description'})
        title = _OG_TITLE_PREFIX.sub('', og_title.get('content', '')).strip() if og_title else ''
        description = og_description.get('content', '') if og_description else ''

        location = _extract_field(description, 'Where')
        return RawEvent(
            date=base.date,
            group_tag=base.group_tag,
            title=title or base.title,
            description=description[:MAX_DESCRIPTION_LENGTH] or None,
            hares=_extract_field(description, 'Hare(s)') or _extract_field(description, 'Hares'),
            location=location,
            location_url=google_maps_search_url(location) if location else None,
            start_time=base.start_time,
            source_url=base.source_url,
        )
