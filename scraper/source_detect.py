"""Source kind detection from a pasted URL."""
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple
from urllib.parse import parse_qs, unquote, urlsplit

from processor.models import SourceKind

RSS_SUFFIXES = ('/feed', '/rss', '/feed.xml', '/rss.xml', '/atom.xml')

_SHEET_ID = re.compile(r'/spreadsheets/d/([a-zA-Z0-9_-]+)')
_CALENDAR_CID = re.compile(r'[?&]cid=([^&]+)')
_CALENDAR_SRC = re.compile(r'[?&]src=([^&]+)')
_CALENDAR_ICAL = re.compile(r'/ical/([^/]+)/public/')
_WEBCAL = re.compile(r'^webcal://', re.IGNORECASE)


@dataclass
class SourceDetectResult:
    """
    Suggested kind for a URL.

    extracted_id is the sheet id (GOOGLE_SHEETS), calendar id
    (GOOGLE_CALENDAR) or group url name (MEETUP) when one can be read.
    """
    kind: SourceKind
    extracted_id: Optional[str] = None


def extract_sheet_id(url: str) -> Optional[str]:
    match = _SHEET_ID.search(url)
    return match.group(1) if match else None


def extract_calendar_id(url: str) -> Optional[str]:
    """Read a calendar id from cid=, src= or an /ical/<id>/public/ path."""
    for pattern in (_CALENDAR_CID, _CALENDAR_SRC, _CALENDAR_ICAL):
        match = pattern.search(url)
        if match:
            return unquote(match.group(1))
    return None


def _host_matches(hostname: str, domain: str) -> bool:
    return hostname == domain or hostname.endswith(f".{domain}")


def detect_source_type(raw_url: str) -> Optional[SourceDetectResult]:
    """
    Guess the source kind of a URL. First matching rule wins.

    Args:
        raw_url: URL as entered; webcal:// is treated as https://

    Returns:
        SourceDetectResult, or None when no rule matches
    """
    if not raw_url:
        return None
    parts = urlsplit(_WEBCAL.sub('https://', raw_url.strip()))
    hostname = (parts.hostname or '').lower()
    if not parts.scheme or not hostname:
        return None

    path = parts.path
    query = parse_qs(parts.query, keep_blank_values=True)

    if hostname == 'docs.google.com' and path.startswith('/spreadsheets'):
        return SourceDetectResult(SourceKind.GOOGLE_SHEETS, extract_sheet_id(raw_url))

    if hostname == 'calendar.google.com':
        return SourceDetectResult(SourceKind.GOOGLE_CALENDAR, extract_calendar_id(raw_url))

    if _host_matches(hostname, 'hashrego.com'):
        return SourceDetectResult(SourceKind.HASHREGO)

    if _host_matches(hostname, 'meetup.com'):
        segments = [segment for segment in path.split('/') if segment]
        return SourceDetectResult(SourceKind.MEETUP, segments[0] if segments else None)

    formats = [value.lower() for value in query.get('format', [])]
    if (
        path.lower().endswith('.ics')
        or 'ical' in formats
        or 'ical' in query
        or _WEBCAL.match(raw_url.strip())
    ):
        return SourceDetectResult(SourceKind.ICAL_FEED)

    normalized_path = path.lower().rstrip('/')
    if (
        normalized_path.endswith(RSS_SUFFIXES)
        or 'rss2' in query.get('feed', [])
        or 'rss' in query.get('format', [])
    ):
        return SourceDetectResult(SourceKind.RSS_FEED)

    return None


def suggest_group_patterns(unmatched_tags: Iterable[str]) -> List[Tuple[str, str]]:
    """
    Suggest literal (pattern, tag) pairs for unmatched tags.

    Args:
        unmatched_tags: Tags the resolver could not match

    Returns:
        One exact-match pattern per distinct non-blank tag, in input order
    """
    unique = dict.fromkeys(tag for tag in unmatched_tags if tag.strip())
    return [(re.escape(tag), tag) for tag in unique]
