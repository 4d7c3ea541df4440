"""Adapter contract and helpers shared by every source adapter."""
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import requests
from bs4 import BeautifulSoup

from processor.models import RawEvent, Source, SourceKind

logger = logging.getLogger(__name__)

USER_AGENT = 'HashRunSync/1.0 (event aggregator)'

_TWELVE_HOUR = re.compile(r'(\d{1,2}):(\d{2})\s*([ap])\.?m\.?', re.IGNORECASE)
_RUN_NUMBER = re.compile(r'#\s?(\d{1,5})\b')
_SUMMARY_PREFIX = re.compile(r'^\s*([A-Za-z0-9][^:#]*?)\s*(?:#\s?(\d+))?\s*(?::\s*(.*))?$')
_LABELS = {
    'hares': re.compile(r'^\s*(?:hares?|hare\(s\)|who)\s*:\s*(.+)$', re.IGNORECASE | re.MULTILINE),
    'location': re.compile(r'^\s*(?:where|location|start location)\s*:\s*(.+)$', re.IGNORECASE | re.MULTILINE),
    'time': re.compile(r'^\s*(?:time|start time|start)\s*:\s*(.+)$', re.IGNORECASE | re.MULTILINE),
    'date': re.compile(r'^\s*(?:date|when)\s*:\s*(.+)$', re.IGNORECASE | re.MULTILINE),
}


class SourceConfigError(ValueError):
    """Raised when a source's config is missing or malformed."""


@dataclass
class ScrapeResult:
    """Output of one adapter fetch. Adapters report failures here instead of raising."""
    events: List[RawEvent] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    error_details: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    sample_rows: Optional[List[List[str]]] = None
    diagnostic_context: Dict[str, Any] = field(default_factory=dict)

    def add_fetch_error(self, message: str, url: Optional[str] = None, status: Optional[int] = None) -> None:
        self.errors.append(message)
        self.error_details.setdefault('fetch', []).append(
            {'url': url, 'status': status, 'message': message}
        )

    def add_parse_error(self, message: str, row: Optional[int] = None) -> None:
        self.errors.append(message)
        self.error_details.setdefault('parse', []).append({'row': row, 'error': message})


class SourceAdapter(ABC):
    """One implementation per SourceKind."""

    kind: SourceKind

    def __init__(self, timeout: int = 30):
        """
        Initialize the adapter.

        Args:
            timeout: HTTP request timeout in seconds (default: 30)
        """
        self.timeout = timeout

    @abstractmethod
    def fetch(self, source: Source, days: int = 90) -> ScrapeResult:
        """
        Read events for a source within today +/- days.

        Args:
            source: Source to read
            days: Window size in days

        Returns:
            ScrapeResult with events and collected errors
        """

    def _get(self, url: str, **kwargs) -> requests.Response:
        headers = {'User-Agent': USER_AGENT}
        headers.update(kwargs.pop('headers', {}))
        return requests.get(url, headers=headers, timeout=self.timeout, **kwargs)


def build_date_window(days: int, today: Optional[date] = None) -> Tuple[date, date]:
    """Return (start, end) covering today +/- days."""
    today = today or date.today()
    return today - timedelta(days=days), today + timedelta(days=days)


def in_window(event_date: str, window: Tuple[date, date]) -> bool:
    start, end = window
    return start.isoformat() <= event_date <= end.isoformat()


def strip_html_tags(html: Optional[str]) -> str:
    """Convert an HTML fragment to plain text, one line per block."""
    if not html:
        return ''
    text = BeautifulSoup(html, 'html.parser').get_text('\n')
    lines = [' '.join(line.split()) for line in text.splitlines()]
    return '\n'.join(line for line in lines if line)


def google_maps_search_url(query: str) -> str:
    return f"https://www.google.com/maps/search/?api=1&query={quote(query, safe='')}"


def parse_12_hour_time(text: Optional[str]) -> Optional[str]:
    """
    Parse the first 12-hour clock time in a string.

    Args:
        text: Text such as "7:15 PM" or "Meet at 12:00 am"

    Returns:
        24-hour "HH:MM", or None if no time is present
    """
    if not text:
        return None
    match = _TWELVE_HOUR.search(text)
    if not match:
        return None
    hours = int(match.group(1))
    meridiem = match.group(3).lower()
    if meridiem == 'p' and hours != 12:
        hours += 12
    if meridiem == 'a' and hours == 12:
        hours = 0
    return f"{hours:02d}:{match.group(2)}"


def extract_run_number(text: Optional[str]) -> Optional[int]:
    if not text:
        return None
    match = _RUN_NUMBER.search(text)
    return int(match.group(1)) if match else None


def extract_labeled_fields(text: Optional[str]) -> Dict[str, str]:
    """
    Pull "Label: value" lines out of free text.

    Args:
        text: Plain text body of a post or event description

    Returns:
        Dict with any of 'hares', 'location', 'time', 'date'
    """
    fields: Dict[str, str] = {}
    if not text:
        return fields
    for name, pattern in _LABELS.items():
        match = pattern.search(text)
        if match and match.group(1).strip():
            fields[name] = match.group(1).strip()
    return fields


def validate_source_config(
    config: Any,
    adapter_name: str,
    required_fields: Dict[str, type]
) -> Dict[str, Any]:
    """
    Check that a source config carries the fields an adapter needs.

    Args:
        config: Source.config value
        adapter_name: Name used in error messages
        required_fields: Field name to expected Python type

    Returns:
        The config, unchanged

    Raises:
        SourceConfigError: If the config is not a dict or a field is missing or mistyped
    """
    if not isinstance(config, dict):
        raise SourceConfigError(
            f"{adapter_name}: source config must be an object, got {type(config).__name__}"
        )
    for name, expected in required_fields.items():
        value = config.get(name)
        if value is None:
            raise SourceConfigError(f"{adapter_name}: missing required config field '{name}'")
        if not isinstance(value, expected):
            raise SourceConfigError(
                f"{adapter_name}: config.{name} must be {expected.__name__}, "
                f"got {type(value).__name__}"
            )
    return config


def match_group_patterns(text: str, patterns: Optional[List[List[str]]]) -> Optional[str]:
    """
    Return the tag of the first [regex, tag] pair matching text.

    Malformed expressions from a source config are skipped.
    """
    for pattern, tag in patterns or []:
        try:
            if re.search(pattern, text, re.IGNORECASE):
                return tag
        except re.error:
            logger.warning(f"Skipping malformed group pattern: {pattern}")
    return None


def split_summary(summary: str) -> Tuple[Optional[str], Optional[int], str]:
    """
    Split a calendar summary such as "NYCH3 #1234: Costume Run".

    A prefix counts as a tag only when followed by a run number or a colon,
    so "NYCH3 #1234" and "NYCH3: Costume Run" carry a tag but
    "Trail Workday" does not.

    Returns:
        (tag, run_number, title); tag and run_number are None when absent
    """
    summary = (summary or '').strip()
    match = _SUMMARY_PREFIX.match(summary)
    if not match or (match.group(2) is None and match.group(3) is None):
        return None, extract_run_number(summary), summary
    tag, run, title = match.groups()
    run_number = int(run) if run else extract_run_number(title)
    return tag.strip(), run_number, (title or '').strip() or summary
