"""Scrape scheduling policy."""
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

FREQUENCY_INTERVALS = {
    'hourly': timedelta(hours=1),
    'daily': timedelta(days=1),
    'weekly': timedelta(days=7),
}

# Sources become due slightly early so scheduler jitter never skips a run
DUE_BUFFER = timedelta(minutes=10)

_EVERY_N_HOURS = re.compile(r'^every_(\d+)h$')


def frequency_interval(frequency: str) -> timedelta:
    """
    Map a scrape frequency to its nominal interval.

    Args:
        frequency: 'hourly', 'daily', 'weekly' or 'every_<N>h'

    Returns:
        Interval; unrecognized values fall back to daily
    """
    key = (frequency or '').strip().lower()
    if key in FREQUENCY_INTERVALS:
        return FREQUENCY_INTERVALS[key]
    match = _EVERY_N_HOURS.match(key)
    if match and int(match.group(1)) > 0:
        return timedelta(hours=int(match.group(1)))
    return FREQUENCY_INTERVALS['daily']


def is_due(
    frequency: str,
    last_scrape_at: Optional[datetime],
    now: Optional[datetime] = None
) -> bool:
    """
    Decide whether a source should be scraped now.

    Args:
        frequency: Source scrape frequency
        last_scrape_at: When the source was last scraped, None if never
        now: Current time (defaults to UTC now)

    Returns:
        True if never scraped or the interval minus the buffer has elapsed
    """
    if last_scrape_at is None:
        return True
    now = now or datetime.now(timezone.utc)
    if last_scrape_at.tzinfo is None:
        last_scrape_at = last_scrape_at.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now - last_scrape_at >= frequency_interval(frequency) - DUE_BUFFER
