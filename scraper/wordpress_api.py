"""WordPress REST API client and the adapter built on it."""
import html
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterator, List, Optional
from urllib.parse import urlencode

import requests
from dateutil import parser as date_parser

from processor.models import RawEvent, Source, SourceKind
from scraper.base import (
    ScrapeResult,
    SourceAdapter,
    SourceConfigError,
    USER_AGENT,
    build_date_window,
    extract_labeled_fields,
    extract_run_number,
    google_maps_search_url,
    in_window,
    parse_12_hour_time,
    strip_html_tags,
    validate_source_config,
)
from scraper.url_variants import build_url_variants

logger = logging.getLogger(__name__)

# Pretty permalinks first, then the query-string route every install serves
ENDPOINT_SHAPES = (
    '{base}/wp-json/wp/v2/posts?{params}',
    '{base}/?rest_route=/wp/v2/posts&{params}',
)

RETRYABLE_STATUSES = {403, 404}


@dataclass
class WordPressPost:
    title: str
    content: str
    url: str
    date: str


@dataclass
class FetchError:
    message: str
    status: Optional[int] = None


@dataclass
class ProbeAttempt:
    """One (url variant, endpoint shape) combination."""
    variant: str
    shape: int
    url: str


@dataclass
class WordPressFetchResult:
    posts: List[WordPressPost] = field(default_factory=list)
    error: Optional[FetchError] = None
    attempts: int = 0


def iter_probe_attempts(site_url: str, per_page: int = 10) -> Iterator[ProbeAttempt]:
    """
    Yield every endpoint shape for every URL variant, variant by variant.

    Args:
        site_url: WordPress site base URL
        per_page: Number of posts to request

    Yields:
        ProbeAttempt descriptors in probing order
    """
    params = urlencode({'per_page': per_page, '_fields': 'title,content,link,date'})
    for variant in build_url_variants(site_url):
        for index, shape in enumerate(ENDPOINT_SHAPES):
            yield ProbeAttempt(variant=variant, shape=index, url=shape.format(base=variant, params=params))


def _to_post(item: dict) -> WordPressPost:
    title = (item.get('title') or {}).get('rendered') or ''
    content = (item.get('content') or {}).get('rendered') or ''
    return WordPressPost(
        title=html.unescape(title),
        content=content,
        url=item.get('link') or '',
        date=item.get('date') or '',
    )


def fetch_wordpress_posts(site_url: str, per_page: int = 10, timeout: int = 30) -> WordPressFetchResult:
    """
    Fetch recent posts, probing URL variants and endpoint shapes in order.

    A 403/404 or network error moves on to the next attempt. Any other
    error status abandons the remaining endpoint shapes of that URL variant.
    The first 200 response with a JSON array body wins.

    Args:
        site_url: WordPress site base URL
        per_page: Number of posts to request
        timeout: HTTP request timeout in seconds

    Returns:
        WordPressFetchResult with posts, or the last error when every attempt failed
    """
    result = WordPressFetchResult()
    abandoned = set()

    for attempt in iter_probe_attempts(site_url, per_page):
        if attempt.variant in abandoned:
            continue
        result.attempts += 1
        try:
            response = requests.get(
                attempt.url,
                headers={'Accept': 'application/json', 'User-Agent': USER_AGENT},
                timeout=timeout
            )
        except requests.RequestException as e:
            logger.warning(f"WordPress API request failed for {attempt.url}: {e}")
            result.error = FetchError(message=f"WordPress API fetch error: {e}")
            continue

        if response.ok:
            try:
                data = response.json()
            except ValueError:
                data = None
            if not isinstance(data, list):
                result.error = FetchError(message='WordPress API returned non-array response')
                continue
            result.posts = [_to_post(item) for item in data if isinstance(item, dict)]
            result.error = None
            logger.info(
                f"Fetched {len(result.posts)} WordPress posts from {attempt.url} "
                f"after {result.attempts} attempts"
            )
            return result

        result.error = FetchError(
            message=f"WordPress API HTTP {response.status_code}: {response.reason}",
            status=response.status_code
        )
        if response.status_code not in RETRYABLE_STATUSES:
            logger.warning(f"WordPress API returned {response.status_code} for {attempt.url}")
            abandoned.add(attempt.variant)

    if result.error is None:
        result.error = FetchError(message='WordPress API fetch failed')
    logger.error(f"WordPress API exhausted {result.attempts} attempts for {site_url}: {result.error.message}")
    return result


def _event_date(labels: dict, post: WordPressPost) -> Optional[str]:
    try:
        post_date = date_parser.isoparse(post.date) if post.date else None
    except ValueError:
        post_date = None
    if 'date' in labels:
        default = (post_date or datetime.now()).replace(hour=0, minute=0, second=0, microsecond=0)
        try:
            return date_parser.parse(labels['date'], fuzzy=True, default=default).date().isoformat()
        except (ValueError, OverflowError):
            pass
    return post_date.date().isoformat() if post_date else None


class WordPressApiAdapter(SourceAdapter):
    """Reads run announcements posted on a WordPress site."""

    kind = SourceKind.WORDPRESS_API
    DEFAULT_PER_PAGE = 20

    def fetch(self, source: Source, days: int = 90) -> ScrapeResult:
        result = ScrapeResult()
        try:
            config = validate_source_config(source.config, 'WordPressApiAdapter', {'kennelTag': str})
        except SourceConfigError as e:
            result.errors.append(str(e))
            return result

        per_page = int(config.get('perPage', self.DEFAULT_PER_PAGE))
        fetched = fetch_wordpress_posts(source.url, per_page=per_page, timeout=self.timeout)
        result.diagnostic_context = {'attempts': fetched.attempts, 'posts': len(fetched.posts)}
        if fetched.error is not None:
            result.add_fetch_error(fetched.error.message, url=source.url, status=fetched.error.status)
            return result

        window = build_date_window(days)
        for index, post in enumerate(fetched.posts):
            text = strip_html_tags(post.content)
            labels = extract_labeled_fields(text)
            event_date = _event_date(labels, post)
            if event_date is None:
                result.add_parse_error(f"Post '{post.title}' has no usable date", row=index)
                continue
            if not in_window(event_date, window):
                continue
            location = labels.get('location')
            result.events.append(RawEvent(
                date=event_date,
                group_tag=config['kennelTag'],
                title=post.title or None,
                description=text or None,
                hares=labels.get('hares'),
                location=location,
                location_url=google_maps_search_url(location) if location else None,
                start_time=parse_12_hour_time(labels.get('time')),
                run_number=extract_run_number(post.title),
                source_url=post.url or None,
            ))

        logger.info(f"WordPress source {source.id} produced {len(result.events)} events")
        return result
