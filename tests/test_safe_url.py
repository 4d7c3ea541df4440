"""Unit tests for the fetch URL guard."""
import pytest

from processor.models import SourceKind
from scraper.safe_url import requires_url_check, validate_fetch_url


class TestValidateFetchUrl:
    """Test cases for validate_fetch_url."""

    @pytest.mark.parametrize('url', [
        'https://example.com/feed',
        'http://hashrego.com/events',
        'https://8.8.8.8/calendar.ics',
        'https://172.32.0.1/',
    ])
    def test_public_urls_are_allowed(self, url):
        assert validate_fetch_url(url) is None

    @pytest.mark.parametrize('url', [
        'ftp://example.com/file',
        'file:///etc/passwd',
        'javascript:alert(1)',
    ])
    def test_non_http_schemes_are_rejected(self, url):
        assert validate_fetch_url(url) is not None

    @pytest.mark.parametrize('url', [
        'http://localhost:8080/',
        'http://127.0.0.1/',
        'http://[::1]/',
        'http://0.0.0.0/',
    ])
    def test_loopback_is_rejected(self, url):
        assert 'localhost' in validate_fetch_url(url)

    @pytest.mark.parametrize('url', [
        'http://10.1.2.3/',
        'http://172.16.0.1/',
        'http://172.31.255.255/',
        'http://192.168.1.1/',
        'http://169.254.169.254/latest/meta-data/',
    ])
    def test_private_ranges_are_rejected(self, url):
        assert 'private' in validate_fetch_url(url)

    def test_garbage_is_rejected(self):
        assert validate_fetch_url('') == 'Invalid URL format'
        assert validate_fetch_url('example.com') == 'Invalid URL format'


class TestRequiresUrlCheck:
    """Test cases for requires_url_check."""

    def test_calendar_ids_and_static_schedules_are_exempt(self):
        assert requires_url_check(SourceKind.GOOGLE_CALENDAR) is False
        assert requires_url_check(SourceKind.STATIC_SCHEDULE) is False

    def test_fetchable_kinds_are_checked(self):
        assert requires_url_check(SourceKind.ICAL_FEED) is True
        assert requires_url_check(SourceKind.WORDPRESS_API) is True
