"""Unit tests for helpers shared by adapters."""
from datetime import date

import pytest

from scraper.base import (
    ScrapeResult,
    SourceConfigError,
    build_date_window,
    extract_labeled_fields,
    extract_run_number,
    google_maps_search_url,
    in_window,
    match_group_patterns,
    parse_12_hour_time,
    split_summary,
    strip_html_tags,
    validate_source_config,
)


class TestParse12HourTime:
    """Test cases for parse_12_hour_time."""

    @pytest.mark.parametrize('text,expected', [
        ('7:15 PM', '19:15'),
        ('Meet at 12:00 am sharp', '00:00'),
        ('12:30 p.m.', '12:30'),
        ('9:05am', '09:05'),
    ])
    def test_parses(self, text, expected):
        assert parse_12_hour_time(text) == expected

    def test_no_time(self):
        assert parse_12_hour_time('sometime') is None
        assert parse_12_hour_time(None) is None


class TestSplitSummary:
    """Test cases for split_summary."""

    def test_tag_run_and_title(self):
        assert split_summary('NYCH3 #1234: Costume Run') == ('NYCH3', 1234, 'Costume Run')

    def test_tag_and_title(self):
        assert split_summary('BFM: Beer Mile') == ('BFM', None, 'Beer Mile')

    def test_tag_and_run_only(self):
        tag, run, title = split_summary('Philly H3 #42')
        assert (tag, run) == ('Philly H3', 42)
        assert title == 'Philly H3 #42'

    def test_plain_summary_has_no_tag(self):
        assert split_summary('Trail Workday') == (None, None, 'Trail Workday')


class TestTextHelpers:
    """Test cases for text extraction helpers."""

    def test_strip_html_tags(self):
        html = '<p>Hares: <b>Sue</b></p><p>Where:   The   Park</p>'
        assert strip_html_tags(html) == 'Hares:\nSue\nWhere: The Park'

    def test_strip_html_tags_empty(self):
        assert strip_html_tags(None) == ''

    def test_extract_labeled_fields(self):
        text = 'Hare(s): Sue and Bob\nStart location: Dupont Circle\nTime: 6:45 PM\nWhen: Saturday'
        assert extract_labeled_fields(text) == {
            'hares': 'Sue and Bob',
            'location': 'Dupont Circle',
            'time': '6:45 PM',
            'date': 'Saturday',
        }

    def test_extract_run_number(self):
        assert extract_run_number('Run # 77 this week') == 77
        assert extract_run_number('no number') is None

    def test_google_maps_search_url(self):
        assert google_maps_search_url('Central Park, NY') == (
            'https://www.google.com/maps/search/?api=1&query=Central%20Park%2C%20NY'
        )


class TestMatchGroupPatterns:
    """Test cases for match_group_patterns."""

    def test_first_match_wins(self):
        patterns = [['full moon', 'FMH3'], ['moon', 'OTHER']]
        assert match_group_patterns('Full Moon Run', patterns) == 'FMH3'

    def test_malformed_pattern_is_skipped(self):
        assert match_group_patterns('anything', [['(unclosed', 'X'], ['any', 'Y']]) == 'Y'

    def test_no_patterns(self):
        assert match_group_patterns('x', None) is None


class TestValidateSourceConfig:
    """Test cases for validate_source_config."""

    def test_valid(self):
        config = {'kennelTag': 'NYCH3'}
        assert validate_source_config(config, 'X', {'kennelTag': str}) is config

    def test_not_a_dict(self):
        with pytest.raises(SourceConfigError, match='must be an object'):
            validate_source_config(None, 'X', {'kennelTag': str})

    def test_missing_field(self):
        with pytest.raises(SourceConfigError, match="missing required config field 'kennelTag'"):
            validate_source_config({}, 'X', {'kennelTag': str})

    def test_wrong_type(self):
        with pytest.raises(SourceConfigError, match='must be list'):
            validate_source_config({'kennelSlugs': 'NYCH3'}, 'X', {'kennelSlugs': list})


class TestWindowAndResult:
    """Test cases for the date window and ScrapeResult helpers."""

    def test_window_is_inclusive(self):
        window = build_date_window(7, today=date(2026, 3, 10))
        assert window == (date(2026, 3, 3), date(2026, 3, 17))
        assert in_window('2026-03-03', window)
        assert in_window('2026-03-17', window)
        assert not in_window('2026-03-18', window)

    def test_error_details_are_grouped(self):
        result = ScrapeResult()
        result.add_fetch_error('boom', url='https://x.org', status=500)
        result.add_parse_error('bad row', row=3)
        assert result.errors == ['boom', 'bad row']
        assert result.error_details['fetch'][0]['status'] == 500
        assert result.error_details['parse'][0]['row'] == 3
