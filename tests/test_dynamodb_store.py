"""Unit tests for DynamoDBStore."""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from botocore.exceptions import ClientError

from processor.models import (
    CanonicalEvent,
    EventStatus,
    FillRates,
    Group,
    HealthStatus,
    RawEvent,
    ScrapeLogEntry,
    ScrapeStatus,
    Source,
    SourceKind,
)

STARTED = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestSourcesAndGroups:
    """Test cases for source and group rows."""

    def test_source_round_trip(self, store):
        source = Source(
            id='src-1',
            kind=SourceKind.GOOGLE_SHEETS,
            url='https://docs.google.com/spreadsheets/d/abc',
            name='Run log',
            config={'sheetId': 'abc', 'columns': {'date': 2}},
            trust_level=7,
            scrape_frequency='weekly',
            linked_group_ids={'g1', 'g2'},
        )
        store.put_source(source)

        loaded = store.get_source('src-1')

        assert loaded == source

    def test_missing_source(self, store):
        assert store.get_source('nope') is None

    def test_list_sources_enabled_only(self, store):
        store.put_source(Source(id='b', kind=SourceKind.RSS_FEED, url='https://b.org'))
        store.put_source(Source(id='a', kind=SourceKind.RSS_FEED, url='https://a.org'))
        store.put_source(Source(id='c', kind=SourceKind.RSS_FEED, url='https://c.org', enabled=False))

        assert [s.id for s in store.list_sources()] == ['a', 'b', 'c']
        assert [s.id for s in store.list_sources(enabled_only=True)] == ['a', 'b']

    def test_update_source_health(self, store):
        store.put_source(Source(id='a', kind=SourceKind.RSS_FEED, url='https://a.org'))

        store.update_source_health('a', HealthStatus.FAILING, last_scrape_at=STARTED)
        failing = store.get_source('a')
        store.update_source_health('a', HealthStatus.HEALTHY, last_scrape_at=STARTED, last_success_at=STARTED)
        healthy = store.get_source('a')

        assert failing.health_status == HealthStatus.FAILING
        assert failing.last_scrape_at == STARTED
        assert failing.last_success_at is None
        assert healthy.last_success_at == STARTED

    def test_groups_are_not_listed_as_sources(self, store, groups):
        for group in groups:
            store.put_group(group)
        store.put_source(Source(id='a', kind=SourceKind.RSS_FEED, url='https://a.org'))

        assert {g.id for g in store.list_groups()} == {'g-nych3', 'g-bfm', 'g-philly'}
        assert [s.id for s in store.list_sources()] == ['a']

    def test_group_without_aliases(self, store):
        store.put_group(Group(id='g', short_name='G'))
        assert store.list_groups()[0].aliases == set()


class TestEvents:
    """Test cases for canonical events, sightings and raw rows."""

    def test_event_round_trip_and_range(self, store):
        for day in ('2026-03-01', '2026-03-08', '2026-04-01'):
            store.put_event(CanonicalEvent(
                group_id='g1', date=day, title='Run', run_number=12, source_ids={'s1'}
            ))

        event = store.get_event('g1', '2026-03-08')
        in_march = store.list_events('g1', '2026-03-01', '2026-03-31')

        assert event.run_number == 12
        assert event.status == EventStatus.CONFIRMED
        assert event.source_ids == {'s1'}
        assert [e.date for e in in_march] == ['2026-03-01', '2026-03-08']

    def test_sightings(self, store):
        store.put_sighting('s1', 'g1', '2026-03-01')
        store.put_sighting('s1', 'g2', '2026-03-02')

        assert sorted(store.list_sightings('s1')) == [('g1', '2026-03-01'), ('g2', '2026-03-02')]
        assert store.list_sightings('s2') == []

    def test_delete_raw_events(self, store):
        raw = RawEvent(date='2026-03-01', group_tag='X')
        store.put_raw_event('s1', 'fp1', raw)
        store.put_raw_event('s1', 'fp2', raw, group_id='g1')
        store.put_raw_event('s2', 'fp3', raw)

        assert store.delete_raw_events('s1') == 2
        assert store.list_raw_fingerprints('s1') == []
        assert store.list_raw_fingerprints('s2') == ['fp3']
        assert store.delete_raw_events('s1') == 0


class TestScrapeLogs:
    """Test cases for scrape log rows."""

    def _entry(self, minutes, status=ScrapeStatus.SUCCESS, entry_id=None):
        return ScrapeLogEntry(
            id=entry_id or f"log-{minutes}",
            source_id='s1',
            started_at=STARTED + timedelta(minutes=minutes),
            status=status,
            events_found=minutes,
            fill_rates=FillRates(title=90),
            unmatched_tags=['X'] if minutes else [],
        )

    def test_recent_logs_newest_first(self, store):
        for minutes in range(5):
            store.put_scrape_log(self._entry(minutes))

        logs = store.recent_scrape_logs('s1', limit=3)

        assert [log.id for log in logs] == ['log-4', 'log-3', 'log-2']
        assert logs[0].fill_rates.title == 90
        assert logs[0].events_found == 4
        assert isinstance(logs[0].events_found, int)

    def test_status_filter_and_exclusion(self, store):
        store.put_scrape_log(self._entry(0))
        store.put_scrape_log(self._entry(1, status=ScrapeStatus.FAILED))
        store.put_scrape_log(self._entry(2))

        logs = store.recent_scrape_logs('s1', limit=10, status=ScrapeStatus.SUCCESS, exclude_log_id='log-2')

        assert [log.id for log in logs] == ['log-0']

    def test_rewriting_a_log_updates_it(self, store):
        entry = self._entry(0)
        store.put_scrape_log(entry)
        entry.status = ScrapeStatus.FAILED
        entry.errors = ['boom']
        store.put_scrape_log(entry)

        logs = store.recent_scrape_logs('s1', limit=10)

        assert len(logs) == 1
        assert logs[0].status == ScrapeStatus.FAILED
        assert logs[0].errors == ['boom']

    def test_zero_limit(self, store):
        store.put_scrape_log(self._entry(0))
        assert store.recent_scrape_logs('s1', limit=0) == []


class TestErrors:
    """Test cases for DynamoDB error propagation."""

    def test_client_error_is_raised(self, store):
        error = ClientError({'Error': {'Code': 'ProvisionedThroughputExceededException', 'Message': 'slow down'}}, 'PutItem')
        with patch.object(store.table, 'put_item', side_effect=error):
            with pytest.raises(ClientError):
                store.put_group(Group(id='g', short_name='G'))
