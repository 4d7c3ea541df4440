"""Tests for batch scraping and SQS fan-out."""
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import boto3
import pytest
from botocore.exceptions import ClientError

from pipeline.dispatch import SqsDispatcher, scrape_due_sources
from processor.models import HealthStatus, ScrapeOutcome, Source, SourceKind

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def sources(store):
    rows = [
        # never scraped
        Source(id='new', kind=SourceKind.RSS_FEED, url='https://new.org'),
        # daily, scraped two days ago
        Source(id='stale', kind=SourceKind.RSS_FEED, url='https://stale.org', last_scrape_at=NOW - timedelta(days=2)),
        # weekly, scraped yesterday
        Source(
            id='fresh', kind=SourceKind.RSS_FEED, url='https://fresh.org',
            scrape_frequency='weekly', last_scrape_at=NOW - timedelta(days=1)
        ),
        Source(id='off', kind=SourceKind.RSS_FEED, url='https://off.org', enabled=False),
    ]
    for row in rows:
        store.put_source(row)
    return rows


class TestScrapeDueSources:
    """Test cases for scrape_due_sources."""

    def test_scrapes_due_sources_sequentially(self, store, sources):
        orchestrator = Mock()
        orchestrator.scrape_source.side_effect = [
            ScrapeOutcome(source_id='new', success=True, health_status=HealthStatus.HEALTHY),
            ScrapeOutcome(source_id='stale', success=False, errors=['HTTP 500'], health_status=HealthStatus.FAILING),
        ]

        batch = scrape_due_sources(store, orchestrator, now=NOW)

        assert [c.args[0] for c in orchestrator.scrape_source.call_args_list] == ['new', 'stale']
        assert batch.succeeded == 1
        assert batch.failed == 1
        assert batch.skipped == 1
        assert {'source_id': 'fresh', 'skipped': True} in batch.results
        assert all(r['source_id'] != 'off' for r in batch.results)

    def test_days_override_is_passed_through(self, store, sources):
        orchestrator = Mock()
        orchestrator.scrape_source.return_value = ScrapeOutcome(source_id='x', success=True)

        scrape_due_sources(store, orchestrator, days=14, now=NOW)

        assert orchestrator.scrape_source.call_args.kwargs == {'days': 14}

    def test_empty_store(self, store):
        batch = scrape_due_sources(store, Mock(), now=NOW)
        assert batch.to_dict() == {'results': [], 'succeeded': 0, 'failed': 0, 'skipped': 0}


class TestSqsDispatcher:
    """Test cases for SqsDispatcher."""

    @pytest.fixture
    def queue(self, dynamodb_table):
        # dynamodb_table keeps the moto context open
        sqs = boto3.client('sqs', region_name='us-east-1')
        url = sqs.create_queue(QueueName='scrape-jobs')['QueueUrl']
        return sqs, url

    def test_queues_one_job_per_due_source(self, store, sources, queue):
        sqs, url = queue

        batch = SqsDispatcher(url, store, sqs_client=sqs).dispatch_due(days=30, now=NOW)

        assert batch.succeeded == 2
        assert batch.skipped == 1
        messages = sqs.receive_message(QueueUrl=url, MaxNumberOfMessages=10)['Messages']
        bodies = sorted((json.loads(m['Body']) for m in messages), key=lambda b: b['source_id'])
        assert bodies == [{'source_id': 'new', 'days': 30}, {'source_id': 'stale', 'days': 30}]
        assert all(r.get('message_id') for r in batch.results if r.get('queued'))

    def test_send_failure_is_counted(self, store, sources):
        sqs = Mock()
        sqs.send_message.side_effect = ClientError(
            {'Error': {'Code': 'AWS.SimpleQueueService.NonExistentQueue', 'Message': 'gone'}}, 'SendMessage'
        )

        batch = SqsDispatcher('https://queue.invalid/jobs', store, sqs_client=sqs).dispatch_due(now=NOW)

        assert batch.failed == 2
        assert batch.succeeded == 0
        assert {r['source_id'] for r in batch.results if r.get('queued') is False} == {'new', 'stale'}
