"""Batch scraping of due sources, inline or fanned out through SQS."""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import ClientError

from processor.models import ScrapeOutcome
from processor.scheduler import is_due

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """Per-source results and totals for one batch run."""
    results: List[Dict[str, Any]] = field(default_factory=list)
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'results': self.results,
            'succeeded': self.succeeded,
            'failed': self.failed,
            'skipped': self.skipped,
        }


def scrape_due_sources(store, orchestrator, days: Optional[int] = None, now: Optional[datetime] = None) -> BatchResult:
    """
    Scrape every enabled, due source one after another.

    Sources run sequentially so third-party endpoints are never hit in parallel.
    A failing source is recorded by the orchestrator and the batch continues.

    Args:
        store: DynamoDBStore used to list sources
        orchestrator: ScrapeOrchestrator that scrapes a single source
        days: Window override; None uses each source's own window
        now: Current time for due checks (defaults to UTC now)

    Returns:
        BatchResult with one entry per source
    """
    now = now or datetime.now(timezone.utc)
    batch = BatchResult()

    for source in store.list_sources(enabled_only=True):
        if not is_due(source.scrape_frequency, source.last_scrape_at, now):
            batch.skipped += 1
            batch.results.append({'source_id': source.id, 'skipped': True})
            continue

        outcome: ScrapeOutcome = orchestrator.scrape_source(source.id, days=days)
        if outcome.success:
            batch.succeeded += 1
        else:
            batch.failed += 1
        batch.results.append(outcome.to_dict())

    logger.info(
        f"Batch scrape finished: {batch.succeeded} succeeded, {batch.failed} failed, {batch.skipped} skipped",
        extra={'succeeded': batch.succeeded, 'failed': batch.failed, 'skipped': batch.skipped}
    )
    return batch


class SqsDispatcher:
    """Publishes one scrape job per due source to an SQS queue."""

    def __init__(self, queue_url: str, store, sqs_client=None):
        """
        Initialize the dispatcher.

        Args:
            queue_url: URL of the scrape job queue
            store: DynamoDBStore used to list sources
            sqs_client: Optional boto3 SQS client (for testing)
        """
        self.queue_url = queue_url
        self.store = store
        self.sqs = sqs_client or boto3.client('sqs')

    def dispatch_due(self, days: Optional[int] = None, now: Optional[datetime] = None) -> BatchResult:
        """
        Queue a job for each enabled, due source.

        Args:
            days: Window carried in each job; None lets the worker use the source's window
            now: Current time for due checks (defaults to UTC now)

        Returns:
            BatchResult where succeeded counts queued jobs and failed counts send errors
        """
        now = now or datetime.now(timezone.utc)
        batch = BatchResult()

        for source in self.store.list_sources(enabled_only=True):
            if not is_due(source.scrape_frequency, source.last_scrape_at, now):
                batch.skipped += 1
                batch.results.append({'source_id': source.id, 'skipped': True})
                continue

            body = json.dumps({'source_id': source.id, 'days': days})
            try:
                response = self.sqs.send_message(QueueUrl=self.queue_url, MessageBody=body)
            except ClientError as e:
                logger.error(
                    f"Failed to queue scrape for source {source.id}: {e}",
                    extra={'source_id': source.id, 'error_code': e.response['Error']['Code']}
                )
                batch.failed += 1
                batch.results.append({'source_id': source.id, 'queued': False, 'error': str(e)})
                continue

            batch.succeeded += 1
            batch.results.append({'source_id': source.id, 'queued': True, 'message_id': response.get('MessageId')})

        logger.info(
            f"Dispatched {batch.succeeded} scrape jobs ({batch.failed} failed, {batch.skipped} not due)",
            extra={'queue_url': self.queue_url, 'queued': batch.succeeded, 'failed': batch.failed}
        )
        return batch
