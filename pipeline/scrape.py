"""Single-source scrape pipeline: fetch, merge, measure, analyze, record."""
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from processor.fill_rates import compute_fill_rates
from processor.fuzzy import FuzzyMatch
from processor.group_resolver import GroupTagResolver
from processor.health import HealthAnalyzer, HealthInput, persist_alerts
from processor.merge_engine import MergeEngine
from processor.models import (
    FillRates,
    HealthStatus,
    ScrapeLogEntry,
    ScrapeOutcome,
    ScrapeStatus,
    Source,
    SourceNotFoundError,
)
from scraper.base import ScrapeResult, SourceAdapter
from scraper.registry import get_adapter
from scraper.safe_url import requires_url_check, validate_fetch_url

logger = logging.getLogger(__name__)


@dataclass
class PreviewResult:
    """Adapter output with tag resolution, computed without touching storage."""
    events_found: int = 0
    matched_tags: Dict[str, str] = field(default_factory=dict)
    unmatched_tags: List[str] = field(default_factory=list)
    suggestions: Dict[str, List[FuzzyMatch]] = field(default_factory=dict)
    fill_rates: FillRates = field(default_factory=FillRates)
    errors: List[str] = field(default_factory=list)
    sample_rows: Optional[List[List[str]]] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScrapeOrchestrator:
    """Runs the pipeline for one source and never lets a failure escape."""

    def __init__(
        self,
        store,
        adapter_factory: Callable[..., SourceAdapter] = get_adapter,
        baseline_window: int = 10,
        timeout: int = 30,
        default_days: int = 90,
        clock: Callable[[], datetime] = _utcnow
    ):
        """
        Initialize the orchestrator.

        Args:
            store: DynamoDBStore (or compatible) persistence
            adapter_factory: Callable (kind, timeout=) returning an adapter
            baseline_window: Successful scrapes used as the health baseline
            timeout: HTTP request timeout in seconds for adapters
            default_days: Window used when neither the caller nor the source sets one
            clock: Returns the current UTC time
        """
        self.store = store
        self.adapter_factory = adapter_factory
        self.analyzer = HealthAnalyzer(store, baseline_window=baseline_window)
        self.timeout = timeout
        self.default_days = default_days
        self.clock = clock

    def scrape_source(self, source_id: str, days: Optional[int] = None, force: bool = False) -> ScrapeOutcome:
        """
        Scrape one source end to end.

        Args:
            source_id: Source to scrape
            days: Window (today +/- days); defaults to the source's window
            force: Delete stored raw events before scraping

        Returns:
            ScrapeOutcome combining adapter errors, merge counts and health

        Raises:
            SourceNotFoundError: If the source id is unknown
        """
        source = self.store.get_source(source_id)
        if source is None:
            raise SourceNotFoundError(source_id)
        if days is None:
            days = source.scrape_window_days or self.default_days

        started_at = self.clock()
        start = time.monotonic()
        log = ScrapeLogEntry(id=uuid.uuid4().hex, source_id=source.id, started_at=started_at, forced=force)
        self.store.put_scrape_log(log)
        logger.info(
            f"Scrape started for source {source.id}",
            extra={'source_id': source.id, 'kind': source.kind.value, 'days': days, 'forced': force}
        )

        try:
            return self._run(source, log, days, force, start)
        except Exception as e:
            logger.error(
                f"Scrape failed for source {source.id}: {e}",
                extra={'source_id': source.id, 'error_type': type(e).__name__},
                exc_info=True
            )
            return self._record_failure(source, log, [f"{type(e).__name__}: {e}"], start)

    def _fetch(self, source: Source, days: int) -> ScrapeResult:
        if requires_url_check(source.kind):
            reason = validate_fetch_url(source.url)
            if reason:
                logger.warning(f"Refusing to fetch source {source.id}: {reason}")
                result = ScrapeResult()
                result.add_fetch_error(f"Blocked URL: {reason}", url=source.url)
                return result
        adapter = self.adapter_factory(source.kind, timeout=self.timeout)
        return adapter.fetch(source, days=days)

    def _run(self, source: Source, log: ScrapeLogEntry, days: int, force: bool, start: float) -> ScrapeOutcome:
        if force:
            self.store.delete_raw_events(source.id)

        scrape = self._fetch(source, days)
        logger.info(f"Adapter returned {len(scrape.events)} events and {len(scrape.errors)} errors for source {source.id}")

        resolver = GroupTagResolver.from_store(self.store)
        resolver.clear_cache()
        failed = not scrape.events and bool(scrape.errors)
        # events missing because a page failed to load are not removals
        complete = not failed and not scrape.error_details.get('fetch')
        merge = MergeEngine(self.store, resolver).reconcile(
            source.id, scrape.events, days=days, source=source, cancel_missing=complete
        )
        fill_rates = compute_fill_rates(scrape.events)

        errors = scrape.errors + merge.event_error_messages

        analysis = self.analyzer.analyze(source.id, log.id, HealthInput(
            events_found=len(scrape.events),
            scrape_failed=failed,
            errors=errors,
            unmatched_tags=merge.unmatched,
            fill_rates=fill_rates,
            blocked_tags=merge.blocked_tags,
        ))
        persist_alerts(self.store, source.id, log.id, analysis.alerts)

        log.status = ScrapeStatus.FAILED if failed else ScrapeStatus.SUCCESS
        log.events_found = len(scrape.events)
        log.events_created = merge.created
        log.events_updated = merge.updated
        log.events_skipped = merge.skipped
        log.events_blocked = merge.blocked
        log.events_cancelled = merge.cancelled
        log.unmatched_tags = list(merge.unmatched)
        log.fill_rates = fill_rates
        log.errors = errors
        self._complete(log, start)

        self.store.update_source_health(
            source.id,
            analysis.health_status,
            last_scrape_at=log.started_at,
            last_success_at=None if failed else log.started_at
        )

        outcome = ScrapeOutcome(
            source_id=source.id,
            success=not failed,
            scrape_log_id=log.id,
            forced=force,
            events_found=len(scrape.events),
            created=merge.created,
            updated=merge.updated,
            skipped=merge.skipped,
            blocked=merge.blocked,
            cancelled=merge.cancelled,
            unmatched=list(merge.unmatched),
            blocked_tags=list(merge.blocked_tags),
            errors=errors,
            health_status=analysis.health_status,
            fill_rates=fill_rates,
        )
        logger.info(
            f"Scrape completed for source {source.id}",
            extra={
                'source_id': source.id,
                'status': log.status.value,
                'health_status': analysis.health_status.value,
                'duration_ms': log.duration_ms,
                'events_created': merge.created,
                'events_updated': merge.updated,
                'events_skipped': merge.skipped,
            }
        )
        return outcome

    def _complete(self, log: ScrapeLogEntry, start: float) -> None:
        log.completed_at = self.clock()
        log.duration_ms = int((time.monotonic() - start) * 1000)
        self.store.put_scrape_log(log)

    def _record_failure(self, source: Source, log: ScrapeLogEntry, errors: List[str], start: float) -> ScrapeOutcome:
        """Record a run that raised. Failures while recording are logged, not raised."""
        health = HealthStatus.FAILING
        log.status = ScrapeStatus.FAILED
        log.errors = errors
        try:
            analysis = self.analyzer.analyze(
                source.id, log.id, HealthInput(events_found=0, scrape_failed=True, errors=errors)
            )
            persist_alerts(self.store, source.id, log.id, analysis.alerts)
            health = analysis.health_status
            self._complete(log, start)
            self.store.update_source_health(source.id, health, last_scrape_at=log.started_at)
        except Exception as e:
            logger.error(
                f"Could not record failed scrape for source {source.id}: {e}",
                extra={'source_id': source.id, 'error_type': type(e).__name__},
                exc_info=True
            )
        return ScrapeOutcome(
            source_id=source.id,
            success=False,
            scrape_log_id=log.id,
            forced=log.forced,
            errors=errors,
            health_status=health,
        )

    def preview_source(self, source: Source, days: int = 90) -> PreviewResult:
        """
        Fetch and resolve a source's events without persisting anything.

        Args:
            source: Source definition, which need not be stored yet
            days: Window (today +/- days)

        Returns:
            PreviewResult with resolution results and fuzzy suggestions
        """
        scrape = self._fetch(source, days)
        resolver = GroupTagResolver.from_store(self.store)
        preview = PreviewResult(
            events_found=len(scrape.events),
            fill_rates=compute_fill_rates(scrape.events),
            errors=list(scrape.errors),
            sample_rows=scrape.sample_rows,
        )
        for event in scrape.events:
            tag = event.group_tag
            if tag in preview.matched_tags or tag in preview.unmatched_tags:
                continue
            resolved = resolver.resolve(tag, source)
            if resolved.matched:
                preview.matched_tags[tag] = resolved.group_id
            else:
                preview.unmatched_tags.append(tag)
                preview.suggestions[tag] = resolver.suggest(tag)
        return preview
