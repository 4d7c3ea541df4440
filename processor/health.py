"""Rolling-baseline health analysis for scrape runs."""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from processor.models import (
    Alert,
    AlertSeverity,
    AlertStatus,
    AlertType,
    FillRates,
    HealthStatus,
    ScrapeLogEntry,
    ScrapeStatus,
)

logger = logging.getLogger(__name__)

FILL_RATE_FIELDS = ('title', 'location', 'hares', 'start_time', 'run_number')

# Trend thresholds
MIN_AVG_FOR_DROP = 5
DROP_RATIO = 0.5
MIN_FILL_AVG = 50
MAX_FILL_DROP = 30
MIN_PREVIOUS_FAILURES = 2


@dataclass
class HealthInput:
    """Metrics of the scrape being analyzed."""
    events_found: int
    scrape_failed: bool
    errors: List[str] = field(default_factory=list)
    unmatched_tags: List[str] = field(default_factory=list)
    fill_rates: FillRates = field(default_factory=FillRates)
    blocked_tags: Optional[List[str]] = None


@dataclass
class HealthAnalysis:
    health_status: HealthStatus
    alerts: List[Alert] = field(default_factory=list)


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


class HealthAnalyzer:
    """Compares a scrape against the source's own recent history."""

    def __init__(self, store, baseline_window: int = 10, trend_window: int = 3):
        """
        Initialize the analyzer.

        Args:
            store: Scrape log and alert persistence
            baseline_window: Number of recent successful logs used as baseline
            trend_window: Number of recent logs (any status) used for failure streaks
        """
        self.store = store
        self.baseline_window = baseline_window
        self.trend_window = trend_window

    def analyze(self, source_id: str, log_id: str, health_input: HealthInput) -> HealthAnalysis:
        """
        Evaluate every health rule for one scrape.

        Args:
            source_id: Source that was scraped
            log_id: Scrape log of the current run, excluded from baselines
            health_input: Metrics of the current run

        Returns:
            HealthAnalysis with the resulting status and alert candidates
        """
        baseline = self.store.recent_scrape_logs(
            source_id,
            limit=self.baseline_window,
            status=ScrapeStatus.SUCCESS,
            exclude_log_id=log_id
        )
        recent = self.store.recent_scrape_logs(
            source_id,
            limit=self.trend_window,
            exclude_log_id=log_id
        )

        alerts: List[Alert] = []
        candidates = [
            self._check_scrape_failure(health_input),
            self._check_consecutive_failures(health_input, recent),
        ]
        if not health_input.scrape_failed and baseline:
            candidates.append(self._check_event_count(health_input, baseline))
            candidates.extend(self._check_fill_drops(health_input, baseline))
        if not health_input.scrape_failed:
            candidates.append(self._check_unmatched_tags(health_input, baseline))
        candidates.append(self._check_blocked_tags(health_input))

        for candidate in candidates:
            if candidate is not None:
                candidate.source_id = source_id
                candidate.scrape_log_id = log_id
                alerts.append(candidate)

        severities = {alert.severity for alert in alerts}
        if health_input.scrape_failed or AlertSeverity.CRITICAL in severities:
            status = HealthStatus.FAILING
        elif AlertSeverity.WARNING in severities:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.HEALTHY

        logger.info(
            f"Health for source {source_id}: {status.value} with {len(alerts)} alerts",
            extra={'source_id': source_id, 'baseline_size': len(baseline)}
        )
        return HealthAnalysis(health_status=status, alerts=alerts)

    def _check_scrape_failure(self, health_input: HealthInput) -> Optional[Alert]:
        if not health_input.scrape_failed:
            return None
        return Alert(
            source_id='',
            type=AlertType.SCRAPE_FAILURE,
            severity=AlertSeverity.CRITICAL,
            title='Scrape failed',
            details='; '.join(health_input.errors[:5]),
            context={'error_messages': health_input.errors[:10]},
        )

    def _check_consecutive_failures(
        self,
        health_input: HealthInput,
        recent: List[ScrapeLogEntry]
    ) -> Optional[Alert]:
        if not health_input.scrape_failed:
            return None
        previous = sum(1 for log in recent if log.status == ScrapeStatus.FAILED)
        if previous < MIN_PREVIOUS_FAILURES:
            return None
        count = previous + 1
        return Alert(
            source_id='',
            type=AlertType.CONSECUTIVE_FAILURES,
            severity=AlertSeverity.CRITICAL,
            title=f"{count} consecutive scrape failures",
            details='Multiple consecutive scrapes have failed. The source may be down or its format may have changed.',
            context={'error_messages': health_input.errors[:10], 'consecutive_count': count},
        )

    def _check_event_count(
        self,
        health_input: HealthInput,
        baseline: List[ScrapeLogEntry]
    ) -> Optional[Alert]:
        average = sum(log.events_found for log in baseline) / len(baseline)
        current = health_input.events_found
        context = {
            'current_count': current,
            'baseline_avg': round(average),
            'baseline_window': len(baseline),
        }

        if current == 0 and average > 0:
            context['drop_percent'] = 100
            return Alert(
                source_id='',
                type=AlertType.EVENT_COUNT_ANOMALY,
                severity=AlertSeverity.WARNING,
                title='Zero events found',
                details=(
                    f"Expected ~{round(average)} events based on the last "
                    f"{len(baseline)} scrapes, but found 0."
                ),
                context=context,
            )

        if average > MIN_AVG_FOR_DROP and current < average * DROP_RATIO:
            drop = round((average - current) / average * 100)
            context['drop_percent'] = drop
            return Alert(
                source_id='',
                type=AlertType.EVENT_COUNT_ANOMALY,
                severity=AlertSeverity.WARNING,
                title=f"Event count dropped {drop}%",
                details=(
                    f"Found {current} events vs rolling average of "
                    f"{round(average)} (last {len(baseline)} scrapes)."
                ),
                context=context,
            )
        return None

    def _check_fill_drops(
        self,
        health_input: HealthInput,
        baseline: List[ScrapeLogEntry]
    ) -> List[Alert]:
        alerts = []
        for name in FILL_RATE_FIELDS:
            rates = [
                getattr(log.fill_rates, name)
                for log in baseline if log.fill_rates is not None
            ]
            if not rates:
                continue
            average = sum(rates) / len(rates)
            current = getattr(health_input.fill_rates, name)
            if average >= MIN_FILL_AVG and average - current > MAX_FILL_DROP:
                alerts.append(Alert(
                    source_id='',
                    type=AlertType.FIELD_FILL_DROP,
                    severity=AlertSeverity.WARNING,
                    title=f"{name} fill rate dropped from {round(average)}% to {current}%",
                    details=(
                        f"The '{name}' field was populated in ~{round(average)}% of "
                        f"events on average but is now at {current}%."
                    ),
                    context={'field': name, 'current_rate': current, 'baseline_avg': round(average)},
                ))
        return alerts

    def _check_unmatched_tags(
        self,
        health_input: HealthInput,
        baseline: List[ScrapeLogEntry]
    ) -> Optional[Alert]:
        if not health_input.unmatched_tags:
            return None
        known = {tag for log in baseline for tag in log.unmatched_tags}
        novel = [tag for tag in health_input.unmatched_tags if tag not in known]
        if not novel:
            return None
        return Alert(
            source_id='',
            type=AlertType.UNMATCHED_TAGS,
            severity=AlertSeverity.WARNING,
            title=_plural(len(novel), 'new unmatched kennel tag'),
            details=f"New tags: {', '.join(novel)}. These need an alias on a registered group.",
            context={'tags': novel},
        )

    def _check_blocked_tags(self, health_input: HealthInput) -> Optional[Alert]:
        blocked = health_input.blocked_tags
        if not blocked:
            return None
        return Alert(
            source_id='',
            type=AlertType.SOURCE_KENNEL_MISMATCH,
            severity=AlertSeverity.WARNING,
            title=f"{_plural(len(blocked), 'kennel tag')} blocked: not linked to source",
            details=(
                f"Tags [{', '.join(blocked)}] resolved to registered groups "
                f"that this source is not linked to."
            ),
            context={'tags': list(blocked)},
        )


def persist_alerts(store, source_id: str, scrape_log_id: str, alerts: List[Alert]) -> List[Alert]:
    """
    Store alert candidates without duplicating alerts already raised.

    An OPEN or ACKNOWLEDGED alert of the same type is refreshed in place.
    A SNOOZED one is left alone until its snooze expires, then reopened.

    Args:
        store: Alert persistence
        source_id: Source the alerts belong to
        scrape_log_id: Scrape that produced the alerts
        alerts: Candidates from HealthAnalyzer.analyze

    Returns:
        Alerts that were written (created, refreshed or reopened)
    """
    now = datetime.now(timezone.utc)
    written = []
    for candidate in alerts:
        existing = store.list_alerts(source_id, alert_type=candidate.type)

        active = next(
            (a for a in existing if a.status in (AlertStatus.OPEN, AlertStatus.ACKNOWLEDGED)),
            None
        )
        if active is not None:
            active.details = candidate.details
            active.severity = candidate.severity
            active.context = candidate.context
            active.scrape_log_id = scrape_log_id
            written.append(store.put_alert(active))
            continue

        snoozed = next((a for a in existing if a.status == AlertStatus.SNOOZED), None)
        if snoozed is not None:
            if snoozed.snoozed_until is not None and snoozed.snoozed_until < now:
                snoozed.status = AlertStatus.OPEN
                snoozed.snoozed_until = None
                snoozed.details = candidate.details
                snoozed.severity = candidate.severity
                snoozed.context = candidate.context
                snoozed.scrape_log_id = scrape_log_id
                written.append(store.put_alert(snoozed))
            continue

        candidate.source_id = source_id
        candidate.scrape_log_id = scrape_log_id
        written.append(store.put_alert(candidate))

    if written:
        logger.info(f"Persisted {len(written)} alerts for source {source_id}")
    return written
