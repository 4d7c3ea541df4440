"""Reconciliation of scraped events into canonical (group, date) events."""
import hashlib
import logging
from datetime import date, timedelta
from typing import Iterable, Optional, Set, Tuple

from processor.group_resolver import GroupTagResolver
from processor.models import (
    CanonicalEvent,
    EventStatus,
    MergeResult,
    RawEvent,
    Source,
    SourceNotFoundError,
)

logger = logging.getLogger(__name__)

CONTENT_FIELDS = (
    'title',
    'description',
    'hares',
    'location',
    'location_url',
    'start_time',
    'run_number',
)


def generate_fingerprint(raw: RawEvent) -> str:
    """
    Generate a stable identifier for a raw event.

    Args:
        raw: Scraped event

    Returns:
        SHA256 hex digest of the event's fields
    """
    composite = '|'.join(
        '' if value is None else str(value)
        for value in (
            raw.date,
            raw.group_tag,
            raw.title,
            raw.description,
            raw.hares,
            raw.location,
            raw.location_url,
            raw.start_time,
            raw.run_number,
            raw.source_url,
        )
    )
    return hashlib.sha256(composite.encode('utf-8')).hexdigest()


def is_blocked(source: Source, group_id: str) -> bool:
    """True if the source may not write events for this group."""
    if group_id in source.excluded_group_ids:
        return True
    return bool(source.linked_group_ids) and group_id not in source.linked_group_ids


class MergeEngine:
    """Upserts raw events by natural key and propagates source-side deletions."""

    MAX_ERROR_MESSAGES = 50

    def __init__(self, store, resolver: GroupTagResolver):
        """
        Initialize the merge engine.

        Args:
            store: Persistence for canonical events, sightings and raw rows
            resolver: Tag resolver scoped to the current run
        """
        self.store = store
        self.resolver = resolver

    def reconcile(
        self,
        source_id: str,
        raw_events: Iterable[RawEvent],
        days: int = 90,
        source: Optional[Source] = None,
        today: Optional[date] = None,
        cancel_missing: bool = True
    ) -> MergeResult:
        """
        Merge a scrape's raw events into canonical events.

        Re-running with the same input leaves canonical state unchanged and
        reports the same counts, with every previously created event counted
        as updated.

        Args:
            source_id: Source that produced the events
            raw_events: Events returned by the adapter
            days: Window (today +/- days) in which missing events are cancelled
            source: Preloaded source record; read from the store when omitted
            today: Reference date for the cancellation window
            cancel_missing: Cancel events this source stopped listing. Callers turn
                this off when the fetch was incomplete.

        Returns:
            MergeResult with created/updated/skipped/blocked/cancelled counts
        """
        if source is None:
            source = self.store.get_source(source_id)
            if source is None:
                raise SourceNotFoundError(source_id)

        result = MergeResult()
        seen: Set[Tuple[str, str]] = set()

        for raw in raw_events:
            try:
                self._merge_one(source, raw, result, seen)
            except Exception as e:
                logger.warning(
                    f"Failed to merge event {raw.group_tag} on {raw.date}: {e}",
                    extra={'source_id': source.id}
                )
                result.event_errors += 1
                if len(result.event_error_messages) < self.MAX_ERROR_MESSAGES:
                    result.event_error_messages.append(
                        f"{raw.group_tag} {raw.date}: {e}"
                    )

        # a partial batch cannot tell a removed event from one that failed to merge
        if cancel_missing and not result.event_errors:
            self._cancel_missing(source, seen, days, today or date.today(), result)

        logger.info(
            f"Reconciled source {source.id}: {result.created} created, "
            f"{result.updated} updated, {result.skipped} skipped, "
            f"{result.blocked} blocked, {result.cancelled} cancelled"
        )
        return result

    def _merge_one(
        self,
        source: Source,
        raw: RawEvent,
        result: MergeResult,
        seen: Set[Tuple[str, str]]
    ) -> None:
        resolved = self.resolver.resolve(raw.group_tag, source)
        if not resolved.matched:
            result.skipped += 1
            if raw.group_tag not in result.unmatched:
                result.unmatched.append(raw.group_tag)
            self.store.put_raw_event(source.id, generate_fingerprint(raw), raw)
            return

        group_id = resolved.group_id
        if is_blocked(source, group_id):
            result.blocked += 1
            if raw.group_tag not in result.blocked_tags:
                result.blocked_tags.append(raw.group_tag)
            return

        self.store.put_raw_event(source.id, generate_fingerprint(raw), raw, group_id=group_id)

        existing = self.store.get_event(group_id, raw.date)
        if existing is None:
            event = CanonicalEvent(
                group_id=group_id,
                date=raw.date,
                source_url=raw.source_url,
                trust_level=source.trust_level,
                source_ids={source.id},
            )
            self._apply_content(event, raw)
        else:
            event = existing
            event.source_ids.add(source.id)
            if source.trust_level >= event.trust_level:
                self._apply_content(event, raw)
                event.trust_level = source.trust_level
                if not event.source_url:
                    event.source_url = raw.source_url
            if event.status == EventStatus.CANCELLED:
                event.status = EventStatus.CONFIRMED

        self.store.put_event(event)
        self.store.put_sighting(source.id, group_id, raw.date)
        seen.add((group_id, raw.date))
        if existing is None:
            result.created += 1
        else:
            result.updated += 1

    @staticmethod
    def _apply_content(event: CanonicalEvent, raw: RawEvent) -> None:
        for name in CONTENT_FIELDS:
            setattr(event, name, getattr(raw, name))

    def _cancel_missing(
        self,
        source: Source,
        seen: Set[Tuple[str, str]],
        days: int,
        today: date,
        result: MergeResult
    ) -> None:
        """Cancel events this source alone reported that it no longer lists."""
        window_start = (today - timedelta(days=days)).isoformat()
        window_end = (today + timedelta(days=days)).isoformat()

        for group_id, event_date in self.store.list_sightings(source.id):
            if (group_id, event_date) in seen:
                continue
            if not window_start <= event_date <= window_end:
                continue
            event = self.store.get_event(group_id, event_date)
            if event is None or event.status != EventStatus.CONFIRMED:
                continue
            if event.source_ids != {source.id}:
                continue
            event.status = EventStatus.CANCELLED
            self.store.put_event(event)
            result.cancelled += 1
            result.cancelled_event_keys.append(event.key)
            logger.info(f"Cancelled event {event.key} no longer listed by source {source.id}")
