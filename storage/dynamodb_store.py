"""DynamoDB persistence for sources, groups, events, scrape logs and alerts."""
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Tuple

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from processor.models import (
    Alert,
    AlertSeverity,
    AlertStatus,
    AlertType,
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

logger = logging.getLogger(__name__)

META = 'META'


def _source_pk(source_id: str) -> str:
    return f"SOURCE#{source_id}"


def _group_pk(group_id: str) -> str:
    return f"GROUP#{group_id}"


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _optional_int(value: Any) -> Optional[int]:
    return int(value) if value is not None else None


def _compact(item: Dict[str, Any]) -> Dict[str, Any]:
    """Drop attributes DynamoDB cannot store or that carry no value."""
    return {
        key: value for key, value in item.items()
        if value is not None and value != '' and value != []
    }


class DynamoDBStore:
    """Single-table store keyed by pk/sk string attributes."""

    LOG_PAGE_SIZE = 50

    def __init__(self, table_name: str, dynamodb_resource=None):
        """
        Initialize DynamoDB resource and table reference.

        Args:
            table_name: Name of the DynamoDB table
            dynamodb_resource: Optional pre-built boto3 resource
        """
        self.table_name = table_name
        self.dynamodb = dynamodb_resource or boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBStore for table: {table_name}")

    # Generic helpers

    def _iter_query(self, **kwargs) -> Iterator[Dict[str, Any]]:
        response = self.table.query(**kwargs)
        yield from response.get('Items', [])
        while 'LastEvaluatedKey' in response:
            response = self.table.query(
                ExclusiveStartKey=response['LastEvaluatedKey'],
                **kwargs
            )
            yield from response.get('Items', [])

    def _scan_entities(self, entity_type: str) -> List[Dict[str, Any]]:
        try:
            response = self.table.scan(
                FilterExpression=Attr('entity_type').eq(entity_type)
            )
            items = response.get('Items', [])
            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    FilterExpression=Attr('entity_type').eq(entity_type),
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                items.extend(response.get('Items', []))
            return items
        except ClientError as e:
            logger.error(f"Error scanning {entity_type} items: {e}")
            raise

    def _get(self, pk: str, sk: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.table.get_item(Key={'pk': pk, 'sk': sk})
        except ClientError as e:
            logger.error(f"Error reading item {pk}/{sk}: {e}")
            raise
        return response.get('Item')

    def _put(self, item: Dict[str, Any]) -> None:
        try:
            self.table.put_item(Item=_compact(item))
        except ClientError as e:
            logger.error(f"Error writing item {item.get('pk')}/{item.get('sk')}: {e}")
            raise

    # Groups

    def put_group(self, group: Group) -> None:
        self._put({
            'pk': _group_pk(group.id),
            'sk': META,
            'entity_type': 'group',
            'id': group.id,
            'short_name': group.short_name,
            'full_name': group.full_name,
            'aliases': sorted(group.aliases),
        })

    def list_groups(self) -> List[Group]:
        return [
            Group(
                id=item['id'],
                short_name=item['short_name'],
                full_name=item.get('full_name'),
                aliases=set(item.get('aliases', [])),
            )
            for item in self._scan_entities('group')
        ]

    # Sources

    def put_source(self, source: Source) -> None:
        self._put({
            'pk': _source_pk(source.id),
            'sk': META,
            'entity_type': 'source',
            'id': source.id,
            'kind': source.kind.value,
            'url': source.url,
            'name': source.name,
            'config': json.dumps(source.config or {}),
            'trust_level': source.trust_level,
            'scrape_frequency': source.scrape_frequency,
            'scrape_window_days': source.scrape_window_days,
            'enabled': source.enabled,
            'health_status': source.health_status.value,
            'last_scrape_at': _to_iso(source.last_scrape_at),
            'last_success_at': _to_iso(source.last_success_at),
            'linked_group_ids': sorted(source.linked_group_ids),
            'excluded_group_ids': sorted(source.excluded_group_ids),
        })

    def _item_to_source(self, item: Dict[str, Any]) -> Source:
        return Source(
            id=item['id'],
            kind=SourceKind(item['kind']),
            url=item.get('url', ''),
            name=item.get('name', ''),
            config=json.loads(item.get('config') or '{}'),
            trust_level=int(item.get('trust_level', 5)),
            scrape_frequency=item.get('scrape_frequency', 'daily'),
            scrape_window_days=int(item.get('scrape_window_days', 90)),
            enabled=bool(item.get('enabled', True)),
            health_status=HealthStatus(item.get('health_status', HealthStatus.UNKNOWN.value)),
            last_scrape_at=_from_iso(item.get('last_scrape_at')),
            last_success_at=_from_iso(item.get('last_success_at')),
            linked_group_ids=set(item.get('linked_group_ids', [])),
            excluded_group_ids=set(item.get('excluded_group_ids', [])),
        )

    def get_source(self, source_id: str) -> Optional[Source]:
        item = self._get(_source_pk(source_id), META)
        return self._item_to_source(item) if item else None

    def list_sources(self, enabled_only: bool = False) -> List[Source]:
        sources = [self._item_to_source(item) for item in self._scan_entities('source')]
        if enabled_only:
            sources = [source for source in sources if source.enabled]
        return sorted(sources, key=lambda source: source.id)

    def update_source_health(
        self,
        source_id: str,
        health_status: HealthStatus,
        last_scrape_at: datetime,
        last_success_at: Optional[datetime] = None
    ) -> None:
        """
        Record the outcome of a scrape on the source row.

        Args:
            source_id: Source to update
            health_status: New health status
            last_scrape_at: When the scrape ran
            last_success_at: Set only when the scrape succeeded
        """
        expression = 'SET health_status = :h, last_scrape_at = :s'
        values: Dict[str, Any] = {
            ':h': health_status.value,
            ':s': _to_iso(last_scrape_at),
        }
        if last_success_at is not None:
            expression += ', last_success_at = :ok'
            values[':ok'] = _to_iso(last_success_at)
        try:
            self.table.update_item(
                Key={'pk': _source_pk(source_id), 'sk': META},
                UpdateExpression=expression,
                ExpressionAttributeValues=values
            )
        except ClientError as e:
            logger.error(f"Error updating health for source {source_id}: {e}")
            raise

    # Canonical events

    def _item_to_event(self, item: Dict[str, Any]) -> CanonicalEvent:
        return CanonicalEvent(
            group_id=item['group_id'],
            date=item['date'],
            status=EventStatus(item.get('status', EventStatus.CONFIRMED.value)),
            title=item.get('title'),
            description=item.get('description'),
            hares=item.get('hares'),
            location=item.get('location'),
            location_url=item.get('location_url'),
            start_time=item.get('start_time'),
            run_number=_optional_int(item.get('run_number')),
            source_url=item.get('source_url'),
            trust_level=int(item.get('trust_level', 5)),
            source_ids=set(item.get('source_ids', [])),
        )

    def get_event(self, group_id: str, date: str) -> Optional[CanonicalEvent]:
        item = self._get(_group_pk(group_id), f"EVENT#{date}")
        return self._item_to_event(item) if item else None

    def put_event(self, event: CanonicalEvent) -> None:
        self._put({
            'pk': _group_pk(event.group_id),
            'sk': f"EVENT#{event.date}",
            'entity_type': 'event',
            'group_id': event.group_id,
            'date': event.date,
            'status': event.status.value,
            'title': event.title,
            'description': event.description,
            'hares': event.hares,
            'location': event.location,
            'location_url': event.location_url,
            'start_time': event.start_time,
            'run_number': event.run_number,
            'source_url': event.source_url,
            'trust_level': event.trust_level,
            'source_ids': sorted(event.source_ids),
        })

    def list_events(self, group_id: str, start: str, end: str) -> List[CanonicalEvent]:
        """List a group's events with start <= date <= end (YYYY-MM-DD)."""
        items = self._iter_query(
            KeyConditionExpression=Key('pk').eq(_group_pk(group_id))
            & Key('sk').between(f"EVENT#{start}", f"EVENT#{end}")
        )
        return [self._item_to_event(item) for item in items]

    # Source sightings: which (group, date) keys a source has reported

    def put_sighting(self, source_id: str, group_id: str, date: str) -> None:
        self._put({
            'pk': _source_pk(source_id),
            'sk': f"SEEN#{group_id}#{date}",
            'entity_type': 'sighting',
            'group_id': group_id,
            'date': date,
        })

    def list_sightings(self, source_id: str) -> List[Tuple[str, str]]:
        items = self._iter_query(
            KeyConditionExpression=Key('pk').eq(_source_pk(source_id))
            & Key('sk').begins_with('SEEN#')
        )
        return [(item['group_id'], item['date']) for item in items]

    # Raw events

    def put_raw_event(
        self,
        source_id: str,
        fingerprint: str,
        raw: RawEvent,
        group_id: Optional[str] = None
    ) -> None:
        self._put({
            'pk': _source_pk(source_id),
            'sk': f"RAW#{fingerprint}",
            'entity_type': 'raw_event',
            'fingerprint': fingerprint,
            'group_id': group_id,
            'processed': group_id is not None,
            'raw_data': json.dumps(raw.__dict__, sort_keys=True),
        })

    def list_raw_fingerprints(self, source_id: str) -> List[str]:
        items = self._iter_query(
            KeyConditionExpression=Key('pk').eq(_source_pk(source_id))
            & Key('sk').begins_with('RAW#')
        )
        return [item['fingerprint'] for item in items]

    def delete_raw_events(self, source_id: str) -> int:
        """
        Delete every stored raw event for a source.

        Args:
            source_id: Source whose raw rows are removed

        Returns:
            Count of deleted rows
        """
        fingerprints = self.list_raw_fingerprints(source_id)
        if not fingerprints:
            return 0
        try:
            with self.table.batch_writer() as writer:
                for fingerprint in fingerprints:
                    writer.delete_item(
                        Key={'pk': _source_pk(source_id), 'sk': f"RAW#{fingerprint}"}
                    )
        except ClientError as e:
            logger.error(f"Error deleting raw events for source {source_id}: {e}")
            raise
        logger.info(f"Deleted {len(fingerprints)} raw events for source {source_id}")
        return len(fingerprints)

    # Scrape logs

    def put_scrape_log(self, entry: ScrapeLogEntry) -> None:
        self._put({
            'pk': _source_pk(entry.source_id),
            'sk': f"LOG#{_to_iso(entry.started_at)}#{entry.id}",
            'entity_type': 'scrape_log',
            'id': entry.id,
            'source_id': entry.source_id,
            'started_at': _to_iso(entry.started_at),
            'completed_at': _to_iso(entry.completed_at),
            'duration_ms': entry.duration_ms,
            'status': entry.status.value,
            'forced': entry.forced,
            'events_found': entry.events_found,
            'events_created': entry.events_created,
            'events_updated': entry.events_updated,
            'events_skipped': entry.events_skipped,
            'events_blocked': entry.events_blocked,
            'events_cancelled': entry.events_cancelled,
            'unmatched_tags': list(entry.unmatched_tags),
            'fill_rates': entry.fill_rates.as_dict() if entry.fill_rates else None,
            'errors': list(entry.errors),
        })

    def _item_to_log(self, item: Dict[str, Any]) -> ScrapeLogEntry:
        fill_rates = item.get('fill_rates')
        return ScrapeLogEntry(
            id=item['id'],
            source_id=item['source_id'],
            started_at=_from_iso(item['started_at']),
            completed_at=_from_iso(item.get('completed_at')),
            duration_ms=_optional_int(item.get('duration_ms')),
            status=ScrapeStatus(item['status']),
            forced=bool(item.get('forced', False)),
            events_found=int(item.get('events_found', 0)),
            events_created=int(item.get('events_created', 0)),
            events_updated=int(item.get('events_updated', 0)),
            events_skipped=int(item.get('events_skipped', 0)),
            events_blocked=int(item.get('events_blocked', 0)),
            events_cancelled=int(item.get('events_cancelled', 0)),
            unmatched_tags=list(item.get('unmatched_tags', [])),
            fill_rates=FillRates(**{k: int(v) for k, v in fill_rates.items()}) if fill_rates else None,
            errors=list(item.get('errors', [])),
        )

    def recent_scrape_logs(
        self,
        source_id: str,
        limit: int,
        status: Optional[ScrapeStatus] = None,
        exclude_log_id: Optional[str] = None
    ) -> List[ScrapeLogEntry]:
        """
        Fetch the most recent scrape logs for a source, newest first.

        Args:
            source_id: Source to read
            limit: Maximum number of entries
            status: Only entries with this status, if given
            exclude_log_id: Entry to leave out (usually the current run)

        Returns:
            List of ScrapeLogEntry objects
        """
        logs: List[ScrapeLogEntry] = []
        if limit <= 0:
            return logs
        items = self._iter_query(
            KeyConditionExpression=Key('pk').eq(_source_pk(source_id))
            & Key('sk').begins_with('LOG#'),
            ScanIndexForward=False,
            Limit=self.LOG_PAGE_SIZE
        )
        for item in items:
            if item['id'] == exclude_log_id:
                continue
            if status is not None and item['status'] != status.value:
                continue
            logs.append(self._item_to_log(item))
            if len(logs) >= limit:
                break
        return logs

    # Alerts

    def put_alert(self, alert: Alert) -> Alert:
        """Insert or overwrite an alert, assigning an id on first write."""
        now = datetime.now(timezone.utc)
        if alert.id is None:
            alert.id = uuid.uuid4().hex
            alert.created_at = alert.created_at or now
        alert.updated_at = now
        self._put({
            'pk': _source_pk(alert.source_id),
            'sk': f"ALERT#{alert.id}",
            'entity_type': 'alert',
            'id': alert.id,
            'source_id': alert.source_id,
            'scrape_log_id': alert.scrape_log_id,
            'type': alert.type.value,
            'severity': alert.severity.value,
            'status': alert.status.value,
            'title': alert.title,
            'details': alert.details,
            'context': json.dumps(alert.context, sort_keys=True),
            'snoozed_until': _to_iso(alert.snoozed_until),
            'created_at': _to_iso(alert.created_at),
            'updated_at': _to_iso(alert.updated_at),
        })
        return alert

    def list_alerts(
        self,
        source_id: str,
        alert_type: Optional[AlertType] = None
    ) -> List[Alert]:
        items = self._iter_query(
            KeyConditionExpression=Key('pk').eq(_source_pk(source_id))
            & Key('sk').begins_with('ALERT#')
        )
        alerts = []
        for item in items:
            if alert_type is not None and item['type'] != alert_type.value:
                continue
            alerts.append(Alert(
                id=item['id'],
                source_id=item['source_id'],
                scrape_log_id=item.get('scrape_log_id'),
                type=AlertType(item['type']),
                severity=AlertSeverity(item['severity']),
                status=AlertStatus(item['status']),
                title=item['title'],
                details=item.get('details', ''),
                context=json.loads(item.get('context') or '{}'),
                snoozed_until=_from_iso(item.get('snoozed_until')),
                created_at=_from_iso(item.get('created_at')),
                updated_at=_from_iso(item.get('updated_at')),
            ))
        return sorted(alerts, key=lambda alert: alert.created_at or datetime.min.replace(tzinfo=timezone.utc))
