"""Data models for scraped events, sources, scrape logs and alerts."""
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set


class SourceKind(str, Enum):
    """Closed set of source shapes the scraper knows how to read."""
    GOOGLE_SHEETS = 'GOOGLE_SHEETS'
    GOOGLE_CALENDAR = 'GOOGLE_CALENDAR'
    ICAL_FEED = 'ICAL_FEED'
    RSS_FEED = 'RSS_FEED'
    MEETUP = 'MEETUP'
    HASHREGO = 'HASHREGO'
    WORDPRESS_API = 'WORDPRESS_API'
    STATIC_SCHEDULE = 'STATIC_SCHEDULE'


class EventStatus(str, Enum):
    CONFIRMED = 'CONFIRMED'
    TENTATIVE = 'TENTATIVE'
    CANCELLED = 'CANCELLED'


class HealthStatus(str, Enum):
    UNKNOWN = 'UNKNOWN'
    HEALTHY = 'HEALTHY'
    DEGRADED = 'DEGRADED'
    FAILING = 'FAILING'


class ScrapeStatus(str, Enum):
    RUNNING = 'RUNNING'
    SUCCESS = 'SUCCESS'
    FAILED = 'FAILED'


class AlertType(str, Enum):
    SCRAPE_FAILURE = 'SCRAPE_FAILURE'
    CONSECUTIVE_FAILURES = 'CONSECUTIVE_FAILURES'
    EVENT_COUNT_ANOMALY = 'EVENT_COUNT_ANOMALY'
    FIELD_FILL_DROP = 'FIELD_FILL_DROP'
    UNMATCHED_TAGS = 'UNMATCHED_TAGS'
    SOURCE_KENNEL_MISMATCH = 'SOURCE_KENNEL_MISMATCH'


class AlertSeverity(str, Enum):
    INFO = 'INFO'
    WARNING = 'WARNING'
    CRITICAL = 'CRITICAL'


class AlertStatus(str, Enum):
    OPEN = 'OPEN'
    ACKNOWLEDGED = 'ACKNOWLEDGED'
    SNOOZED = 'SNOOZED'
    RESOLVED = 'RESOLVED'


@dataclass(frozen=True)
class RawEvent:
    """Event as read from a source, before group resolution."""
    date: str  # YYYY-MM-DD, no time zone
    group_tag: str
    title: Optional[str] = None
    description: Optional[str] = None
    hares: Optional[str] = None
    location: Optional[str] = None
    location_url: Optional[str] = None
    start_time: Optional[str] = None  # HH:MM local
    run_number: Optional[int] = None
    source_url: Optional[str] = None


@dataclass
class CanonicalEvent:
    """Merged event, unique per (group_id, date)."""
    group_id: str
    date: str
    status: EventStatus = EventStatus.CONFIRMED
    title: Optional[str] = None
    description: Optional[str] = None
    hares: Optional[str] = None
    location: Optional[str] = None
    location_url: Optional[str] = None
    start_time: Optional[str] = None
    run_number: Optional[int] = None
    source_url: Optional[str] = None
    trust_level: int = 5
    source_ids: Set[str] = field(default_factory=set)

    @property
    def key(self) -> str:
        return f"{self.group_id}:{self.date}"


@dataclass
class Group:
    """Registered running group (kennel)."""
    id: str
    short_name: str
    full_name: Optional[str] = None
    aliases: Set[str] = field(default_factory=set)


@dataclass
class Source:
    """One external feed scraped on a schedule."""
    id: str
    kind: SourceKind
    url: str
    name: str = ''
    config: Dict[str, Any] = field(default_factory=dict)
    trust_level: int = 5
    scrape_frequency: str = 'daily'
    scrape_window_days: int = 90
    enabled: bool = True
    health_status: HealthStatus = HealthStatus.UNKNOWN
    last_scrape_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    linked_group_ids: Set[str] = field(default_factory=set)
    excluded_group_ids: Set[str] = field(default_factory=set)


@dataclass
class FillRates:
    """Per-field population percentages (0-100) for a batch of events."""
    title: int = 0
    location: int = 0
    hares: int = 0
    start_time: int = 0
    run_number: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class ScrapeLogEntry:
    """Record of one scrape run. Append-only."""
    id: str
    source_id: str
    started_at: datetime
    status: ScrapeStatus = ScrapeStatus.RUNNING
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    forced: bool = False
    events_found: int = 0
    events_created: int = 0
    events_updated: int = 0
    events_skipped: int = 0
    events_blocked: int = 0
    events_cancelled: int = 0
    unmatched_tags: List[str] = field(default_factory=list)
    fill_rates: Optional[FillRates] = None
    errors: List[str] = field(default_factory=list)


@dataclass
class Alert:
    """Operator-facing alert raised by health analysis."""
    source_id: str
    type: AlertType
    severity: AlertSeverity
    title: str
    details: str = ''
    context: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None
    scrape_log_id: Optional[str] = None
    status: AlertStatus = AlertStatus.OPEN
    snoozed_until: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class ResolveResult:
    matched: bool
    group_id: Optional[str] = None


@dataclass
class MergeResult:
    """Counts produced by one reconcile pass."""
    created: int = 0
    updated: int = 0
    skipped: int = 0
    blocked: int = 0
    cancelled: int = 0
    unmatched: List[str] = field(default_factory=list)
    blocked_tags: List[str] = field(default_factory=list)
    cancelled_event_keys: List[str] = field(default_factory=list)
    event_errors: int = 0
    event_error_messages: List[str] = field(default_factory=list)


@dataclass
class ScrapeOutcome:
    """Consolidated result of scraping one source."""
    source_id: str
    success: bool
    scrape_log_id: Optional[str] = None
    forced: bool = False
    events_found: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    blocked: int = 0
    cancelled: int = 0
    unmatched: List[str] = field(default_factory=list)
    blocked_tags: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    health_status: HealthStatus = HealthStatus.UNKNOWN
    fill_rates: Optional[FillRates] = None

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-serializable representation."""
        data = asdict(self)
        data['health_status'] = self.health_status.value
        return data


class SourceNotFoundError(LookupError):
    """Raised when a source id does not exist in the store."""
