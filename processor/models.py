"""Data models for event catalog synchronization."""
from dataclasses import dataclass, field, asdict
from datetime import date
from typing import Optional, List, Dict, Any


MANUAL_SOURCE = 'manual'

IMAGE_TYPE_IMAGE = 'image'
IMAGE_TYPE_GRADIENT = 'gradient'

FEED_FORMATS = ('ical', 'rss', 'tribe_json', 'html_event_pages')


@dataclass
class FeedSource:
    """Descriptor of one external event feed."""
    name: str
    url: str
    format: str
    category: str = 'Community'
    enabled: bool = True
    days_back: Optional[int] = None
    days_ahead: Optional[int] = None


@dataclass
class SyncWindow:
    """Inclusive date range of occurrences a sync run keeps."""
    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


@dataclass
class RawEvent:
    """Event as read from a feed, before normalization."""
    title: str
    date: str
    start_time: Optional[str]
    end_time: Optional[str]
    location: str
    description: str
    category: str
    url: Optional[str]
    address: str = ''


@dataclass
class CanonicalEvent:
    """Normalized, source-agnostic event occurrence."""
    event_id: str
    title: str
    normalized_title: str
    event_date: str
    start_time: Optional[str]
    end_time: Optional[str]
    location: str
    address: str
    description: str
    category: str
    source: str
    external_url: Optional[str]


@dataclass
class CatalogEvent:
    """Event as persisted in the catalog table."""
    event_id: str
    title: str
    normalized_title: str
    event_date: str
    start_time: Optional[str]
    end_time: Optional[str]
    location: str
    address: str
    description: str
    category: str
    source: str
    external_url: Optional[str]
    created_at: str
    last_updated: int
    image_url: Optional[str] = None
    image_type: Optional[str] = None
    image_fingerprint: Optional[str] = None


@dataclass
class FailedEntry:
    """A single feed entry that could not be parsed."""
    reference: str
    error: str


@dataclass
class FeedResult:
    """Events fetched from one source plus the entries that failed."""
    source: str
    events: List[RawEvent] = field(default_factory=list)
    failed_entries: List[FailedEntry] = field(default_factory=list)


@dataclass
class SourceSyncResult:
    """Outcome of merging one source into the catalog."""
    source: str
    status: str = 'ok'
    fetched: int = 0
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    failed_entries: int = 0
    write_failures: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class SyncResult:
    """Result of a sync run across all configured sources."""
    sources: List[SourceSyncResult] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def inserted(self) -> int:
        return sum(s.inserted for s in self.sources)

    @property
    def updated(self) -> int:
        return sum(s.updated for s in self.sources)

    @property
    def unchanged(self) -> int:
        return sum(s.unchanged for s in self.sources)

    @property
    def failed_sources(self) -> List[str]:
        return [s.source for s in self.sources if s.status == 'failed']

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sources': [asdict(s) for s in self.sources],
            'totals': {
                'sources_processed': len(self.sources),
                'sources_failed': len(self.failed_sources),
                'events_fetched': sum(s.fetched for s in self.sources),
                'events_inserted': self.inserted,
                'events_updated': self.updated,
                'events_unchanged': self.unchanged,
                'failed_entries': sum(s.failed_entries for s in self.sources),
                'write_failures': sum(s.write_failures for s in self.sources),
            },
            'duration_seconds': round(self.duration_seconds, 2),
        }


@dataclass
class PopulationResult:
    """Result of an image population pass."""
    selected: int = 0
    images_assigned: int = 0
    gradients_assigned: int = 0
    no_image: int = 0
    already_set: int = 0
    repaired: int = 0
    failed: int = 0
    cache_hits: int = 0
    api_calls: int = 0
    stopped_reason: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ExpirationResult:
    """Result of an image expiration pass."""
    cutoff_date: str
    expired: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ImageCacheEntry:
    """Cached photo-search answer for one keyword."""
    keyword: str
    url: str
    cached_at: int
    expires_at: int
