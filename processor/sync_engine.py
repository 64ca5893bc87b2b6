"""Merges feed events into the catalog without ever bulk-deleting."""
import logging
import time
from datetime import date
from typing import Callable, Dict, Iterable, List, Optional

from botocore.exceptions import ClientError

from processor.event_processor import EventProcessor
from processor.models import (
    CanonicalEvent,
    CatalogEvent,
    FeedSource,
    MANUAL_SOURCE,
    SourceSyncResult,
    SyncResult,
)
from scraper.base import FeedAdapter, default_window
from scraper.http_client import FeedFetchError
from storage.dynamodb_manager import DynamoDBManager, EventNotFoundError

logger = logging.getLogger(__name__)

# Fields a re-observed event may change; identity and image fields are never among them
MUTABLE_FIELDS = ('description', 'location', 'address', 'start_time', 'end_time', 'external_url')

DEFAULT_SOURCE_TIMEOUT = 45


def changed_fields(stored: CatalogEvent, incoming: CanonicalEvent) -> Dict[str, Optional[str]]:
    """
    Mutable fields whose incoming value differs from the stored one.

    Empty and missing values compare equal.
    """
    changes = {}
    for name in MUTABLE_FIELDS:
        new_value = getattr(incoming, name) or None
        if (getattr(stored, name) or None) != new_value:
            changes[name] = new_value
    return changes


class SyncEngine:
    """
    Upserts events from every configured feed into the catalog.

    Each source is fetched, normalized and merged on its own; a failure in
    one source is recorded in its summary and the run moves on. Events that
    a feed no longer returns are left in place.
    """

    def __init__(
        self,
        store: DynamoDBManager,
        adapter_factory: Callable[[str], FeedAdapter],
        days_back: int = 1,
        days_ahead: int = 365,
        source_timeout: float = DEFAULT_SOURCE_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the engine.

        Args:
            store: Catalog store
            adapter_factory: Returns the feed adapter for a source format
            days_back: Default days before today to keep
            days_ahead: Default days after today to keep
            source_timeout: Seconds one source may spend fetching
            clock: Monotonic clock used for the time budget and fetch deadlines
        """
        self.store = store
        self.adapter_factory = adapter_factory
        self.days_back = days_back
        self.days_ahead = days_ahead
        self.source_timeout = source_timeout
        self.clock = clock

    def sync(
        self,
        sources: Iterable[FeedSource],
        time_budget: Optional[float] = None,
        today: Optional[date] = None,
    ) -> SyncResult:
        """
        Run a sync across sources.

        Args:
            sources: Feed sources to merge; disabled ones are ignored
            time_budget: Seconds available; sources not started in time are skipped
            today: Override for the current date

        Returns:
            SyncResult with one summary per source
        """
        started = self.clock()
        deadline = started + time_budget if time_budget is not None else None
        result = SyncResult()

        for source in sources:
            if not source.enabled:
                logger.info(f"Source {source.name} is disabled, skipping")
                continue
            if deadline is not None and self.clock() >= deadline:
                logger.warning(f"Time budget exhausted before source {source.name}")
                result.sources.append(
                    SourceSyncResult(source=source.name, status='skipped', errors=['time budget exhausted'])
                )
                continue
            result.sources.append(self.sync_source(source, today=today, run_deadline=deadline))

        result.duration_seconds = self.clock() - started
        logger.info(
            f"Sync finished: {result.inserted} inserted, {result.updated} updated, "
            f"{result.unchanged} unchanged, {len(result.failed_sources)} sources failed",
            extra={'failed_sources': result.failed_sources}
        )
        return result

    def fetch_deadline(self, run_deadline: Optional[float] = None) -> float:
        """Deadline for one source's fetch, never later than the run's."""
        deadline = self.clock() + self.source_timeout
        if run_deadline is not None:
            deadline = min(deadline, run_deadline)
        return deadline

    def sync_source(
        self,
        source: FeedSource,
        today: Optional[date] = None,
        run_deadline: Optional[float] = None,
    ) -> SourceSyncResult:
        """Fetch, normalize and merge a single source."""
        summary = SourceSyncResult(source=source.name)

        if source.name == MANUAL_SOURCE:
            logger.error(f"Refusing to sync feed under reserved source tag '{MANUAL_SOURCE}'")
            summary.status = 'failed'
            summary.errors.append(f"reserved source tag '{MANUAL_SOURCE}'")
            return summary

        window = default_window(
            days_back=source.days_back if source.days_back is not None else self.days_back,
            days_ahead=source.days_ahead if source.days_ahead is not None else self.days_ahead,
            today=today,
        )

        try:
            adapter = self.adapter_factory(source.format)
            feed = adapter.fetch_events(source, window, deadline=self.fetch_deadline(run_deadline))
        except FeedFetchError as e:
            logger.error(f"Source {source.name} failed: {e}", extra={'transient': e.transient})
            summary.status = 'failed'
            summary.errors.append(str(e))
            return summary
        except Exception as e:
            logger.error(f"Unexpected error reading source {source.name}: {e}", exc_info=True)
            summary.status = 'failed'
            summary.errors.append(f"{type(e).__name__}: {e}")
            return summary

        for entry in feed.failed_entries:
            logger.warning(f"Skipped entry {entry.reference} from {source.name}: {entry.error}")
        summary.failed_entries = len(feed.failed_entries)

        for raw_event in feed.events:
            if not raw_event.category:
                raw_event.category = source.category
        events = EventProcessor(window).process_events(feed.events, source.name)
        summary.fetched = len(events)

        self.merge_events(events, summary)

        if summary.failed_entries or summary.write_failures:
            summary.status = 'partial'
        logger.info(
            f"Merged {source.name}: {summary.inserted} inserted, {summary.updated} updated, "
            f"{summary.unchanged} unchanged",
            extra={'failed_entries': summary.failed_entries, 'write_failures': summary.write_failures}
        )
        return summary

    def merge_events(self, events: List[CanonicalEvent], summary: SourceSyncResult) -> None:
        """
        Insert new events and update re-observed ones in place.

        Image fields are never part of the changes sent to the store.
        """
        for event in events:
            try:
                self._merge_event(event, summary)
            except (ClientError, EventNotFoundError) as e:
                logger.error(f"Failed to store '{event.title}' on {event.event_date}: {e}")
                summary.write_failures += 1
                summary.errors.append(f"{event.event_id}: {e}")

    def _merge_event(self, event: CanonicalEvent, summary: SourceSyncResult) -> None:
        if self.store.insert_event(event):
            summary.inserted += 1
            return

        stored = self.store.get_event(event.event_id)
        if stored is None:
            # Deleted between the insert attempt and the read
            if self.store.insert_event(event):
                summary.inserted += 1
                return
            raise EventNotFoundError(event.event_id)

        changes = changed_fields(stored, event)
        if not changes:
            summary.unchanged += 1
            return

        self.store.update_event(event.event_id, changes)
        logger.debug(f"Updated {', '.join(sorted(changes))} on '{event.title}'")
        summary.updated += 1
