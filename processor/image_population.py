"""Worker that fills missing event header images from photo search."""
import logging
import time
from datetime import date
from typing import Callable, List, Optional

from botocore.exceptions import ClientError

from processor.image_keywords import extract_search_keywords, is_gradient_string
from processor.models import (
    CatalogEvent,
    IMAGE_TYPE_GRADIENT,
    IMAGE_TYPE_IMAGE,
    PopulationResult,
)
from scraper.photo_search import PhotoSearchError, QuotaExceededError, UnsplashClient
from storage.asset_store import AssetStorageError, S3AssetStore
from storage.dynamodb_manager import DynamoDBManager, EventNotFoundError
from storage.image_cache import ImageCache

logger = logging.getLogger(__name__)


class TimeBudgetExhausted(Exception):
    """The next photo-search request would start after the run deadline."""


class ImagePopulationWorker:
    """
    Assigns header images to catalog events.

    Requests to the photo API are sequential with a fixed delay of
    ``3600 / hourly_quota`` seconds between them. Each event's image_url
    and image_type are written in one update, so a run cut short leaves
    every unprocessed event selectable by the next run.
    """

    def __init__(
        self,
        store: DynamoDBManager,
        asset_store: S3AssetStore,
        cache: ImageCache,
        photo_client: Optional[UnsplashClient] = None,
        hourly_quota: int = 50,
        batch_size: int = 100,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.asset_store = asset_store
        self.cache = cache
        self.photo_client = photo_client
        self.request_delay = 3600.0 / max(hourly_quota, 1)
        self.batch_size = batch_size
        self.sleep = sleep
        self.clock = clock
        self._last_request_at = None

    def populate(self, time_budget: Optional[float] = None, today: Optional[date] = None) -> PopulationResult:
        """
        Process upcoming events that have no image yet.

        Without a photo-search credential every selected event is marked
        with the gradient fallback type instead.

        Args:
            time_budget: Seconds available before the run must stop
            today: Override for the current date

        Returns:
            PopulationResult with per-outcome counts
        """
        today = (today or date.today()).isoformat()
        events = self.store.events_missing_images(today, limit=self.batch_size)
        logger.info(f"Selected {len(events)} events without images")

        if self.photo_client is None:
            logger.warning("No photo search credential configured; assigning gradient fallbacks")
            return self._assign_gradients(events)

        return self._process(events, self._deadline(time_budget))

    def upgrade_gradients(self, time_budget: Optional[float] = None, today: Optional[date] = None) -> PopulationResult:
        """Replace gradient fallbacks on upcoming events with real images."""
        today = (today or date.today()).isoformat()
        events = self.store.events_with_gradients(today, limit=self.batch_size)
        logger.info(f"Selected {len(events)} gradient events for upgrade")

        if self.photo_client is None:
            return PopulationResult(selected=len(events), stopped_reason='no_credentials')

        return self._process(events, self._deadline(time_budget))

    def repair_image_fields(self) -> PopulationResult:
        """
        Fix legacy image fields.

        Gradient strings stored in image_url are removed, so the event is
        selected again by ``populate``. Untyped http URLs are typed as images,
        which also fingerprints them.
        """
        events = self.store.events_with_legacy_image_fields()
        result = PopulationResult(selected=len(events))

        for event in events:
            if is_gradient_string(event.image_url):
                changes = {'image_url': None, 'image_type': None}
            else:
                changes = {'image_url': event.image_url, 'image_type': IMAGE_TYPE_IMAGE}
            try:
                self.store.update_event(event.event_id, changes)
                result.repaired += 1
            except (ClientError, EventNotFoundError) as e:
                logger.error(f"Failed to repair image fields of {event.event_id}: {e}")
                result.failed += 1
                result.errors.append(f"{event.event_id}: {e}")

        logger.info(f"Repaired image fields on {result.repaired} of {len(events)} events")
        return result

    def _deadline(self, time_budget: Optional[float]) -> Optional[float]:
        return self.clock() + time_budget if time_budget is not None else None

    def _assign_gradients(self, events: List[CatalogEvent]) -> PopulationResult:
        result = PopulationResult(selected=len(events))
        for event in events:
            try:
                stored = self.store.update_event(event.event_id, {'image_type': IMAGE_TYPE_GRADIENT})
            except (ClientError, EventNotFoundError) as e:
                logger.error(f"Failed to mark gradient for {event.event_id}: {e}")
                result.failed += 1
                result.errors.append(f"{event.event_id}: {e}")
                continue
            if stored.image_type == IMAGE_TYPE_GRADIENT:
                result.gradients_assigned += 1
            else:
                result.already_set += 1
        return result

    def _process(self, events: List[CatalogEvent], deadline: Optional[float]) -> PopulationResult:
        result = PopulationResult(selected=len(events))
        purged = self.cache.purge_expired()
        if purged:
            logger.info(f"Purged {purged} expired image cache entries")

        for event in events:
            if deadline is not None and self.clock() >= deadline:
                result.stopped_reason = 'time_budget'
                logger.warning(
                    f"Time budget exhausted; {result.selected - self._handled(result)} events left for next run"
                )
                break
            try:
                self._populate_event(event, result, deadline)
            except TimeBudgetExhausted:
                result.stopped_reason = 'time_budget'
                logger.warning(
                    f"Time budget does not cover the next request; "
                    f"{result.selected - self._handled(result)} events left for next run"
                )
                break
            except QuotaExceededError as e:
                result.stopped_reason = 'quota_exhausted'
                logger.warning(f"Stopping image population: {e}")
                break

        logger.info(
            f"Image population finished: {result.images_assigned} assigned, "
            f"{result.no_image} without image, {result.failed} failed",
            extra={'api_calls': result.api_calls, 'cache_hits': result.cache_hits}
        )
        return result

    @staticmethod
    def _handled(result: PopulationResult) -> int:
        return result.images_assigned + result.no_image + result.already_set + result.failed

    def _search(self, keywords: str, result: PopulationResult, deadline: Optional[float] = None) -> Optional[str]:
        cached = self.cache.get(keywords)
        if cached:
            result.cache_hits += 1
            return cached

        wait = 0.0
        if self._last_request_at is not None:
            wait = max(self.request_delay - (self.clock() - self._last_request_at), 0.0)
        if deadline is not None and self.clock() + wait >= deadline:
            raise TimeBudgetExhausted()
        if wait > 0:
            self.sleep(wait)
        self._last_request_at = self.clock()
        result.api_calls += 1

        url = self.photo_client.search(keywords)
        if url:
            self.cache.put(keywords, url)
        return url

    def _populate_event(self, event: CatalogEvent, result: PopulationResult,
                        deadline: Optional[float] = None) -> None:
        keywords = extract_search_keywords(event)
        title = event.title[:30]

        try:
            photo_url = self._search(keywords, result, deadline)
            if not photo_url:
                logger.info(f"No photo found for '{title}' (keywords: {keywords})")
                result.no_image += 1
                return
            image = self.photo_client.download(photo_url)
        except QuotaExceededError:
            raise
        except PhotoSearchError as e:
            logger.warning(f"No image for '{title}' this run: {e}")
            result.no_image += 1
            return

        try:
            stored_url = self.asset_store.store_image(
                event.event_id, image.content, image.content_type, image.source_url
            )
            stored = self.store.update_event(
                event.event_id,
                {'image_url': stored_url, 'image_type': IMAGE_TYPE_IMAGE}
            )
        except (AssetStorageError, ClientError, EventNotFoundError) as e:
            logger.error(f"Failed to store image for '{title}': {e}")
            result.failed += 1
            result.errors.append(f"{event.event_id}: {e}")
            return

        if stored.image_url == stored_url:
            logger.info(f"Stored image for '{title}'")
            result.images_assigned += 1
        else:
            logger.info(f"'{title}' already had an image; kept the existing one")
            result.already_set += 1
