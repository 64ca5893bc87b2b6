"""
Task handlers shared by scheduled and manual triggers.

Every task takes the invocation settings, the seconds it may run and the
request parameters, and returns a JSON-serializable result. The scheduled
rule and the manual endpoint call the same function.
"""
import logging
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Optional

from processor.catalog_view import to_presentation
from processor.event_processor import EventProcessor
from processor.image_expiration import ImageExpirationWorker
from processor.image_population import ImagePopulationWorker
from processor.sync_engine import SyncEngine
from scheduler.config import Settings
from scraper.http_client import FeedFetcher
from scraper.photo_search import UnsplashClient
from scraper.registry import get_adapter
from storage.asset_store import S3AssetStore
from storage.dynamodb_manager import DynamoDBManager
from storage.image_cache import build_image_cache

logger = logging.getLogger(__name__)

DEFAULT_TASK = 'sync_feeds'

TaskFunction = Callable[[Settings, Optional[float], Dict[str, Any]], Dict[str, Any]]
TASKS: Dict[str, TaskFunction] = {}


class InvalidRequestError(ValueError):
    """Raised when a manual request carries invalid parameters."""


def task(name: str) -> Callable[[TaskFunction], TaskFunction]:
    def register(func: TaskFunction) -> TaskFunction:
        TASKS[name] = func
        return func
    return register


def build_store(settings: Settings) -> DynamoDBManager:
    return DynamoDBManager(table_name=settings.table_name)


def build_population_worker(settings: Settings) -> ImagePopulationWorker:
    photo_client = None
    if settings.unsplash_access_key:
        photo_client = UnsplashClient(settings.unsplash_access_key)
    return ImagePopulationWorker(
        store=build_store(settings),
        asset_store=S3AssetStore(settings.asset_bucket, base_url=settings.asset_base_url),
        cache=build_image_cache(settings.image_cache_table, ttl_days=settings.image_cache_days),
        photo_client=photo_client,
        hourly_quota=settings.unsplash_hourly_quota,
        batch_size=settings.population_batch_size,
    )


def select_sources(settings: Settings, names: Optional[List[str]]):
    """
    Configured sources, optionally restricted to the given names.

    Raises:
        InvalidRequestError: If a requested name is not configured
    """
    if not names:
        return settings.feed_sources
    if isinstance(names, str):
        names = [name.strip() for name in names.split(',') if name.strip()]

    configured = {source.name: source for source in settings.feed_sources}
    unknown = [name for name in names if name not in configured]
    if unknown:
        raise InvalidRequestError(f"Unknown feed sources: {', '.join(unknown)}")
    return [configured[name] for name in names]


@task('sync_feeds')
def sync_feeds(settings: Settings, time_budget: Optional[float], params: Dict[str, Any]) -> Dict[str, Any]:
    sources = select_sources(settings, params.get('sources'))
    fetcher = FeedFetcher(timeout=settings.timeout_seconds)
    engine = SyncEngine(
        store=build_store(settings),
        adapter_factory=lambda feed_format: get_adapter(
            feed_format, fetcher=fetcher, timezone=settings.catalog_timezone
        ),
        days_back=settings.days_back,
        days_ahead=settings.days_ahead,
        source_timeout=settings.source_timeout_seconds,
    )
    return engine.sync(sources, time_budget=time_budget).to_dict()


@task('populate_images')
def populate_images(settings: Settings, time_budget: Optional[float], params: Dict[str, Any]) -> Dict[str, Any]:
    return build_population_worker(settings).populate(time_budget=time_budget).to_dict()


@task('upgrade_gradients')
def upgrade_gradients(settings: Settings, time_budget: Optional[float], params: Dict[str, Any]) -> Dict[str, Any]:
    return build_population_worker(settings).upgrade_gradients(time_budget=time_budget).to_dict()


@task('repair_image_fields')
def repair_image_fields(settings: Settings, time_budget: Optional[float], params: Dict[str, Any]) -> Dict[str, Any]:
    return build_population_worker(settings).repair_image_fields().to_dict()


@task('expire_images')
def expire_images(settings: Settings, time_budget: Optional[float], params: Dict[str, Any]) -> Dict[str, Any]:
    worker = ImageExpirationWorker(build_store(settings), grace_days=settings.image_grace_days)
    return worker.expire().to_dict()


@task('list_events')
def list_events(settings: Settings, time_budget: Optional[float], params: Dict[str, Any]) -> Dict[str, Any]:
    """Catalog events from a day ago onward, each with a guaranteed header image."""
    from_date = str(params.get('from_date') or (date.today() - timedelta(days=1)).isoformat())
    if EventProcessor().normalize_date(from_date) != from_date:
        raise InvalidRequestError(f"from_date must be YYYY-MM-DD, got {from_date!r}")

    events = [to_presentation(event) for event in build_store(settings).list_events(from_date)]
    return {'count': len(events), 'from_date': from_date, 'events': events}


@task('create_event')
def create_event(settings: Settings, time_budget: Optional[float], params: Dict[str, Any]) -> Dict[str, Any]:
    """Store a hand-entered event under the manual source tag."""
    title = (params.get('title') or '').strip()
    if not title:
        raise InvalidRequestError('Missing title')

    processor = EventProcessor()
    event_date = processor.normalize_date(str(params.get('date') or ''))
    if not event_date:
        raise InvalidRequestError(f"Missing or unreadable date: {params.get('date')!r}")

    start_time = None
    if params.get('start_time'):
        start_time = processor.normalize_time(str(params['start_time']))
        if start_time is None:
            raise InvalidRequestError(f"Unreadable start_time: {params['start_time']!r}")

    event = build_store(settings).create_manual_event(
        title=title,
        event_date=event_date,
        start_time=start_time,
        location=params.get('location') or '',
        address=params.get('address') or '',
        description=params.get('description') or '',
        category=params.get('category') or 'Community',
        external_url=params.get('external_url') or None,
    )
    return {'event': to_presentation(event)}


@task('delete_event')
def delete_event(settings: Settings, time_budget: Optional[float], params: Dict[str, Any]) -> Dict[str, Any]:
    event_id = params.get('event_id')
    if not event_id:
        raise InvalidRequestError('Missing event_id')
    return {'event_id': event_id, 'deleted': build_store(settings).delete_event(event_id)}


def run_task(name: str, settings: Settings, time_budget: Optional[float] = None,
             params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Run a registered task.

    Raises:
        KeyError: If no task has this name
    """
    func = TASKS[name]
    logger.info(f"Running task {name}", extra={'time_budget': time_budget})
    return func(settings, time_budget, params or {})
