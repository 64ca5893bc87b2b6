"""Runtime settings and feed-source configuration read from the environment."""
import json
import logging
import os
from urllib.parse import urlparse
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from processor.models import FEED_FORMATS, FeedSource, MANUAL_SOURCE

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when settings or a feed-source entry are invalid."""


DEFAULT_FEED_SOURCES = [
    {
        'name': 'San Diego Museum of Art',
        'url': 'https://www.sdmart.org/?post_type=tribe_events&ical=1&eventDisplay=list',
        'format': 'ical',
        'category': 'Arts',
    },
    {
        'name': 'Think Play Create',
        'url': 'https://thinkplaycreate.org/?post_type=tribe_events&ical=1&eventDisplay=list',
        'format': 'ical',
        'category': 'Kids',
    },
    {
        'name': 'Voice of San Diego',
        'url': 'https://voiceofsandiego.org/wp-json/tribe/events/v1/events',
        'format': 'tribe_json',
        'category': 'Community',
    },
    {
        'name': 'KPBS',
        'url': 'https://www.kpbs.org/events/',
        'format': 'html_event_pages',
        'category': 'Community',
    },
]


def parse_feed_source(entry: Mapping[str, Any]) -> FeedSource:
    """
    Build a FeedSource from a configuration entry.

    Raises:
        ConfigurationError: If the entry is missing a name or url, names an
            unknown format, or uses the reserved manual source tag
    """
    name = (entry.get('name') or '').strip()
    url = (entry.get('url') or '').strip()
    feed_format = entry.get('format')

    if not name:
        raise ConfigurationError(f"Feed source without a name: {dict(entry)}")
    if name == MANUAL_SOURCE:
        raise ConfigurationError(f"Feed source may not use the reserved tag '{MANUAL_SOURCE}'")
    if not url:
        raise ConfigurationError(f"Feed source {name} has no url")
    if feed_format not in FEED_FORMATS:
        raise ConfigurationError(
            f"Feed source {name} has unknown format {feed_format!r} "
            f"(expected one of {', '.join(FEED_FORMATS)})"
        )

    return FeedSource(
        name=name,
        url=url,
        format=feed_format,
        category=entry.get('category') or 'Community',
        enabled=bool(entry.get('enabled', True)),
        days_back=_optional_int(entry.get('days_back'), f"{name}.days_back"),
        days_ahead=_optional_int(entry.get('days_ahead'), f"{name}.days_ahead"),
    )


def load_feed_sources(environ: Optional[Mapping[str, str]] = None) -> List[FeedSource]:
    """
    Feed sources from FEED_SOURCES (JSON list) or FEED_SOURCES_FILE.

    Falls back to the built-in list when neither is set.

    Raises:
        ConfigurationError: On unreadable or invalid configuration
    """
    environ = os.environ if environ is None else environ
    raw = environ.get('FEED_SOURCES')
    path = environ.get('FEED_SOURCES_FILE')

    if raw:
        entries = _parse_json(raw, 'FEED_SOURCES')
    elif path:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                entries = _parse_json(f.read(), path)
        except OSError as e:
            raise ConfigurationError(f"Cannot read feed sources file {path}: {e}") from e
    else:
        entries = DEFAULT_FEED_SOURCES

    if not isinstance(entries, list):
        raise ConfigurationError("Feed source configuration must be a JSON list")

    sources = [parse_feed_source(entry) for entry in entries]
    names = [source.name for source in sources]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise ConfigurationError(f"Duplicate feed source names: {', '.join(duplicates)}")
    return sources


@dataclass
class Settings:
    """Settings for one invocation."""
    table_name: str = 'event-catalog'
    image_cache_table: Optional[str] = None
    asset_bucket: str = 'event-images'
    asset_base_url: Optional[str] = None
    unsplash_access_key: Optional[str] = None
    unsplash_hourly_quota: int = 50
    log_level: str = 'INFO'
    timeout_seconds: int = 30
    source_timeout_seconds: int = 45
    days_ahead: int = 365
    days_back: int = 1
    catalog_timezone: str = 'America/Los_Angeles'
    image_grace_days: int = 10
    image_cache_days: int = 7
    population_batch_size: int = 100
    feed_sources: List[FeedSource] = field(default_factory=list)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'Settings':
        """
        Read settings from environment variables.

        Raises:
            ConfigurationError: If a numeric value, the asset base URL or a
                feed source is invalid
        """
        environ = os.environ if environ is None else environ
        settings = cls(
            table_name=environ.get('TABLE_NAME', 'event-catalog'),
            image_cache_table=environ.get('IMAGE_CACHE_TABLE') or None,
            asset_bucket=environ.get('ASSET_BUCKET', 'event-images'),
            asset_base_url=_asset_base_url(environ.get('ASSET_BASE_URL')),
            unsplash_access_key=environ.get('UNSPLASH_ACCESS_KEY') or None,
            unsplash_hourly_quota=_env_int(environ, 'UNSPLASH_HOURLY_QUOTA', 50, minimum=1),
            log_level=environ.get('LOG_LEVEL', 'INFO'),
            timeout_seconds=_env_int(environ, 'TIMEOUT_SECONDS', 30, minimum=1),
            source_timeout_seconds=_env_int(environ, 'SOURCE_TIMEOUT_SECONDS', 45, minimum=1),
            days_ahead=_env_int(environ, 'DAYS_AHEAD', 365),
            days_back=_env_int(environ, 'DAYS_BACK', 1),
            catalog_timezone=environ.get('CATALOG_TIMEZONE', 'America/Los_Angeles'),
            image_grace_days=_env_int(environ, 'IMAGE_GRACE_DAYS', 10),
            image_cache_days=_env_int(environ, 'IMAGE_CACHE_DAYS', 7, minimum=1),
            population_batch_size=_env_int(environ, 'POPULATION_BATCH_SIZE', 100, minimum=1),
            feed_sources=load_feed_sources(environ),
        )
        return settings

    def summary(self) -> Dict[str, Any]:
        """Loggable view without credentials."""
        return {
            'table_name': self.table_name,
            'image_cache_table': self.image_cache_table,
            'asset_bucket': self.asset_bucket,
            'photo_search_configured': bool(self.unsplash_access_key),
            'feed_sources': [source.name for source in self.feed_sources],
        }


def _parse_json(raw: str, origin: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {origin}: {e}") from e


def _optional_int(value: Any, name: str) -> Optional[int]:
    if value is None:
        return None
    try:
        number = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from e
    if number < 0:
        raise ConfigurationError(f"{name} must not be negative")
    return number


def _env_int(environ: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = environ.get(name)
    if raw is None or raw == '':
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise ConfigurationError(f"{name} must be at least {minimum}")
    return value


def _asset_base_url(raw: Optional[str]) -> Optional[str]:
    """Stored image URLs are built on this base, so it must be an absolute http(s) URL."""
    if not raw:
        return None
    parsed = urlparse(raw)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise ConfigurationError(f"ASSET_BASE_URL must be an absolute http(s) URL, got {raw!r}")
    return raw
