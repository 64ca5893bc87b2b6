"""Common feed adapter interface."""
import logging
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, tzinfo
from typing import Optional, Tuple, Union
from zoneinfo import ZoneInfo

from processor.models import FeedSource, FeedResult, SyncWindow
from scraper.http_client import FeedFetcher

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = 'America/Los_Angeles'


def default_window(days_back: int = 1, days_ahead: int = 365, today: Optional[date] = None) -> SyncWindow:
    """Window from a day in the past to a year ahead."""
    today = today or date.today()
    return SyncWindow(
        start=today - timedelta(days=days_back),
        end=today + timedelta(days=days_ahead),
    )


def to_catalog_time(value: Union[date, datetime], tz: tzinfo) -> Tuple[str, Optional[str]]:
    """
    Convert a feed timestamp to the catalog's (date, time) representation.

    Aware datetimes are converted to the catalog timezone; naive
    (floating) datetimes are taken as catalog-local already. Plain dates
    carry no time.

    Returns:
        Tuple of (YYYY-MM-DD, HH:MM or None)
    """
    if not isinstance(value, datetime):
        return value.isoformat(), None
    if value.tzinfo is not None:
        value = value.astimezone(tz)
    return value.strftime('%Y-%m-%d'), value.strftime('%H:%M')


class FeedAdapter(ABC):
    """Turns one external feed into raw event records."""

    def __init__(self, fetcher: Optional[FeedFetcher] = None, timezone: str = DEFAULT_TIMEZONE):
        self.fetcher = fetcher or FeedFetcher()
        self.tz = ZoneInfo(timezone)

    def fetch_events(
        self,
        source: FeedSource,
        window: Optional[SyncWindow] = None,
        deadline: Optional[float] = None,
    ) -> FeedResult:
        """
        Fetch and parse a source.

        Malformed entries are reported in the result's failed_entries
        instead of aborting the feed. Entries that could not be fetched
        before the deadline are reported there too.

        Args:
            source: Feed descriptor
            window: Occurrence date range (default: a day back to a year ahead)
            deadline: Fetcher clock value after which no further request is made

        Returns:
            FeedResult with parsed events and failed entries

        Raises:
            FeedFetchError: If the feed as a whole could not be fetched or parsed
        """
        window = window or default_window(
            days_back=source.days_back if source.days_back is not None else 1,
            days_ahead=source.days_ahead if source.days_ahead is not None else 365,
        )
        logger.info(f"Fetching {source.format} feed {source.name} ({source.url})")
        result = self._fetch(source, window, deadline)
        logger.info(
            f"Fetched {len(result.events)} events from {source.name}, "
            f"{len(result.failed_entries)} entries failed to parse"
        )
        return result

    def deadline_passed(self, deadline: Optional[float]) -> bool:
        remaining = self.fetcher.remaining(deadline)
        return remaining is not None and remaining <= 0

    @abstractmethod
    def _fetch(self, source: FeedSource, window: SyncWindow, deadline: Optional[float] = None) -> FeedResult:
        """Fetch and parse the feed within the window."""
