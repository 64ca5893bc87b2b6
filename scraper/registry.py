"""Lookup of feed adapters by source format."""
from typing import Optional

from scraper.base import DEFAULT_TIMEZONE, FeedAdapter
from scraper.html_calendar import HtmlEventPagesAdapter
from scraper.http_client import FeedFetcher
from scraper.ical_feed import ICalFeedAdapter
from scraper.rss_feed import RssFeedAdapter
from scraper.tribe_events import TribeEventsAdapter

ADAPTERS = {
    'ical': ICalFeedAdapter,
    'rss': RssFeedAdapter,
    'tribe_json': TribeEventsAdapter,
    'html_event_pages': HtmlEventPagesAdapter,
}


def get_adapter(
    feed_format: str,
    fetcher: Optional[FeedFetcher] = None,
    timezone: str = DEFAULT_TIMEZONE,
) -> FeedAdapter:
    """
    Build the adapter for a feed format.

    Raises:
        KeyError: If the format has no adapter
    """
    return ADAPTERS[feed_format](fetcher=fetcher, timezone=timezone)
