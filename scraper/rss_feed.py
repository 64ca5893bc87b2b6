"""RSS/Atom feed adapter."""
import logging
from datetime import date
from typing import Optional

import feedparser
from dateutil import parser as dtparser

from processor.models import FeedSource, FeedResult, FailedEntry, RawEvent, SyncWindow
from scraper.base import FeedAdapter, to_catalog_time
from scraper.http_client import PermanentFetchError

logger = logging.getLogger(__name__)

RSS_ACCEPT = 'application/rss+xml, application/atom+xml, application/xml, text/xml'

# Event-module fields first, then generic feed timestamps
START_FIELDS = ('ev_startdate', 'startdate', 'published', 'updated', 'created')


class RssFeedAdapter(FeedAdapter):
    """Adapter for RSS and Atom feeds that publish events as items."""

    def _fetch(self, source: FeedSource, window: SyncWindow, deadline: Optional[float] = None) -> FeedResult:
        content = self.fetcher.get_text(source.url, accept=RSS_ACCEPT, deadline=deadline)
        return self.parse_feed(content, source, window)

    def parse_feed(self, content: str, source: FeedSource, window: SyncWindow) -> FeedResult:
        """
        Parse feed content into raw events.

        Raises:
            PermanentFetchError: If the document is not a readable feed
        """
        feed = feedparser.parse(content)
        if feed.bozo and not feed.entries:
            raise PermanentFetchError(
                f"Malformed feed document from {source.name}: {feed.get('bozo_exception')}"
            )
        if not feed.get('version') and not feed.entries:
            raise PermanentFetchError(f"Document from {source.name} is not an RSS or Atom feed")

        result = FeedResult(source=source.name)
        for index, entry in enumerate(feed.entries):
            reference = entry.get('id') or entry.get('link') or f"item #{index}"
            try:
                event = self._parse_entry(entry, source)
            except Exception as e:
                logger.warning(f"Failed to parse feed item {reference} from {source.name}: {e}")
                result.failed_entries.append(FailedEntry(reference=reference, error=str(e)))
                continue
            if window.contains(date.fromisoformat(event.date)):
                result.events.append(event)

        return result

    def _parse_entry(self, entry, source: FeedSource) -> RawEvent:
        raw_start = next((entry.get(key) for key in START_FIELDS if entry.get(key)), None)
        if not raw_start:
            raise ValueError('item has no start or publication date')
        start = dtparser.parse(raw_start)
        day, start_time = to_catalog_time(start, self.tz)
        if ':' not in raw_start:
            start_time = None

        end_time = None
        if entry.get('ev_enddate'):
            _, end_time = to_catalog_time(dtparser.parse(entry['ev_enddate']), self.tz)

        tags = entry.get('tags') or []
        category = tags[0].get('term') if tags and tags[0].get('term') else source.category

        location = entry.get('ev_location', '')
        return RawEvent(
            title=(entry.get('title') or '').strip(),
            date=day,
            start_time=start_time,
            end_time=end_time,
            location=location,
            address=location,
            description=entry.get('summary') or entry.get('description') or '',
            category=category,
            url=entry.get('link') or None
        )
