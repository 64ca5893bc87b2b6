"""Adapter for WordPress "The Events Calendar" REST endpoints."""
import logging
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from processor.event_processor import extract_time_from_description, strip_html
from processor.models import FeedSource, FeedResult, FailedEntry, RawEvent, SyncWindow
from scraper.base import FeedAdapter, to_catalog_time
from scraper.http_client import FeedFetchError, PermanentFetchError

logger = logging.getLogger(__name__)


class TribeEventsAdapter(FeedAdapter):
    """Reads paginated /wp-json/tribe/events/v1/events listings."""

    PER_PAGE = 50
    MAX_PAGES = 20

    def _fetch(self, source: FeedSource, window: SyncWindow, deadline: Optional[float] = None) -> FeedResult:
        params = {
            'per_page': str(self.PER_PAGE),
            'page': '1',
            'start_date': window.start.isoformat(),
            'end_date': window.end.isoformat(),
            'status': 'publish',
        }
        result = FeedResult(source=source.name)

        data = self.fetcher.get_json(source.url, params=params, deadline=deadline)
        if not isinstance(data, dict) or not isinstance(data.get('events'), list):
            raise PermanentFetchError(f"Unexpected document from {source.name}: no 'events' list")

        page = 1
        while True:
            logger.info(
                f"Fetched {len(data['events'])} events from {source.name} "
                f"(page {page} of {data.get('total_pages', 1)})"
            )
            self._parse_page(data['events'], source, window, result)

            next_url = data.get('next_rest_url')
            if not next_url or page >= int(data.get('total_pages') or 1) or page >= self.MAX_PAGES:
                break

            page += 1
            try:
                data = self.fetcher.get_json(next_url, deadline=deadline)
            except FeedFetchError as e:
                logger.error(f"Stopping {source.name} pagination at page {page}: {e}")
                result.failed_entries.append(FailedEntry(reference=f"page {page}", error=str(e)))
                break
            if not isinstance(data, dict) or not isinstance(data.get('events'), list):
                result.failed_entries.append(
                    FailedEntry(reference=f"page {page}", error="no 'events' list")
                )
                break

        return result

    def _parse_page(self, items, source: FeedSource, window: SyncWindow, result: FeedResult) -> None:
        for item in items:
            reference = str(item.get('id') or item.get('url') or item.get('title'))
            try:
                event = self._transform(item, source)
            except Exception as e:
                logger.warning(f"Failed to parse event {reference} from {source.name}: {e}")
                result.failed_entries.append(FailedEntry(reference=reference, error=str(e)))
                continue
            if window.contains(date.fromisoformat(event.date)):
                result.events.append(event)

    def _localize(self, value: str, item: dict) -> datetime:
        parsed = datetime.strptime(value.strip(), '%Y-%m-%d %H:%M:%S')
        tz_name = item.get('timezone')
        if tz_name:
            try:
                parsed = parsed.replace(tzinfo=ZoneInfo(tz_name))
            except (ZoneInfoNotFoundError, ValueError):
                logger.debug(f"Unknown timezone {tz_name!r}, treating times as catalog-local")
        return parsed

    def _transform(self, item: dict, source: FeedSource) -> RawEvent:
        description = strip_html(item.get('description') or '')
        day, start_time = to_catalog_time(self._localize(item['start_date'], item), self.tz)

        end_time = None
        if item.get('all_day'):
            start_time = extract_time_from_description(description)
        elif item.get('end_date'):
            _, end_time = to_catalog_time(self._localize(item['end_date'], item), self.tz)

        venue = item.get('venue') or {}
        if isinstance(venue, list):
            venue = venue[0] if venue else {}
        address = ', '.join(
            part for part in (
                venue.get('address'),
                venue.get('city'),
                venue.get('state') or venue.get('province'),
                venue.get('zip'),
            ) if part
        )

        categories = item.get('categories') or []
        category = categories[0].get('name') if categories and categories[0].get('name') else source.category

        return RawEvent(
            title=strip_html(item.get('title') or ''),
            date=day,
            start_time=start_time,
            end_time=end_time,
            location=venue.get('venue') or '',
            address=address,
            description=description,
            category=category,
            url=item.get('url') or None
        )
