"""Adapter for organization calendars published as HTML event pages."""
import logging
from datetime import date, datetime, timezone
from typing import List, Optional
from urllib.parse import unquote, urljoin

from bs4 import BeautifulSoup

from processor.models import FeedSource, FeedResult, FailedEntry, RawEvent, SyncWindow
from scraper.base import FeedAdapter, to_catalog_time
from scraper.http_client import FeedFetchError

logger = logging.getLogger(__name__)


class HtmlEventPagesAdapter(FeedAdapter):
    """
    Scraper for calendars that list events on an index page and expose
    each event's data on its detail page.

    Detail pages carry a ``<ps-ics-file-link>`` element whose data
    attributes hold the URL-encoded title, description and location and
    the start/end timestamps in ``YYYYMMDDTHHMMSSZ`` form.
    """

    LINK_SELECTOR = 'h3 a[href*="/events/"]'
    MAX_DETAIL_PAGES = 100

    def _fetch(self, source: FeedSource, window: SyncWindow, deadline: Optional[float] = None) -> FeedResult:
        html_content = self.fetcher.get_text(source.url, accept='text/html', deadline=deadline)
        links = self._parse_event_links(html_content, source.url)[:self.MAX_DETAIL_PAGES]
        logger.info(f"Found {len(links)} event pages on {source.name}")

        result = FeedResult(source=source.name)
        for index, link in enumerate(links):
            if self.deadline_passed(deadline):
                unread = links[index:]
                logger.warning(f"Fetch deadline reached on {source.name}; {len(unread)} event pages not read")
                result.failed_entries.extend(
                    FailedEntry(reference=url, error='source fetch deadline exceeded') for url in unread
                )
                break
            try:
                page = self.fetcher.get_text(link, accept='text/html', deadline=deadline)
                event = self._parse_event_page(page, source, link)
            except (FeedFetchError, ValueError) as e:
                logger.warning(f"Failed to read event page {link}: {e}")
                result.failed_entries.append(FailedEntry(reference=link, error=str(e)))
                continue

            if window.contains(date.fromisoformat(event.date)):
                result.events.append(event)

        return result

    def _parse_event_links(self, html_content: str, base_url: str) -> List[str]:
        """
        Collect unique absolute detail page URLs from the listing page.

        Args:
            html_content: HTML of the listing page
            base_url: URL the listing was fetched from

        Returns:
            List of URLs in page order
        """
        soup = BeautifulSoup(html_content, 'html.parser')
        links = []
        seen = set()

        for anchor in soup.select(self.LINK_SELECTOR):
            href = anchor.get('href')
            if not href:
                continue
            absolute_url = urljoin(base_url, href)
            if absolute_url not in seen:
                seen.add(absolute_url)
                links.append(absolute_url)

        return links

    def _parse_event_page(self, html_content: str, source: FeedSource, page_url: str) -> RawEvent:
        """
        Parse the event data element of a detail page.

        Raises:
            ValueError: If the page has no usable event data
        """
        soup = BeautifulSoup(html_content, 'html.parser')
        element = soup.find('ps-ics-file-link')
        if element is None:
            raise ValueError('no event data element on page')

        title = unquote(element.get('data-title', '')).strip()
        start_raw = element.get('data-start-time', '')
        if not title or not start_raw:
            raise ValueError('event data element is missing title or start time')

        day, start_time = to_catalog_time(self._parse_stamp(start_raw), self.tz)
        end_time = None
        end_raw = element.get('data-end-time')
        if end_raw:
            _, end_time = to_catalog_time(self._parse_stamp(end_raw), self.tz)

        location = unquote(element.get('data-location', '')).strip()
        return RawEvent(
            title=title,
            date=day,
            start_time=start_time,
            end_time=end_time,
            location=location,
            address=location,
            description=unquote(element.get('data-description', '')),
            category=source.category,
            url=page_url
        )

    def _parse_stamp(self, value: str) -> datetime:
        """Parse ``20251010T183000Z`` (UTC) or a floating ``20251010T183000``."""
        value = value.strip()
        if value.endswith('Z'):
            return datetime.strptime(value, '%Y%m%dT%H%M%SZ').replace(tzinfo=timezone.utc)
        return datetime.strptime(value, '%Y%m%dT%H%M%S')
