"""Event processor for validating and normalizing event data."""
import hashlib
import logging
import re
from datetime import datetime
from typing import List, Optional

from bs4 import BeautifulSoup

from processor.models import RawEvent, CanonicalEvent, SyncWindow

logger = logging.getLogger(__name__)

# "10:00 a.m.", "10:00AM", "7 p.m", "7pm"
TIME_IN_TEXT = re.compile(r'(\d{1,2})(?::(\d{2}))?\s*([ap])\.?\s*m\b\.?', re.IGNORECASE)
WHITESPACE = re.compile(r'\s+')


def normalize_title(title: str) -> str:
    """Lowercase and trim a title for identity matching."""
    return WHITESPACE.sub(' ', title.strip().lower())


def generate_event_id(title: str, date: str, source: str) -> str:
    """
    Generate the catalog identifier for an event.

    The identifier is a SHA256 hash of the identity key
    (normalized title, date, source tag), so the same occurrence from the
    same source always maps to the same catalog row.

    Args:
        title: Event title (normalized or not)
        date: Event date (ISO 8601 format)
        source: Source tag

    Returns:
        Unique event ID (SHA256 hash)
    """
    composite = f"{normalize_title(title)}|{date}|{source}"
    return hashlib.sha256(composite.encode('utf-8')).hexdigest()


def strip_html(text: str) -> str:
    """Convert an HTML fragment to plain text with collapsed whitespace."""
    if not text:
        return ''
    if '<' not in text and '&' not in text:
        return WHITESPACE.sub(' ', text).strip()
    plain = BeautifulSoup(text, 'html.parser').get_text(' ')
    return WHITESPACE.sub(' ', plain).strip()


def extract_time_from_description(description: str) -> Optional[str]:
    """
    Find the earliest clock time written in free text.

    Only the first 500 characters are searched; that is where feeds put
    the start time of all-day entries.

    Args:
        description: Event description

    Returns:
        Time in 24-hour HH:MM format, or None if no time is written
    """
    if not description:
        return None

    times = []
    for match in TIME_IN_TEXT.finditer(description[:500]):
        hours = int(match.group(1))
        minutes = int(match.group(2) or 0)
        if hours < 1 or hours > 12 or minutes > 59:
            continue
        meridiem = match.group(3).upper()
        if meridiem == 'P' and hours != 12:
            hours += 12
        elif meridiem == 'A' and hours == 12:
            hours = 0
        times.append((hours, minutes))

    if not times:
        return None
    hours, minutes = min(times)
    return f"{hours:02d}:{minutes:02d}"


class EventProcessor:
    """Processor for validating and normalizing event data."""

    MAX_TITLE_LENGTH = 200
    MAX_DESCRIPTION_LENGTH = 2000

    DATE_FORMATS = [
        '%Y-%m-%d',      # ISO 8601
        '%Y-%m-%d %H:%M:%S',
        '%Y-%m-%dT%H:%M:%S',
        '%m/%d/%Y',      # US format
        '%m-%d-%Y',      # US format with dashes
        '%B %d, %Y',     # Full month name
        '%b %d, %Y',     # Abbreviated month name
        '%A, %B %d, %Y',
        '%Y/%m/%d',      # Alternative ISO format
    ]

    TIME_FORMATS = [
        '%H:%M',         # 24-hour format
        '%I:%M %p',      # 12-hour format with AM/PM
        '%I:%M%p',       # 12-hour format without space
        '%I %p',
        '%I%p',
        '%H:%M:%S',      # 24-hour with seconds
        '%I:%M:%S %p',   # 12-hour with seconds and AM/PM
    ]

    def __init__(self, window: Optional[SyncWindow] = None):
        """
        Initialize the processor.

        Args:
            window: Occurrences outside this date range are dropped
                (default: keep everything)
        """
        self.window = window

    def process_events(self, raw_events: List[RawEvent], source: str) -> List[CanonicalEvent]:
        """
        Process and validate raw event data from one source.

        Invalid events are logged and skipped. Events that share an
        identity key with an earlier event in the same batch are dropped.

        Args:
            raw_events: List of raw events from a feed adapter
            source: Source tag the events belong to

        Returns:
            List of validated CanonicalEvent objects
        """
        processed_events = []
        seen_ids = set()

        for event in raw_events:
            try:
                processed_event = self._process_single_event(event, source)
            except Exception as e:
                logger.warning(f"Failed to process event '{event.title}': {e}")
                continue

            if not processed_event:
                continue
            if processed_event.event_id in seen_ids:
                logger.debug(
                    f"Dropping duplicate occurrence of '{processed_event.title}' "
                    f"on {processed_event.event_date}"
                )
                continue

            seen_ids.add(processed_event.event_id)
            processed_events.append(processed_event)

        logger.info(
            f"Processed {len(processed_events)} valid events out of "
            f"{len(raw_events)} total events from {source}"
        )
        return processed_events

    def _process_single_event(self, event: RawEvent, source: str) -> Optional[CanonicalEvent]:
        """
        Process a single event.

        Args:
            event: Raw event
            source: Source tag

        Returns:
            CanonicalEvent or None if validation fails
        """
        if not self._validate_required_fields(event):
            return None

        normalized_date = self.normalize_date(event.date)
        if not normalized_date:
            logger.warning(f"Invalid date format for event '{event.title}': {event.date}")
            return None

        if self.window and not self.window.contains(
            datetime.strptime(normalized_date, '%Y-%m-%d').date()
        ):
            return None

        start_time = None
        if event.start_time:
            start_time = self.normalize_time(event.start_time)
            if not start_time:
                logger.warning(
                    f"Invalid start time format for event '{event.title}': "
                    f"{event.start_time}"
                )

        end_time = None
        if event.end_time:
            end_time = self.normalize_time(event.end_time)

        title = WHITESPACE.sub(' ', event.title).strip()[:self.MAX_TITLE_LENGTH]
        description = strip_html(event.description)[:self.MAX_DESCRIPTION_LENGTH]
        location = WHITESPACE.sub(' ', event.location or '').strip()

        return CanonicalEvent(
            event_id=generate_event_id(title, normalized_date, source),
            title=title,
            normalized_title=normalize_title(title),
            event_date=normalized_date,
            start_time=start_time,
            end_time=end_time,
            location=location,
            address=WHITESPACE.sub(' ', event.address or '').strip() or location,
            description=description,
            category=(event.category or '').strip(),
            source=source,
            external_url=event.url or None,
        )

    def _validate_required_fields(self, event: RawEvent) -> bool:
        """
        Validate that required fields are present and non-empty.

        Args:
            event: Event to validate

        Returns:
            True if valid, False otherwise
        """
        if not event.title or not event.title.strip():
            logger.warning("Event missing required field: title")
            return False

        if not event.date or not event.date.strip():
            logger.warning(f"Event '{event.title}' missing required field: date")
            return False

        return True

    def normalize_date(self, date_str: str) -> Optional[str]:
        """
        Normalize date to ISO 8601 format (YYYY-MM-DD).

        Args:
            date_str: Date string in various formats

        Returns:
            ISO 8601 formatted date string or None if parsing fails
        """
        for fmt in self.DATE_FORMATS:
            try:
                date_obj = datetime.strptime(date_str.strip(), fmt)
                return date_obj.strftime('%Y-%m-%d')
            except ValueError:
                continue

        return None

    def normalize_time(self, time_str: str) -> Optional[str]:
        """
        Normalize time to 24-hour format (HH:MM).

        Args:
            time_str: Time string in various formats

        Returns:
            24-hour formatted time string or None if parsing fails
        """
        time_str = time_str.strip().replace('.', '').upper()

        for fmt in self.TIME_FORMATS:
            try:
                time_obj = datetime.strptime(time_str, fmt)
                return time_obj.strftime('%H:%M')
            except ValueError:
                continue

        return None
