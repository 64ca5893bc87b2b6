"""iCalendar feed adapter with recurrence expansion."""
import logging
from datetime import date, datetime, time as dt_time
from typing import List, Optional, Set, Tuple

from dateutil.rrule import rrulestr
from icalendar import Calendar

from processor.event_processor import extract_time_from_description
from processor.models import FeedSource, FeedResult, FailedEntry, RawEvent, SyncWindow
from scraper.base import FeedAdapter, to_catalog_time
from scraper.http_client import PermanentFetchError

logger = logging.getLogger(__name__)

ICAL_ACCEPT = 'text/calendar, application/calendar, text/plain'


def _as_list(value) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


class ICalFeedAdapter(FeedAdapter):
    """Adapter for iCalendar (.ics) feeds."""

    MAX_OCCURRENCES = 500

    def _fetch(self, source: FeedSource, window: SyncWindow, deadline: Optional[float] = None) -> FeedResult:
        content = self.fetcher.get_text(source.url, accept=ICAL_ACCEPT, deadline=deadline)
        return self.parse_calendar(content, source, window)

    def parse_calendar(self, content: str, source: FeedSource, window: SyncWindow) -> FeedResult:
        """
        Parse iCalendar content into raw events.

        Args:
            content: Calendar document text
            source: Feed descriptor
            window: Occurrence date range

        Returns:
            FeedResult with one event per occurrence in the window

        Raises:
            PermanentFetchError: If the document is not a calendar
        """
        stripped = content.lstrip('\ufeff').strip()
        if not stripped.startswith('BEGIN:VCALENDAR'):
            if stripped[:15].lower().startswith(('<!doctype html', '<html')):
                raise PermanentFetchError(
                    f"Feed {source.name} returned HTML instead of iCalendar data"
                )
            raise PermanentFetchError(
                f"Invalid iCalendar document from {source.name}: "
                f"content does not start with BEGIN:VCALENDAR"
            )

        try:
            calendar = Calendar.from_ical(stripped)
        except ValueError as e:
            raise PermanentFetchError(f"Malformed iCalendar document from {source.name}: {e}") from e

        vevents = list(calendar.walk('VEVENT'))
        overridden = self._collect_overrides(vevents)
        result = FeedResult(source=source.name)

        for index, vevent in enumerate(vevents):
            reference = str(vevent.get('UID') or f"VEVENT #{index}")
            try:
                result.events.extend(self._parse_vevent(vevent, source, window, overridden))
            except Exception as e:
                logger.warning(f"Failed to parse iCalendar event {reference} from {source.name}: {e}")
                result.failed_entries.append(FailedEntry(reference=reference, error=str(e)))

        return result

    def _collect_overrides(self, vevents) -> Set[Tuple[str, str, Optional[str]]]:
        """Occurrences replaced by a RECURRENCE-ID component, keyed by (uid, date, time)."""
        overridden = set()
        for vevent in vevents:
            recurrence_id = vevent.get('RECURRENCE-ID')
            if recurrence_id is None:
                continue
            try:
                day, start = to_catalog_time(recurrence_id.dt, self.tz)
            except (AttributeError, ValueError) as e:
                logger.warning(f"Ignoring unreadable RECURRENCE-ID: {e}")
                continue
            overridden.add((str(vevent.get('UID', '')), day, start))
        return overridden

    def _parse_vevent(self, vevent, source: FeedSource, window: SyncWindow, overridden) -> List[RawEvent]:
        dtstart_prop = vevent.get('DTSTART')
        if dtstart_prop is None:
            raise ValueError('missing DTSTART')
        dtstart = dtstart_prop.dt

        dtend_prop = vevent.get('DTEND')
        duration = None
        if dtend_prop is not None and type(dtend_prop.dt) is type(dtstart):
            duration = dtend_prop.dt - dtstart
        elif vevent.get('DURATION') is not None:
            duration = vevent.get('DURATION').dt

        title = str(vevent.get('SUMMARY') or '').strip() or 'Untitled Event'
        description = str(vevent.get('DESCRIPTION') or '')
        location = str(vevent.get('LOCATION') or '')
        url = str(vevent.get('URL')) if vevent.get('URL') else None
        uid = str(vevent.get('UID', ''))

        categories = vevent.get('CATEGORIES')
        category = source.category
        if categories is not None:
            names = [str(c) for cats in _as_list(categories) for c in getattr(cats, 'cats', [])]
            if names:
                category = names[0]

        events = []
        is_recurring = vevent.get('RRULE') is not None or vevent.get('RDATE') is not None
        starts = self._expand(vevent, dtstart, window) if is_recurring else [dtstart]

        for start in starts:
            day, start_time = to_catalog_time(start, self.tz)
            if not window.contains(date.fromisoformat(day)):
                continue
            if is_recurring and (uid, day, start_time) in overridden:
                continue

            end_time = None
            if duration is not None and start_time is not None:
                _, end_time = to_catalog_time(start + duration, self.tz)

            if start_time is None:
                start_time = extract_time_from_description(description)

            events.append(RawEvent(
                title=title,
                date=day,
                start_time=start_time,
                end_time=end_time,
                location=location,
                address=location,
                description=description,
                category=category,
                url=url
            ))

        return events

    def _expand(self, vevent, dtstart, window: SyncWindow) -> list:
        """Expand RRULE/RDATE/EXDATE into concrete start values inside the window."""
        all_day = not isinstance(dtstart, datetime)
        anchor = datetime.combine(dtstart, dt_time.min) if all_day else dtstart

        def align(value):
            if not isinstance(value, datetime):
                value = datetime.combine(value, dt_time.min)
            if anchor.tzinfo is None and value.tzinfo is not None:
                value = value.astimezone(self.tz).replace(tzinfo=None)
            elif anchor.tzinfo is not None and value.tzinfo is None:
                value = value.replace(tzinfo=anchor.tzinfo)
            return value

        rule_lines = [
            'RRULE:' + rule.to_ical().decode('utf-8')
            for rule in _as_list(vevent.get('RRULE'))
        ]
        if rule_lines:
            ruleset = rrulestr('\n'.join(rule_lines), dtstart=anchor, forceset=True)
        else:
            ruleset = rrulestr('RRULE:FREQ=DAILY;COUNT=1', dtstart=anchor, forceset=True)

        for rdate in _as_list(vevent.get('RDATE')):
            for value in rdate.dts:
                ruleset.rdate(align(value.dt))
        for exdate in _as_list(vevent.get('EXDATE')):
            for value in exdate.dts:
                ruleset.exdate(align(value.dt))

        after = datetime.combine(window.start, dt_time.min)
        before = datetime.combine(window.end, dt_time.max)
        if anchor.tzinfo is not None:
            after = after.replace(tzinfo=self.tz)
            before = before.replace(tzinfo=self.tz)

        starts = []
        for occurrence in ruleset.xafter(after, count=self.MAX_OCCURRENCES, inc=True):
            if occurrence > before:
                break
            starts.append(occurrence.date() if all_day else occurrence)
        return starts
