"""Unit tests for the iCalendar adapter."""
from datetime import date
from unittest.mock import Mock

import pytest
import responses

from processor.models import FeedSource, SyncWindow
from scraper.http_client import FeedFetcher, PermanentFetchError
from scraper.ical_feed import ICalFeedAdapter

WINDOW = SyncWindow(start=date(2025, 1, 1), end=date(2025, 12, 31))
SOURCE = FeedSource(name='Museum', url='https://museum.example.org/events.ics', format='ical', category='Arts')


def _calendar(*vevents):
    body = '\n'.join(vevents)
    return f"BEGIN:VCALENDAR\nVERSION:2.0\nPRODID:-//Test//EN\n{body}\nEND:VCALENDAR\n"


def _vevent(*lines):
    return 'BEGIN:VEVENT\n' + '\n'.join(lines) + '\nEND:VEVENT'


@pytest.fixture
def adapter():
    return ICalFeedAdapter(fetcher=FeedFetcher(sleep=Mock()))


def _parse(adapter, content, window=WINDOW):
    return adapter.parse_calendar(content, SOURCE, window)


class TestICalFeedAdapter:

    def test_timezone_converted_to_catalog_time(self, adapter):
        """Test TZID timestamps are converted to the catalog timezone."""
        content = _calendar(_vevent(
            'UID:talk-1',
            'SUMMARY:Curator Talk',
            'DTSTART;TZID=America/New_York:20250310T190000',
            'DTEND;TZID=America/New_York:20250310T210000',
            'LOCATION:Gallery 3',
            'DESCRIPTION:An evening talk',
            'URL:https://museum.example.org/talk',
        ))

        result = _parse(adapter, content)

        assert len(result.events) == 1
        event = result.events[0]
        assert event.title == 'Curator Talk'
        assert event.date == '2025-03-10'
        assert event.start_time == '16:00'
        assert event.end_time == '18:00'
        assert event.location == 'Gallery 3'
        assert event.category == 'Arts'
        assert event.url == 'https://museum.example.org/talk'

    def test_utc_and_floating_times(self, adapter):
        content = _calendar(
            _vevent('UID:utc', 'SUMMARY:UTC Event', 'DTSTART:20250615T170000Z'),
            _vevent('UID:floating', 'SUMMARY:Floating Event', 'DTSTART:20250615T100000'),
        )

        result = _parse(adapter, content)

        times = {e.title: (e.date, e.start_time) for e in result.events}
        assert times['UTC Event'] == ('2025-06-15', '10:00')
        assert times['Floating Event'] == ('2025-06-15', '10:00')

    def test_all_day_event_takes_time_from_description(self, adapter):
        content = _calendar(
            _vevent(
                'UID:fireworks',
                'SUMMARY:Fireworks',
                'DTSTART;VALUE=DATE:20250704',
                'DESCRIPTION:Fireworks start at 9 p.m. over the bay',
            ),
            _vevent('UID:fair', 'SUMMARY:County Fair', 'DTSTART;VALUE=DATE:20250705'),
        )

        result = _parse(adapter, content)

        times = {e.title: (e.date, e.start_time) for e in result.events}
        assert times['Fireworks'] == ('2025-07-04', '21:00')
        assert times['County Fair'] == ('2025-07-05', None)

    def test_categories(self, adapter):
        content = _calendar(_vevent(
            'UID:fam', 'SUMMARY:Family Day', 'DTSTART:20250801T100000', 'CATEGORIES:Family,Kids'
        ))

        result = _parse(adapter, content)

        assert result.events[0].category == 'Family'

    def test_weekly_recurrence_expanded_within_window(self, adapter):
        """Test an open-ended rule yields only occurrences inside the window."""
        content = _calendar(_vevent(
            'UID:toddler',
            'SUMMARY:Toddler Time',
            'DTSTART;TZID=America/Los_Angeles:20241203T100000',
            'DTEND;TZID=America/Los_Angeles:20241203T110000',
            'RRULE:FREQ=WEEKLY',
        ))
        window = SyncWindow(start=date(2025, 1, 1), end=date(2025, 1, 31))

        result = _parse(adapter, content, window)

        assert [e.date for e in result.events] == ['2025-01-07', '2025-01-14', '2025-01-21', '2025-01-28']
        assert all(e.start_time == '10:00' and e.end_time == '11:00' for e in result.events)

    def test_exdate_and_override(self, adapter):
        """Test excluded dates are dropped and overridden occurrences replaced."""
        content = _calendar(
            _vevent(
                'UID:toddler',
                'SUMMARY:Toddler Time',
                'DTSTART;TZID=America/Los_Angeles:20250107T100000',
                'RRULE:FREQ=WEEKLY;COUNT=4',
                'EXDATE;TZID=America/Los_Angeles:20250114T100000',
            ),
            _vevent(
                'UID:toddler',
                'RECURRENCE-ID;TZID=America/Los_Angeles:20250121T100000',
                'SUMMARY:Toddler Time (moved)',
                'DTSTART;TZID=America/Los_Angeles:20250121T140000',
            ),
        )

        result = _parse(adapter, content)

        occurrences = sorted((e.date, e.start_time, e.title) for e in result.events)
        assert occurrences == [
            ('2025-01-07', '10:00', 'Toddler Time'),
            ('2025-01-21', '14:00', 'Toddler Time (moved)'),
            ('2025-01-28', '10:00', 'Toddler Time'),
        ]

    def test_malformed_entry_does_not_abort_feed(self, adapter):
        content = _calendar(
            _vevent('UID:broken', 'SUMMARY:No Start'),
            _vevent('UID:ok', 'SUMMARY:Fine Event', 'DTSTART:20250301T120000'),
        )

        result = _parse(adapter, content)

        assert [e.title for e in result.events] == ['Fine Event']
        assert len(result.failed_entries) == 1
        assert result.failed_entries[0].reference == 'broken'

    def test_html_instead_of_calendar(self, adapter):
        with pytest.raises(PermanentFetchError, match='HTML'):
            _parse(adapter, '<!DOCTYPE html><html><body>Not found</body></html>')

    def test_non_calendar_document(self, adapter):
        with pytest.raises(PermanentFetchError, match='BEGIN:VCALENDAR'):
            _parse(adapter, 'just some text')

    def test_byte_order_mark_is_accepted(self, adapter):
        content = '\ufeff' + _calendar(_vevent('UID:a', 'SUMMARY:Event', 'DTSTART:20250301T120000'))

        assert len(_parse(adapter, content).events) == 1

    @responses.activate
    def test_fetch_events_over_http(self, adapter):
        responses.add(
            responses.GET,
            SOURCE.url,
            body=_calendar(_vevent('UID:a', 'SUMMARY:Open House', 'DTSTART:20250301T120000')),
            status=200,
            content_type='text/calendar'
        )

        result = adapter.fetch_events(SOURCE, WINDOW)

        assert result.source == 'Museum'
        assert [e.title for e in result.events] == ['Open House']

    @responses.activate
    def test_fetch_events_not_found(self, adapter):
        responses.add(responses.GET, SOURCE.url, status=404)

        with pytest.raises(PermanentFetchError):
            adapter.fetch_events(SOURCE, WINDOW)
