"""Tests for the merge engine."""
from unittest.mock import patch

import pytest
from botocore.exceptions import ClientError

from conftest import future_date, make_event
from processor.models import CatalogEvent, FailedEntry, FeedResult, FeedSource, MANUAL_SOURCE, RawEvent
from processor.sync_engine import SyncEngine, changed_fields
from scraper.http_client import DeadlineExceededError, PermanentFetchError, TransientFetchError

IMAGE_URL = 'https://cdn.example.com/event-images/event-x.jpg'


def _raw(title='Toddler Time', days=7, **overrides):
    fields = dict(
        title=title,
        date=future_date(days),
        start_time='10:00 AM',
        end_time='11:00 AM',
        location='Central Library',
        description='Songs and stories',
        category='Kids',
        url='https://library.example.org/toddler-time',
    )
    fields.update(overrides)
    return RawEvent(**fields)


def _source(name, **overrides):
    return FeedSource(name=name, url=f"https://{name.lower()}.example.org/feed", format='ical', **overrides)


class FakeAdapter:
    """Returns canned results (or raises canned errors) per source name."""

    def __init__(self, feeds):
        self.feeds = feeds
        self.calls = []
        self.deadlines = []

    def fetch_events(self, source, window=None, deadline=None):
        self.calls.append((source.name, window))
        self.deadlines.append(deadline)
        outcome = self.feeds[source.name]
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, FeedResult):
            return outcome
        return FeedResult(source=source.name, events=list(outcome))


def _engine(store, feeds, **kwargs):
    adapter = FakeAdapter(feeds)
    return SyncEngine(store, adapter_factory=lambda feed_format: adapter, **kwargs), adapter


def test_first_sync_inserts(store):
    engine, _ = _engine(store, {'Library': [_raw(), _raw('Story Hour', days=3)]})

    result = engine.sync([_source('Library')])

    assert result.inserted == 2
    summary = result.sources[0]
    assert summary.status == 'ok'
    assert summary.fetched == 2
    assert len(store.get_all_events()) == 2


def test_sync_is_idempotent(store):
    """Test identical input twice adds no records and changes nothing."""
    engine, _ = _engine(store, {'Library': [_raw(), _raw('Story Hour', days=3)]})
    engine.sync([_source('Library')])
    before = store.get_all_events()

    result = engine.sync([_source('Library')])

    assert result.inserted == 0
    assert result.updated == 0
    assert result.unchanged == 2
    after = store.get_all_events()
    assert after.keys() == before.keys()
    for event_id, event in after.items():
        assert event.description == before[event_id].description
        assert event.last_updated == before[event_id].last_updated


def test_reobservation_updates_in_place(store):
    engine, adapter = _engine(store, {'Library': [_raw()]})
    engine.sync([_source('Library')])

    adapter.feeds['Library'] = [_raw(description='Now with puppets', start_time='10:30 AM', location='Room B')]
    result = engine.sync([_source('Library')])

    assert result.updated == 1
    events = list(store.get_all_events().values())
    assert len(events) == 1
    assert events[0].description == 'Now with puppets'
    assert events[0].start_time == '10:30'
    assert events[0].location == 'Room B'


def test_same_event_from_two_sources_stays_distinct(store):
    engine, _ = _engine(store, {'Library': [_raw()], 'Museum': [_raw()]})

    result = engine.sync([_source('Library'), _source('Museum')])

    assert result.inserted == 2
    assert sorted(e.source for e in store.get_all_events().values()) == ['Library', 'Museum']


def test_resync_keeps_existing_image(store):
    """Toddler Time gets an image, then a later sync changes only its description."""
    engine, adapter = _engine(store, {'Library': [_raw()]})
    engine.sync([_source('Library')])
    event_id = next(iter(store.get_all_events()))
    store.update_event(event_id, {'image_url': IMAGE_URL, 'image_type': 'image'})
    fingerprint = store.get_event(event_id).image_fingerprint

    adapter.feeds['Library'] = [_raw(description='Bring a blanket')]
    engine.sync([_source('Library')])

    stored = store.get_event(event_id)
    assert stored.description == 'Bring a blanket'
    assert stored.image_url == IMAGE_URL
    assert stored.image_type == 'image'
    assert stored.image_fingerprint == fingerprint


@pytest.mark.parametrize('outage', [
    TransientFetchError('Timeout: read timed out'),
    PermanentFetchError('HTTP 404 from feed', status_code=404),
    [],
])
def test_feed_outage_deletes_nothing(store, outage):
    """A source returning nothing or failing leaves its stored events alone."""
    engine, adapter = _engine(store, {'Library': [_raw(), _raw('Story Hour')], 'Museum': [_raw('Gallery Walk')]})
    engine.sync([_source('Library'), _source('Museum')])
    before = store.get_all_events()

    adapter.feeds['Library'] = outage
    adapter.feeds['Museum'] = [_raw('Gallery Walk', description='Updated')]
    result = engine.sync([_source('Library'), _source('Museum')])

    after = store.get_all_events()
    assert after.keys() == before.keys()
    for event_id, event in after.items():
        if event.source == 'Library':
            assert event == before[event_id]

    library, museum = result.sources
    assert library.status == ('ok' if outage == [] else 'failed')
    assert museum.status == 'ok'
    assert museum.updated == 1


def test_failed_source_reports_error(store):
    engine, _ = _engine(store, {'Library': TransientFetchError('connection reset')})

    result = engine.sync([_source('Library')])

    assert result.failed_sources == ['Library']
    assert result.sources[0].errors == ['connection reset']
    assert result.to_dict()['totals']['sources_failed'] == 1


def test_unexpected_adapter_error_is_isolated(store):
    engine, _ = _engine(store, {'Library': RuntimeError('parser bug'), 'Museum': [_raw()]})

    result = engine.sync([_source('Library'), _source('Museum')])

    assert [s.status for s in result.sources] == ['failed', 'ok']
    assert result.inserted == 1


def test_manual_events_untouched(store):
    manual = store.create_manual_event(
        title='Toddler Time',
        event_date=future_date(7),
        start_time='09:00',
        description='Hand-entered'
    )
    engine, _ = _engine(store, {'Library': [_raw()]})

    engine.sync([_source('Library')])
    engine.sync([_source('Library')])

    assert len(store.get_all_events()) == 2
    stored = store.get_event(manual.event_id)
    assert stored.description == 'Hand-entered'
    assert stored.start_time == '09:00'
    assert stored.last_updated == manual.last_updated


def test_reserved_source_tag_refused(store):
    engine, adapter = _engine(store, {MANUAL_SOURCE: [_raw()]})

    result = engine.sync([_source(MANUAL_SOURCE)])

    assert result.sources[0].status == 'failed'
    assert adapter.calls == []
    assert store.get_all_events() == {}


def test_failed_entries_make_source_partial(store):
    feed = FeedResult(
        source='Library',
        events=[_raw()],
        failed_entries=[FailedEntry(reference='uid-9', error='missing DTSTART')]
    )
    engine, _ = _engine(store, {'Library': feed})

    summary = engine.sync([_source('Library')]).sources[0]

    assert summary.status == 'partial'
    assert summary.failed_entries == 1
    assert summary.inserted == 1


def test_write_failure_recorded_and_run_continues(store):
    engine, _ = _engine(store, {'Library': [_raw('First'), _raw('Second')]})
    error = ClientError({'Error': {'Code': 'InternalServerError', 'Message': 'down'}}, 'PutItem')
    real_insert = store.insert_event

    def failing_insert(event):
        if event.title == 'First':
            raise error
        return real_insert(event)

    with patch.object(store, 'insert_event', side_effect=failing_insert):
        summary = engine.sync([_source('Library')]).sources[0]

    assert summary.status == 'partial'
    assert summary.write_failures == 1
    assert summary.inserted == 1
    assert [e.title for e in store.get_all_events().values()] == ['Second']


def test_sources_past_time_budget_are_skipped(store):
    engine, adapter = _engine(store, {'Library': [_raw()], 'Museum': [_raw()]})

    result = engine.sync([_source('Library'), _source('Museum')], time_budget=0)

    assert [s.status for s in result.sources] == ['skipped', 'skipped']
    assert adapter.calls == []


def test_each_source_gets_its_own_fetch_deadline(store):
    engine, adapter = _engine(
        store, {'Library': [_raw()], 'Museum': [_raw()]}, source_timeout=45, clock=lambda: 1000.0
    )

    engine.sync([_source('Library'), _source('Museum')])

    assert adapter.deadlines == [1045.0, 1045.0]


def test_fetch_deadline_capped_by_run_budget(store):
    engine, adapter = _engine(store, {'Library': [_raw()]}, source_timeout=45, clock=lambda: 1000.0)

    engine.sync([_source('Library')], time_budget=20)

    assert adapter.deadlines == [1020.0]


def test_deadline_failure_fails_only_that_source(store):
    engine, _ = _engine(store, {
        'Library': DeadlineExceededError('Fetch deadline passed before requesting https://library.example.org/feed'),
        'Museum': [_raw('Gallery Walk')],
    })

    result = engine.sync([_source('Library'), _source('Museum')])

    assert [s.status for s in result.sources] == ['failed', 'ok']
    assert [e.title for e in store.get_all_events().values()] == ['Gallery Walk']


def test_disabled_source_ignored(store):
    engine, adapter = _engine(store, {'Library': [_raw()]})

    result = engine.sync([_source('Library', enabled=False)])

    assert result.sources == []
    assert adapter.calls == []


def test_source_defaults_and_window(store):
    """Test the source category fills gaps and its window override is used."""
    engine, adapter = _engine(store, {'Library': [_raw(category=''), _raw('Far Future', days=60)]})

    engine.sync([_source('Library', category='Education', days_ahead=30)])

    events = list(store.get_all_events().values())
    assert [e.title for e in events] == ['Toddler Time']
    assert events[0].category == 'Education'
    window = adapter.calls[0][1]
    assert (window.end - window.start).days == 31


def test_changed_fields():
    incoming = make_event(description='New', end_time=None)
    stored = CatalogEvent(
        **{**incoming.__dict__, 'description': 'Old', 'end_time': '11:00'},
        created_at='2025-01-01T00:00:00+00:00',
        last_updated=0,
        image_url=IMAGE_URL,
        image_type='image'
    )

    assert changed_fields(stored, incoming) == {'description': 'New', 'end_time': None}
