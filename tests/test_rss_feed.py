"""Unit tests for the RSS/Atom adapter."""
from datetime import date

import pytest

from processor.models import FeedSource, SyncWindow
from scraper.http_client import PermanentFetchError
from scraper.rss_feed import RssFeedAdapter

WINDOW = SyncWindow(start=date(2025, 6, 1), end=date(2025, 6, 30))
SOURCE = FeedSource(name='Community Board', url='https://board.example.org/feed', format='rss')

FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:ev="http://purl.org/rss/1.0/modules/event/">
  <channel>
    <title>Community Board</title>
    <link>https://board.example.org/</link>
    <description>Upcoming events</description>
    <item>
      <title>Beach Cleanup</title>
      <link>https://board.example.org/beach-cleanup</link>
      <guid>beach-cleanup</guid>
      <description>&lt;p&gt;Bring &lt;b&gt;gloves&lt;/b&gt;&lt;/p&gt;</description>
      <category>Volunteering</category>
      <ev:startdate>2025-06-14T09:00:00-07:00</ev:startdate>
      <ev:enddate>2025-06-14T12:00:00-07:00</ev:enddate>
      <ev:location>Ocean Beach Pier</ev:location>
      <pubDate>Mon, 02 Jun 2025 08:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Farmers Market</title>
      <link>https://board.example.org/market</link>
      <guid>market</guid>
      <description>Weekly market</description>
      <pubDate>Tue, 10 Jun 2025 18:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Last Year</title>
      <guid>old</guid>
      <pubDate>Tue, 10 Jun 2024 18:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Undated</title>
      <guid>undated</guid>
    </item>
  </channel>
</rss>
"""


class TestRssFeedAdapter:

    def test_parse_feed(self):
        adapter = RssFeedAdapter()

        result = adapter.parse_feed(FEED, SOURCE, WINDOW)

        titles = [e.title for e in result.events]
        assert titles == ['Beach Cleanup', 'Farmers Market']

    def test_event_module_fields(self):
        """Test ev:startdate, ev:enddate and ev:location take precedence."""
        adapter = RssFeedAdapter()

        event = adapter.parse_feed(FEED, SOURCE, WINDOW).events[0]

        assert event.date == '2025-06-14'
        assert event.start_time == '09:00'
        assert event.end_time == '12:00'
        assert event.location == 'Ocean Beach Pier'
        assert event.category == 'Volunteering'
        assert event.url == 'https://board.example.org/beach-cleanup'
        assert 'gloves' in event.description

    def test_publication_date_fallback(self):
        adapter = RssFeedAdapter()

        event = adapter.parse_feed(FEED, SOURCE, WINDOW).events[1]

        assert event.date == '2025-06-10'
        assert event.start_time == '11:00'
        assert event.category == 'Community'

    def test_undated_item_is_failed_entry(self):
        adapter = RssFeedAdapter()

        result = adapter.parse_feed(FEED, SOURCE, WINDOW)

        assert [f.reference for f in result.failed_entries] == ['undated']

    def test_not_a_feed(self):
        adapter = RssFeedAdapter()

        with pytest.raises(PermanentFetchError):
            adapter.parse_feed('<html><body><p>Maintenance</p></body></html>', SOURCE, WINDOW)
