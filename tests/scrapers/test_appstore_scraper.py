from unittest.mock import MagicMock, patch

from config import AppStoreConfig, RateLimitConfig
from review_triage.scrapers.appstore_scraper import AppStoreAdapter, parse_feed
from review_triage.scrapers.context import ScrapeContext

FEED = b"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns:im="http://itunes.apple.com/rss" xmlns="http://www.w3.org/2005/Atom">
  <id>https://itunes.apple.com/us/rss/customerreviews/id=123/xml</id>
  <title>Customer reviews</title>
  <entry>
    <id>11111</id>
    <title>Constant crashes</title>
    <updated>2025-04-22T07:00:00-07:00</updated>
    <author><name>ops_person</name></author>
    <link rel="alternate" href="https://apps.apple.com/us/review?id=11111"/>
    <im:rating>1</im:rating>
    <im:version>4.2.0</im:version>
    <content type="text">The app crashes every time I open the DNS dashboard.</content>
    <content type="html">&lt;p&gt;The app crashes every time I open the DNS dashboard.&lt;/p&gt;</content>
  </entry>
  <entry>
    <id>22222</id>
    <title>App listing</title>
    <updated>2025-04-21T07:00:00-07:00</updated>
    <content type="text">Description of the app, not a review.</content>
  </entry>
</feed>
"""

EMPTY_FEED = b"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom"><id>x</id><title>none</title></feed>
"""


def _response(content):
    resp = MagicMock()
    resp.status_code = 200
    resp.content = content
    return resp


def test_parse_feed_keeps_rated_entries_only():
    reviews = parse_feed(FEED, "123", "us")

    assert len(reviews) == 1
    review = reviews[0]
    assert review.id == "appstore-11111"
    assert review.source == "appstore"
    assert review.rating == 1.0
    assert review.title == "Constant crashes"
    assert "DNS dashboard" in review.content
    assert "<p>" not in review.content
    assert review.metadata["country"] == "us"
    assert review.created_at is not None


def test_adapter_stops_country_on_empty_page():
    session = MagicMock()
    session.get.side_effect = [_response(FEED), _response(EMPTY_FEED), _response(EMPTY_FEED)]
    adapter = AppStoreAdapter(
        AppStoreConfig(enabled=True, app_id="123", countries=["us", "gb"], max_pages=3),
        RateLimitConfig(pause_between_requests=False),
        session=session,
    )

    reviews = adapter.scrape(ScrapeContext(timeout=5))

    assert [r.id for r in reviews] == ["appstore-11111"]
    urls = [call.args[0] for call in session.get.call_args_list]
    assert urls[0].startswith("https://itunes.apple.com/us/rss/customerreviews/page=1/id=123")
    assert urls[1].startswith("https://itunes.apple.com/us/rss/customerreviews/page=2/id=123")
    assert urls[2].startswith("https://itunes.apple.com/gb/rss/customerreviews/page=1/id=123")


def test_adapter_pauses_only_between_requests():
    session = MagicMock()
    session.get.side_effect = [_response(FEED), _response(EMPTY_FEED), _response(EMPTY_FEED)]
    adapter = AppStoreAdapter(
        AppStoreConfig(enabled=True, app_id="123", countries=["us", "gb"], max_pages=3),
        RateLimitConfig(pause_between_requests=True, pause_duration=30.0),
        session=session,
    )

    with patch.object(adapter, "_pause") as pause:
        adapter.scrape(ScrapeContext(timeout=5))

    assert session.get.call_count == 3
    assert pause.call_count == 2
