import threading
import time
import unittest
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from unittest.mock import MagicMock

from config import G2Config, RateLimitConfig
from review_triage.errors import ScrapeCancelled, ScrapeError
from review_triage.models import Review
from review_triage.scrapers.base import MAX_RETRIES, SourceAdapter, _build_session, _retry_delay
from review_triage.scrapers.context import ScrapeContext
from review_triage.scrapers.g2_scraper import G2Adapter

NO_PACING = RateLimitConfig(pause_between_requests=False)


class _AlwaysThrottled(BaseHTTPRequestHandler):
    def do_GET(self):
        self.send_response(429)
        self.send_header("Retry-After", "3")
        self.send_header("Content-Length", "0")
        self.end_headers()

    def log_message(self, format, *args):
        pass


def _response(status, retry_after=None):
    resp = MagicMock()
    resp.status_code = status
    resp.headers = {"Retry-After": retry_after} if retry_after is not None else {}
    return resp


class PingAdapter(SourceAdapter):
    name = "Ping"

    def __init__(self, session, error=None):
        super().__init__(True, NO_PACING, session=session)
        self.error = error

    def _scrape(self, ctx, collected):
        self._get(ctx, "https://reviews.example.com/feed")
        collected.append(Review(id="ping-1", source=self.name, source_id="1", content="Slow login page"))
        if self.error is not None:
            raise self.error


class TestThrottledServerRespectsDeadline(unittest.TestCase):

    def setUp(self):
        self.server = ThreadingHTTPServer(("127.0.0.1", 0), _AlwaysThrottled)
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self.thread.start()

    def tearDown(self):
        self.server.shutdown()
        self.server.server_close()

    def test_retry_after_wait_stops_at_deadline(self):
        session = _build_session()
        session.trust_env = False
        port = self.server.server_address[1]
        adapter = G2Adapter(
            G2Config(enabled=True, product_id="acme-ddi", max_pages=1, base_url=f"http://127.0.0.1:{port}/api/v1"),
            NO_PACING,
            session=session,
        )

        started = time.monotonic()
        with self.assertRaises(ScrapeCancelled) as raised:
            adapter.scrape(ScrapeContext(timeout=0.5))
        elapsed = time.monotonic() - started

        self.assertLess(elapsed, 2.0)
        self.assertEqual(raised.exception.source, "G2")


class TestRetries(unittest.TestCase):

    def test_retryable_status_is_retried_then_succeeds(self):
        session = MagicMock()
        session.get.side_effect = [_response(503, retry_after="0"), _response(200)]

        reviews = PingAdapter(session).scrape(ScrapeContext(timeout=5))

        self.assertEqual([r.id for r in reviews], ["ping-1"])
        self.assertEqual(session.get.call_count, 2)

    def test_gives_up_after_max_retries(self):
        session = MagicMock()
        session.get.return_value = _response(500, retry_after="0")

        with self.assertRaises(ScrapeError) as raised:
            PingAdapter(session).scrape(ScrapeContext(timeout=5))

        self.assertNotIsInstance(raised.exception, ScrapeCancelled)
        self.assertIn("500", raised.exception.message)
        self.assertEqual(session.get.call_count, MAX_RETRIES + 1)

    def test_client_errors_are_not_retried(self):
        session = MagicMock()
        session.get.return_value = _response(404)

        with self.assertRaises(ScrapeError):
            PingAdapter(session).scrape(ScrapeContext(timeout=5))
        self.assertEqual(session.get.call_count, 1)

    def test_retry_delay(self):
        self.assertEqual(_retry_delay(_response(429, "2"), 0), 2.0)
        self.assertEqual(_retry_delay(_response(429, "600"), 0), 60.0)
        self.assertAlmostEqual(_retry_delay(_response(503), 1), 1.6)
        self.assertAlmostEqual(_retry_delay(_response(503, "Wed, 21 Oct 2026 07:28:00 GMT"), 0), 0.8)


class TestTransportErrors(unittest.TestCase):

    def test_os_error_keeps_partial_results(self):
        session = MagicMock()
        session.get.return_value = _response(200)
        adapter = PingAdapter(session, error=TimeoutError("transport read timed out"))

        with self.assertRaises(ScrapeError) as raised:
            adapter.scrape(ScrapeContext(timeout=5))

        self.assertNotIsInstance(raised.exception, ScrapeCancelled)
        self.assertEqual(raised.exception.source, "Ping")
        self.assertEqual([r.id for r in raised.exception.partial], ["ping-1"])


if __name__ == "__main__":
    unittest.main()
