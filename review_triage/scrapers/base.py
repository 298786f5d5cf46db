"""
Source adapter contract and the HTTP plumbing shared by all adapters.
Each adapter exposes `name`, `is_enabled()` and `scrape(ctx)`.
"""

import itertools
import logging
import random
import re
import threading
from abc import ABC, abstractmethod
from urllib.parse import urljoin

import requests
from requests.adapters import HTTPAdapter
from urllib3.util import Retry

from config import ProxyConfig, RateLimitConfig
from review_triage.errors import ScrapeCancelled, ScrapeError
from review_triage.models import Review
from review_triage.scrapers.context import ScrapeContext

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0
MAX_RETRIES = 3
RETRY_BACKOFF_FACTOR = 0.8
MAX_RETRY_AFTER_SECONDS = 60.0
RETRY_STATUSES = (429, 500, 502, 503, 504)

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) "
    "Version/17.1 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36",
]

# Browser-like headers for HTML review pages
HEADERS = {
    "User-Agent": USER_AGENTS[0],
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
}


def _build_session() -> requests.Session:
    """创建 HTTP 会话 (Build Request Session).
    Retries and their waits run in SourceAdapter._get under the scrape context,
    so urllib3 must never sleep on its own."""
    session = requests.Session()
    retries = Retry(
        total=0,
        read=False,
        backoff_factor=0,
        respect_retry_after_header=False,
        allowed_methods=("GET",),
    )
    adapter = HTTPAdapter(max_retries=retries)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def _clean_text(text: str | None, max_len: int = 2000) -> str:
    """清洗并截断文本 (Clean and truncate text)."""
    if not text:
        return ""
    text = re.sub(r"<[^>]+>", " ", text)
    text = re.sub(r"\s+", " ", text).strip()
    return text[:max_len]


def _make_absolute(url: str, base_url: str) -> str:
    """确保 URL 是绝对路径 (Ensure URL is absolute)."""
    if url.startswith("http"):
        return url
    return urljoin(base_url, url)


_RATING_RE = re.compile(r"(\d+(?:\.\d+)?)")


def _parse_rating(text: str | None) -> float | None:
    """First number in e.g. 'Rated 4 out of 5 stars', kept only if it is a 1-5 rating."""
    if not text:
        return None
    match = _RATING_RE.search(text)
    if not match:
        return None
    value = float(match.group(1))
    return value if 1.0 <= value <= 5.0 else None


def _backoff(attempt: int) -> float:
    return RETRY_BACKOFF_FACTOR * (2 ** attempt)


def _retry_delay(resp: requests.Response, attempt: int) -> float:
    """Retry-After in seconds when the server sends one, else exponential backoff."""
    header = resp.headers.get("Retry-After") if resp.headers is not None else None
    if isinstance(header, str) and header.strip():
        try:
            return min(max(0.0, float(header)), MAX_RETRY_AFTER_SECONDS)
        except ValueError:
            pass  # HTTP-date form
    return _backoff(attempt)


class SourceAdapter(ABC):
    """
    One origin of feedback.
    Subclasses implement `name` and `_scrape`; `scrape` wraps it so every failure
    leaves as ScrapeError / ScrapeCancelled with the partial results attached.
    """

    name = "source"

    def __init__(
        self,
        enabled: bool,
        rate_limits: RateLimitConfig | None = None,
        proxy: ProxyConfig | None = None,
        session: requests.Session | None = None,
    ):
        self.enabled = enabled
        self.rate_limits = rate_limits or RateLimitConfig()
        self.proxy = proxy or ProxyConfig()
        self.session = session or _build_session()
        self._proxy_cycle = itertools.cycle(self.proxy.proxy_urls()) if self.proxy.proxy_urls() else None
        self._proxy_lock = threading.Lock()
        self._request_count = 0

    def is_enabled(self) -> bool:
        return self.enabled

    def scrape(self, ctx: ScrapeContext) -> list[Review]:
        collected: list[Review] = []
        try:
            ctx.check(self.name)
            self._scrape(ctx, collected)
        except ScrapeCancelled as exc:
            raise ScrapeCancelled(self.name, exc.message, collected) from exc
        except ScrapeError as exc:
            raise ScrapeError(self.name, exc.message, collected or exc.partial) from exc
        except (requests.RequestException, OSError, ValueError, KeyError, TypeError) as exc:
            if ctx.cancelled:
                raise ScrapeCancelled(self.name, ctx.reason, collected) from exc
            raise ScrapeError(self.name, str(exc), collected) from exc
        return collected

    @abstractmethod
    def _scrape(self, ctx: ScrapeContext, collected: list[Review]) -> None:
        """Append reviews to `collected` as they are parsed."""

    # --- HTTP helpers ---

    def _user_agent(self) -> str:
        if self.rate_limits.randomize_user_agents:
            return random.choice(USER_AGENTS)
        return USER_AGENTS[0]

    def _next_proxies(self) -> dict[str, str] | None:
        if self._proxy_cycle is None:
            return None
        with self._proxy_lock:
            proxy_url = next(self._proxy_cycle)
        return {"http": proxy_url, "https": proxy_url}

    def _get(
        self,
        ctx: ScrapeContext,
        url: str,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> requests.Response:
        """
        GET bounded by the context deadline; non-2xx raises ScrapeError.
        Connection errors and 429/5xx are retried up to MAX_RETRIES times, waiting
        through ctx.sleep so a cancel or the deadline interrupts the backoff.
        """
        request_headers = dict(HEADERS)
        request_headers["User-Agent"] = self._user_agent()
        if headers:
            request_headers.update(headers)

        for attempt in range(MAX_RETRIES + 1):
            ctx.check(self.name)
            try:
                resp = self.session.get(
                    url,
                    params=params,
                    headers=request_headers,
                    proxies=self._next_proxies(),
                    timeout=ctx.request_timeout(DEFAULT_REQUEST_TIMEOUT),
                )
            except (requests.ConnectionError, requests.Timeout) as exc:
                if attempt == MAX_RETRIES or ctx.cancelled:
                    raise
                logger.warning("[%s] %s failed (%s), retry %s/%s", self.name, url, exc, attempt + 1, MAX_RETRIES)
                ctx.sleep(_backoff(attempt), self.name)
                continue
            self._request_count += 1
            if resp.status_code in RETRY_STATUSES and attempt < MAX_RETRIES:
                delay = _retry_delay(resp, attempt)
                logger.warning(
                    "[%s] %s returned %s, retry %s/%s in %.1fs",
                    self.name, url, resp.status_code, attempt + 1, MAX_RETRIES, delay,
                )
                ctx.sleep(delay, self.name)
                continue
            break

        if resp.status_code != 200:
            raise ScrapeError(self.name, f"{url} returned non-OK status: {resp.status_code}")
        return resp

    def _pause(self, ctx: ScrapeContext) -> None:
        """Pacing between requests, cancellable through the context."""
        limits = self.rate_limits
        if not limits.pause_between_requests:
            ctx.check(self.name)
            return
        if limits.pause_after_requests and self._request_count % limits.pause_after_requests:
            ctx.check(self.name)
            return
        delay = limits.pause_duration
        if limits.requests_per_minute > 0:
            delay = max(delay, 60.0 / limits.requests_per_minute)
        ctx.sleep(delay, self.name)
