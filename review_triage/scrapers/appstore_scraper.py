"""
App Store customer review scraper (RSS/Atom feed per country, parsed with feedparser).
"""

import logging
from datetime import datetime, timezone

import feedparser

from config import AppStoreConfig, ProxyConfig, RateLimitConfig
from review_triage.errors import ScrapeError
from review_triage.models import Review, utcnow
from review_triage.scrapers.base import SourceAdapter, _clean_text, _parse_rating
from review_triage.scrapers.context import ScrapeContext

logger = logging.getLogger(__name__)

FEED_URL = "https://itunes.apple.com/{country}/rss/customerreviews/page={page}/id={app_id}/sortby=mostrecent/xml"


def parse_date(entry: dict) -> datetime | None:
    """
    从 RSS 条目中解析日期 (Parse date from RSS entry).
    尝试读取 'updated_parsed' 或 'published_parsed' 字段。
    """
    for field in ("updated_parsed", "published_parsed"):
        parsed = entry.get(field)
        if parsed:
            try:
                return datetime(*parsed[:6], tzinfo=timezone.utc)
            except (TypeError, ValueError):
                continue
    return None


def get_content(entry: dict) -> str:
    """
    获取评论正文 (Extract review body).
    The feed carries a text and an html rendering; prefer the plain one.
    """
    contents = entry.get("content") or []
    for item in contents:
        if item.get("type") == "text/plain" and item.get("value"):
            return _clean_text(item["value"])
    if contents:
        return _clean_text(contents[0].get("value", ""))
    return _clean_text(entry.get("summary", ""))


def parse_feed(raw: bytes | str, app_id: str, country: str) -> list[Review]:
    feed = feedparser.parse(raw)
    if feed.bozo and not feed.entries:
        raise ScrapeError("App Store", f"feed error for {country}: {feed.bozo_exception}")

    reviews: list[Review] = []
    for entry in feed.entries:
        content = get_content(entry)
        entry_id = str(entry.get("id", "")).rsplit("/", 1)[-1]
        # The first entry of older feeds describes the app itself, not a review
        if not content or not entry_id or entry.get("im_rating") is None:
            continue
        reviews.append(
            Review(
                id=f"appstore-{entry_id}",
                source="appstore",
                source_id=entry_id,
                content=content,
                title=_clean_text(entry.get("title", "")),
                author=entry.get("author", ""),
                rating=_parse_rating(str(entry.get("im_rating", ""))),
                url=entry.get("link", ""),
                created_at=parse_date(entry),
                retrieved_at=utcnow(),
                metadata={
                    "platform": "App Store",
                    "app_id": app_id,
                    "country": country,
                    "version": entry.get("im_version", ""),
                },
            )
        )
    return reviews


class AppStoreAdapter(SourceAdapter):
    name = "App Store"

    def __init__(self, config: AppStoreConfig, rate_limits: RateLimitConfig | None = None,
                 proxy: ProxyConfig | None = None, session=None):
        super().__init__(config.enabled, rate_limits, proxy, session)
        self.config = config

    def _scrape(self, ctx: ScrapeContext, collected: list[Review]) -> None:
        max_pages = max(1, self.config.max_pages)
        fetched = 0
        for country in self.config.countries:
            for page in range(1, max_pages + 1):
                if fetched:
                    self._pause(ctx)
                url = FEED_URL.format(country=country, page=page, app_id=self.config.app_id)
                # Fetched through the session so the request honours the deadline and proxy
                resp = self._get(ctx, url, headers={"Accept": "application/atom+xml,application/xml"})
                fetched += 1
                reviews = parse_feed(resp.content, self.config.app_id, country)
                collected.extend(reviews)
                logger.info("[APPSTORE] country=%s page=%s reviews=%s", country, page, len(reviews))
                if not reviews:
                    break
