"""
静态网页评论抓取器 (Static Web Review Scraper)
Scrapes review pages of sites without a dedicated adapter, driven by CSS selectors.
"""

import hashlib
import logging

from bs4 import BeautifulSoup

from config import CustomSiteConfig, ProxyConfig, RateLimitConfig
from review_triage.models import Review, utcnow
from review_triage.scrapers.base import SourceAdapter, _clean_text, _make_absolute, _parse_rating
from review_triage.scrapers.context import ScrapeContext

logger = logging.getLogger(__name__)


def _slug(name: str) -> str:
    return "".join(ch if ch.isalnum() else "-" for ch in name.lower()).strip("-")


def scrape_generic_page(site: CustomSiteConfig, html: str, page_url: str) -> tuple[list[Review], str]:
    """
    通用评论列表解析 (Generic review list parser).
    Returns (reviews, next_page_url); next_page_url is "" on the last page.
    """
    soup = BeautifulSoup(html, "html.parser")
    source = _slug(site.name)
    reviews: list[Review] = []

    for item in soup.select(site.review_selector):
        content_el = item.select_one(site.content_selector) if site.content_selector else item
        content = _clean_text(content_el.get_text(" ", strip=True) if content_el else "")
        if not content:
            continue

        title_el = item.select_one(site.title_selector) if site.title_selector else None
        author_el = item.select_one(site.author_selector) if site.author_selector else None
        date_el = item.select_one(site.date_selector) if site.date_selector else None

        rating = None
        if site.rating_selector:
            rating_el = item.select_one(site.rating_selector)
            if rating_el is not None:
                # star widgets keep the value in an attribute more often than in text
                rating = _parse_rating(
                    rating_el.get("aria-label") or rating_el.get("alt") or rating_el.get("title")
                    or rating_el.get_text(strip=True)
                )

        link_el = item.select_one("a[href]")
        url = _make_absolute(link_el.get("href", ""), page_url) if link_el else page_url
        native_id = item.get("id") or item.get("data-review-id") or hashlib.sha1(
            content.encode("utf-8")
        ).hexdigest()[:16]

        reviews.append(
            Review(
                id=f"{source}-{native_id}",
                source=source,
                source_id=native_id,
                content=content,
                title=_clean_text(title_el.get_text(strip=True)) if title_el else "",
                author=_clean_text(author_el.get_text(strip=True)) if author_el else "",
                rating=rating,
                url=url,
                retrieved_at=utcnow(),
                metadata={
                    "platform": site.name,
                    "date_text": _clean_text(date_el.get_text(strip=True)) if date_el else "",
                },
            )
        )

    next_url = ""
    if site.next_page_selector:
        next_el = soup.select_one(site.next_page_selector)
        if next_el is not None and next_el.get("href"):
            next_url = _make_absolute(next_el["href"], page_url)
    return reviews, next_url


class CustomSiteAdapter(SourceAdapter):
    def __init__(self, site: CustomSiteConfig, rate_limits: RateLimitConfig | None = None,
                 proxy: ProxyConfig | None = None, session=None):
        super().__init__(site.enabled, rate_limits, proxy, session)
        self.site = site
        self.name = site.name

    def _scrape(self, ctx: ScrapeContext, collected: list[Review]) -> None:
        logger.info("[WEB] Fetching %s: %s", self.site.name, self.site.url)
        url = self.site.url
        for page in range(1, max(1, self.site.max_pages) + 1):
            resp = self._get(ctx, url)
            reviews, next_url = scrape_generic_page(self.site, resp.text, url)
            collected.extend(reviews)
            logger.info("[WEB] Got %s reviews from %s (page %s)", len(reviews), self.site.name, page)
            if not next_url or page >= self.site.max_pages:
                break
            url = next_url
            self._pause(ctx)
