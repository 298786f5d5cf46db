"""
Trustpilot review page scraper (paginated HTML, parsed with BeautifulSoup4).
Selectors follow Trustpilot's review markup and may need updating if it changes.
"""

import logging
from datetime import datetime, timedelta, timezone

from bs4 import BeautifulSoup

from config import ProxyConfig, RateLimitConfig, TrustpilotConfig
from review_triage.errors import ScrapeCancelled, ScrapeError
from review_triage.models import Review, utcnow
from review_triage.scrapers.base import SourceAdapter, _clean_text, _parse_rating
from review_triage.scrapers.context import ScrapeContext

logger = logging.getLogger(__name__)

DATE_FORMATS = ("%b %d, %Y", "%B %d, %Y", "%d %b %Y", "%Y-%m-%d")


def _parse_review_date(raw: str) -> datetime | None:
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(raw.strip(), fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def parse_review_page(html: str, business_id: str, base_url: str, page: int) -> tuple[list[Review], bool]:
    """
    解析单页评论 (Parse one review page).
    Returns (reviews, has_more_pages).
    """
    soup = BeautifulSoup(html, "html.parser")
    retrieved = utcnow()
    reviews: list[Review] = []

    for idx, item in enumerate(soup.select("article.review")):
        review_id = item.get("id") or f"{business_id}-{page}-{idx}"

        rating = None
        star_img = item.select_one("div.star-rating img")
        if star_img is not None:
            rating = _parse_rating(star_img.get("alt", ""))

        title_el = item.select_one("h2.review-content__title")
        content_el = item.select_one("p.review-content__text")
        author_el = item.select_one("div.consumer-information__name")
        date_el = item.select_one("div.review-content-header__dates")
        reply_el = item.select_one("div.brand-reply")

        content = _clean_text(content_el.get_text(" ", strip=True) if content_el else "")
        if not content:
            continue

        created_at = _parse_review_date(date_el.get_text(strip=True)) if date_el else None
        if created_at is None:
            # Undated reviews: approximate by position, each one a day older
            created_at = retrieved - timedelta(days=(page - 1) * 10 + idx)

        vendor_response = _clean_text(reply_el.get_text(" ", strip=True)) if reply_el else ""
        metadata = {
            "platform": "Trustpilot",
            "business_id": business_id,
            "review_page": page,
            "review_index": idx,
            "has_vendor_response": bool(vendor_response),
        }
        if vendor_response:
            metadata["vendor_response"] = vendor_response

        reviews.append(
            Review(
                id=f"trustpilot-{review_id}",
                source="trustpilot",
                source_id=review_id,
                content=content,
                title=_clean_text(title_el.get_text(strip=True)) if title_el else "",
                author=_clean_text(author_el.get_text(strip=True)) if author_el else "",
                rating=rating,
                url=f"{base_url}/reviews/{business_id}#{review_id}",
                created_at=created_at,
                retrieved_at=retrieved,
                metadata=metadata,
            )
        )

    has_more = soup.select_one("a.pagination-link--next") is not None
    return reviews, has_more


class TrustpilotAdapter(SourceAdapter):
    name = "Trustpilot"

    def __init__(self, config: TrustpilotConfig, rate_limits: RateLimitConfig | None = None,
                 proxy: ProxyConfig | None = None, session=None):
        super().__init__(config.enabled, rate_limits, proxy, session)
        self.config = config

    def _scrape(self, ctx: ScrapeContext, collected: list[Review]) -> None:
        max_pages = self.config.max_pages if self.config.max_pages > 0 else 5
        base_url = self.config.base_url.rstrip("/")
        for page in range(1, max_pages + 1):
            ctx.check(self.name)
            url = f"{base_url}/review/{self.config.business_id}"
            try:
                resp = self._get(ctx, url, params={"page": page})
            except ScrapeCancelled:
                raise
            except ScrapeError as exc:
                raise ScrapeError(self.name, f"error scraping Trustpilot page {page}: {exc.message}") from exc

            reviews, has_more = parse_review_page(resp.text, self.config.business_id, base_url, page)
            collected.extend(reviews)
            logger.info("[TRUSTPILOT] page=%s reviews=%s", page, len(reviews))

            if not has_more:
                break
            if page < max_pages:
                self._pause(ctx)
