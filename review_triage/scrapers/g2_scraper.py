"""G2 review adapter (paginated JSON API, bearer token)."""

import logging
from datetime import datetime

from config import G2Config, ProxyConfig, RateLimitConfig
from review_triage.errors import ScrapeCancelled, ScrapeError
from review_triage.models import Review, utcnow
from review_triage.scrapers.base import SourceAdapter, _clean_text
from review_triage.scrapers.context import ScrapeContext

logger = logging.getLogger(__name__)


def _parse_iso(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None


def convert_g2_review(item: dict, product_id: str) -> Review | None:
    """Map one G2 API review object to a Review; None when it has no text."""
    review_id = str(item.get("id", "")).strip()
    content = _clean_text(item.get("review_text", ""))
    if not review_id or not content:
        return None

    reviewer = item.get("reviewer_info") or {}
    vendor = item.get("vendor_response") or {}
    stars = item.get("stars")
    metadata = {
        "platform": "G2",
        "product_id": product_id,
        "pros": item.get("pros", ""),
        "cons": item.get("cons", ""),
        "use_case": item.get("use_case", ""),
        "reviewer_title": reviewer.get("job_title", ""),
        "company_size": reviewer.get("company_size", ""),
        "industry": reviewer.get("industry", ""),
        "time_used": reviewer.get("time_used", ""),
        "is_verified": bool(reviewer.get("is_verified", False)),
        "has_vendor_response": bool(vendor.get("response_text")),
    }
    if vendor.get("response_text"):
        metadata["vendor_response"] = vendor["response_text"]

    return Review(
        id=f"g2-{review_id}",
        source="g2",
        source_id=review_id,
        content=content,
        title=_clean_text(item.get("headline", "")),
        author=reviewer.get("reviewer_name", ""),
        rating=float(stars) if stars is not None else None,
        url=f"https://www.g2.com/products/{product_id}/reviews#review-{review_id}",
        created_at=_parse_iso(item.get("created_at")),
        retrieved_at=utcnow(),
        metadata=metadata,
    )


class G2Adapter(SourceAdapter):
    name = "G2"

    def __init__(self, config: G2Config, rate_limits: RateLimitConfig | None = None,
                 proxy: ProxyConfig | None = None, session=None):
        super().__init__(config.enabled, rate_limits, proxy, session)
        self.config = config

    def _scrape(self, ctx: ScrapeContext, collected: list[Review]) -> None:
        max_pages = self.config.max_pages if self.config.max_pages > 0 else 5
        url = f"{self.config.base_url.rstrip('/')}/products/{self.config.product_id}/reviews"
        headers = {"Accept": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"

        for page in range(1, max_pages + 1):
            ctx.check(self.name)
            try:
                resp = self._get(ctx, url, params={"page": page}, headers=headers)
            except ScrapeCancelled:
                raise
            except ScrapeError as exc:
                raise ScrapeError(self.name, f"error scraping G2 page {page}: {exc.message}") from exc

            payload = resp.json()
            for item in payload.get("reviews", []):
                review = convert_g2_review(item, self.config.product_id)
                if review is not None:
                    collected.append(review)

            pagination = payload.get("pagination") or {}
            total_pages = int(pagination.get("total_pages", page) or page)
            logger.info("[G2] page=%s/%s total=%s", page, total_pages, len(collected))
            if page >= total_pages:
                break
            if page < max_pages:
                self._pause(ctx)
