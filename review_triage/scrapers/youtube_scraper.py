"""YouTube comment scraper using the YouTube Data API v3."""

import logging
from datetime import datetime
from typing import Any

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from config import ProxyConfig, RateLimitConfig, YouTubeConfig
from review_triage.errors import ScrapeError
from review_triage.models import Review, utcnow
from review_triage.scrapers.base import SourceAdapter, _clean_text
from review_triage.scrapers.context import ScrapeContext

logger = logging.getLogger(__name__)


def _build_search_request_kwargs(*, query: str, max_items: int) -> dict[str, Any]:
    return {
        "part": "snippet",
        "q": query,
        "type": "video",
        "order": "date",
        "maxResults": max_items,
    }


def _parse_published(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None


def _extract_comments(items: list[dict[str, Any]], *, video_id: str, keyword: str) -> list[Review]:
    reviews: list[Review] = []
    for item in items:
        top = (item.get("snippet") or {}).get("topLevelComment") or {}
        comment_id = top.get("id") or item.get("id", "")
        snippet = top.get("snippet") or {}
        content = _clean_text(snippet.get("textOriginal") or snippet.get("textDisplay", ""))
        if not comment_id or not content:
            continue
        reviews.append(
            Review(
                id=f"youtube-{comment_id}",
                source="youtube",
                source_id=comment_id,
                content=content,
                author=snippet.get("authorDisplayName", ""),
                url=f"https://www.youtube.com/watch?v={video_id}&lc={comment_id}",
                created_at=_parse_published(snippet.get("publishedAt")),
                retrieved_at=utcnow(),
                metadata={
                    "platform": "YouTube",
                    "video_id": video_id,
                    "keyword": keyword,
                    "like_count": int(snippet.get("likeCount", 0) or 0),
                    "reply_count": int((item.get("snippet") or {}).get("totalReplyCount", 0) or 0),
                },
            )
        )
    return reviews


class YouTubeAdapter(SourceAdapter):
    name = "YouTube"

    def __init__(self, config: YouTubeConfig, rate_limits: RateLimitConfig | None = None,
                 proxy: ProxyConfig | None = None, client=None):
        super().__init__(config.enabled, rate_limits, proxy)
        self.config = config
        self._client = client

    def is_enabled(self) -> bool:
        return self.enabled and bool(self.config.api_key or self._client)

    def _youtube(self):
        if self._client is None:
            self._client = build("youtube", "v3", developerKey=self.config.api_key, cache_discovery=False)
        return self._client

    def _scrape(self, ctx: ScrapeContext, collected: list[Review]) -> None:
        youtube = self._youtube()
        try:
            for keyword in self.config.keywords:
                ctx.check(self.name)
                search = youtube.search().list(
                    **_build_search_request_kwargs(query=keyword, max_items=self.config.max_videos)
                ).execute()
                video_ids = [
                    item.get("id", {}).get("videoId", "")
                    for item in search.get("items", [])
                    if item.get("id", {}).get("videoId")
                ]
                for index, video_id in enumerate(video_ids):
                    if index:
                        self._pause(ctx)
                    ctx.check(self.name)
                    threads = youtube.commentThreads().list(
                        part="snippet",
                        videoId=video_id,
                        maxResults=self.config.max_comments,
                        order="relevance",
                        textFormat="plainText",
                    ).execute()
                    collected.extend(
                        _extract_comments(threads.get("items", []), video_id=video_id, keyword=keyword)
                    )
                logger.info("[YOUTUBE] keyword=%r videos=%s total=%s", keyword, len(video_ids), len(collected))
        except HttpError as exc:
            raise ScrapeError(self.name, f"YouTube API error: {exc}") from exc
