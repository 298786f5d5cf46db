"""
Twitter keyword search adapter (v1.1 search/tweets, OAuth 1.0a user context).
"""

import base64
import hashlib
import hmac
import logging
import re
import time
import uuid
from datetime import datetime
from urllib.parse import quote

from config import ProxyConfig, RateLimitConfig, TwitterConfig
from review_triage.errors import ScrapeCancelled, ScrapeError
from review_triage.models import Review, utcnow
from review_triage.scrapers.base import SourceAdapter
from review_triage.scrapers.context import ScrapeContext

logger = logging.getLogger(__name__)

SEARCH_URL = "https://api.twitter.com/1.1/search/tweets.json"
TWEET_TIME_FORMAT = "%a %b %d %H:%M:%S %z %Y"  # "Wed Oct 10 20:19:24 +0000 2018"
_URL_RE = re.compile(r"https?://\S+")


def _percent_encode(value: str) -> str:
    """RFC 3986 encoding as OAuth 1.0a requires (only unreserved chars left as-is)."""
    return quote(str(value), safe="~")


def build_signature_base(method: str, url: str, params: dict[str, str]) -> str:
    """METHOD&enc(url)&enc(sorted k=v pairs), names and values encoded before sorting."""
    encoded = sorted((_percent_encode(k), _percent_encode(v)) for k, v in params.items())
    param_string = "&".join(f"{k}={v}" for k, v in encoded)
    return "&".join((method.upper(), _percent_encode(url), _percent_encode(param_string)))


def sign_request(
    method: str,
    url: str,
    query: dict[str, str],
    config: TwitterConfig,
    timestamp: str | None = None,
    nonce: str | None = None,
) -> str:
    """
    Build the OAuth Authorization header for a request sent with exactly `query`.
    The signature covers every query parameter plus the oauth_* parameters.
    """
    oauth_params = {
        "oauth_consumer_key": config.api_key,
        "oauth_nonce": nonce or uuid.uuid4().hex,
        "oauth_signature_method": "HMAC-SHA1",
        "oauth_timestamp": timestamp or str(int(time.time())),
        "oauth_token": config.access_token,
        "oauth_version": "1.0",
    }
    base_string = build_signature_base(method, url, {**query, **oauth_params})
    signing_key = f"{_percent_encode(config.api_secret)}&{_percent_encode(config.access_secret)}"
    digest = hmac.new(signing_key.encode("utf-8"), base_string.encode("utf-8"), hashlib.sha1).digest()
    oauth_params["oauth_signature"] = base64.b64encode(digest).decode("ascii")

    header_parts = [
        f'{_percent_encode(k)}="{_percent_encode(v)}"' for k, v in sorted(oauth_params.items())
    ]
    return "OAuth " + ", ".join(header_parts)


def engagement_rating(favorites: int, retweets: int) -> float:
    """Pseudo-rating: heavily engaged tweets score lower (more likely a complaint thread)."""
    return 5.0 - min(5.0, (favorites + retweets) / 10.0)


def parse_tweet_time(raw: str) -> datetime | None:
    try:
        return datetime.strptime(raw, TWEET_TIME_FORMAT)
    except (TypeError, ValueError):
        return None


class TwitterAdapter(SourceAdapter):
    name = "Twitter"

    def __init__(self, config: TwitterConfig, rate_limits: RateLimitConfig | None = None,
                 proxy: ProxyConfig | None = None, session=None):
        super().__init__(config.enabled, rate_limits, proxy, session)
        self.config = config

    def _scrape(self, ctx: ScrapeContext, collected: list[Review]) -> None:
        keywords = self.config.keywords
        for idx, keyword in enumerate(keywords):
            ctx.check(self.name)
            try:
                tweets = self._search(ctx, keyword)
            except ScrapeCancelled:
                raise
            except ScrapeError as exc:
                raise ScrapeError(
                    self.name, f"error searching tweets for keyword '{keyword}': {exc.message}"
                ) from exc

            kept = self._filter(tweets)
            collected.extend(self._to_review(tweet) for tweet in kept)
            logger.info("[TWITTER] keyword=%r tweets=%s kept=%s", keyword, len(tweets), len(kept))

            if idx < len(keywords) - 1:
                self._pause(ctx)

    def _search(self, ctx: ScrapeContext, keyword: str) -> list[dict]:
        query = {
            "q": keyword,
            "count": str(self.config.max_results),
            "tweet_mode": "extended",
            "result_type": "recent",
            "lang": self.config.language,
        }
        auth = sign_request("GET", SEARCH_URL, query, self.config)
        resp = self._get(ctx, SEARCH_URL, params=query, headers={"Authorization": auth})
        payload = resp.json()
        statuses = payload.get("statuses", [])
        if not isinstance(statuses, list):
            raise ScrapeError(self.name, "unexpected search response shape")
        return statuses

    def _filter(self, tweets: list[dict]) -> list[dict]:
        if not self.config.exclude_words:
            return tweets
        excluded = [word.lower() for word in self.config.exclude_words]
        return [
            tweet for tweet in tweets
            if not any(word in _tweet_text(tweet).lower() for word in excluded)
        ]

    def _to_review(self, tweet: dict) -> Review:
        tweet_id = str(tweet.get("id_str") or tweet.get("id", ""))
        screen_name = (tweet.get("user") or {}).get("screen_name", "")
        entities = tweet.get("entities") or {}
        hashtags = [tag.get("text", "") for tag in entities.get("hashtags", []) if tag.get("text")]
        favorites = int(tweet.get("favorite_count", 0) or 0)
        retweets = int(tweet.get("retweet_count", 0) or 0)

        metadata = {
            "retweet_count": retweets,
            "favorite_count": favorites,
            "hashtags": hashtags,
        }
        if tweet.get("quoted_status_id_str"):
            metadata["quoted_status_id"] = tweet["quoted_status_id_str"]
        if tweet.get("in_reply_to_status_id_str"):
            metadata["in_reply_to_id"] = tweet["in_reply_to_status_id_str"]
            metadata["in_reply_to_user_id"] = tweet.get("in_reply_to_user_id_str", "")

        return Review(
            id=f"twitter-{tweet_id}",
            source="twitter",
            source_id=tweet_id,
            content=_URL_RE.sub("", _tweet_text(tweet)).strip(),
            author=screen_name,
            rating=engagement_rating(favorites, retweets),
            url=f"https://twitter.com/{screen_name}/status/{tweet_id}",
            created_at=parse_tweet_time(tweet.get("created_at", "")) or utcnow(),
            metadata=metadata,
        )


def _tweet_text(tweet: dict) -> str:
    return tweet.get("full_text") or tweet.get("text") or ""
