"""
Scrape orchestrator: runs every enabled adapter concurrently under one deadline
and merges the results.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait

from config import ScrapersConfig
from review_triage.errors import AggregateScrapeError, ScrapeCancelled, ScrapeError
from review_triage.models import Review, ScraperStats, utcnow
from review_triage.scrapers.appstore_scraper import AppStoreAdapter
from review_triage.scrapers.base import SourceAdapter, _build_session
from review_triage.scrapers.context import ScrapeContext
from review_triage.scrapers.g2_scraper import G2Adapter
from review_triage.scrapers.trustpilot_scraper import TrustpilotAdapter
from review_triage.scrapers.twitter_scraper import TwitterAdapter
from review_triage.scrapers.web_scraper import CustomSiteAdapter
from review_triage.scrapers.youtube_scraper import YouTubeAdapter

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 600.0
POLL_INTERVAL_SECONDS = 0.01


def build_adapters(config: ScrapersConfig) -> list[SourceAdapter]:
    """One adapter per configured origin; disabled ones are kept so they show up in stats."""
    rates, proxy = config.rate_limits, config.proxy
    session = _build_session()
    adapters: list[SourceAdapter] = [
        TwitterAdapter(config.twitter, rates, proxy, session),
        TrustpilotAdapter(config.trustpilot, rates, proxy, session),
        G2Adapter(config.g2, rates, proxy, session),
        AppStoreAdapter(config.appstore, rates, proxy, session),
        YouTubeAdapter(config.youtube, rates, proxy),
    ]
    adapters.extend(CustomSiteAdapter(site, rates, proxy, session) for site in config.custom_sites)
    return adapters


class ScraperManager:
    def __init__(self, adapters: list[SourceAdapter], timeout: float = DEFAULT_TIMEOUT_SECONDS,
                 poll_interval: float = POLL_INTERVAL_SECONDS):
        self.adapters = list(adapters)
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._stats: dict[str, ScraperStats] = {}

    @classmethod
    def from_config(cls, config: ScrapersConfig) -> "ScraperManager":
        return cls(build_adapters(config), timeout=config.timeout_seconds or DEFAULT_TIMEOUT_SECONDS)

    def enabled_adapters(self) -> list[SourceAdapter]:
        return [adapter for adapter in self.adapters if adapter.is_enabled()]

    def stats(self) -> dict[str, ScraperStats]:
        """Statistics of the last `scrape_all` run, keyed by adapter name."""
        return dict(self._stats)

    def scrape_all(self, ctx: ScrapeContext | None = None) -> list[Review]:
        """
        Run all enabled adapters concurrently.

        Returns the union of the reviews of every adapter that succeeded. Raises
        AggregateScrapeError when no adapter succeeded. Returns promptly when the
        deadline passes or `ctx` is cancelled; unfinished adapters count as cancelled
        and are not waited for.
        """
        run_ctx = ctx.child(self.timeout) if ctx is not None else ScrapeContext(self.timeout)
        adapters = self.enabled_adapters()
        if not adapters:
            logger.warning("[SCRAPE] No enabled scrapers")
            self._stats = {}
            return []

        started = time.perf_counter()
        stats = {adapter.name: ScraperStats(source=adapter.name, started_at=utcnow()) for adapter in adapters}
        executor = ThreadPoolExecutor(max_workers=len(adapters), thread_name_prefix="scrape")
        futures: dict[Future, SourceAdapter] = {
            executor.submit(self._run_adapter, adapter, run_ctx, stats[adapter.name]): adapter
            for adapter in adapters
        }

        pending = set(futures)
        try:
            while pending and not run_ctx.cancelled:
                remaining = run_ctx.remaining()
                timeout = self.poll_interval if remaining is None else min(self.poll_interval, remaining)
                _, pending = wait(pending, timeout=timeout, return_when=FIRST_COMPLETED)
        finally:
            if pending:
                run_ctx.cancel(run_ctx.reason or "scrape cancelled")
                logger.warning(
                    "[SCRAPE] Stopped waiting for %s scraper(s): %s",
                    len(pending),
                    run_ctx.reason,
                )
            executor.shutdown(wait=False, cancel_futures=True)

        reviews, errors, partial, succeeded = self._aggregate(futures, run_ctx, stats)
        self._stats = stats
        logger.info(
            "[SCRAPE] scrapers=%s succeeded=%s failed=%s reviews=%s duration=%.2fs",
            len(adapters),
            succeeded,
            len(errors),
            len(reviews),
            time.perf_counter() - started,
        )

        if succeeded == 0:
            raise AggregateScrapeError(errors, partial)
        return reviews

    @staticmethod
    def _run_adapter(adapter: SourceAdapter, ctx: ScrapeContext, stats: ScraperStats) -> list[Review]:
        try:
            reviews = adapter.scrape(ctx)
            stats.reviews_scraped = len(reviews)
            return reviews
        finally:
            stats.finished_at = utcnow()

    @staticmethod
    def _aggregate(
        futures: dict[Future, SourceAdapter],
        ctx: ScrapeContext,
        stats: dict[str, ScraperStats],
    ) -> tuple[list[Review], list[ScrapeError], list[Review], int]:
        reviews: list[Review] = []
        partial: list[Review] = []
        errors: list[ScrapeError] = []
        succeeded = 0

        for future, adapter in futures.items():
            entry = stats[adapter.name]
            if not future.done() or future.cancelled():
                error: ScrapeError = ScrapeCancelled(adapter.name, ctx.reason or "scrape cancelled")
            else:
                exc = future.exception()
                if exc is None:
                    succeeded += 1
                    reviews.extend(future.result())
                    continue
                if isinstance(exc, ScrapeError):
                    error = exc
                else:
                    error = ScrapeError(adapter.name, f"{type(exc).__name__}: {exc}")
                    logger.error("[SCRAPE] Unexpected failure in %s", adapter.name, exc_info=exc)

            if not error.source:
                error.source = adapter.name
            entry.errors.append(str(error))
            entry.cancelled = isinstance(error, ScrapeCancelled)
            errors.append(error)
            partial.extend(error.partial)
            logger.error("[SCRAPE] %s", error)

        return reviews, errors, partial, succeeded
