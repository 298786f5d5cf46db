"""
流水线驱动 (Pipeline Driver): scrape -> classify -> filter -> route -> notify.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date

from review_triage.analyzers.classifier import LOCAL, Classifier
from review_triage.delivery.notifier import Notifier
from review_triage.errors import AggregateScrapeError, ClassificationError, NotificationError, ScrapeCancelled
from review_triage.models import AnalysisResult, Department, Review
from review_triage.routing.router import DepartmentRouter
from review_triage.scrapers.context import ScrapeContext
from review_triage.scrapers.manager import ScraperManager

logger = logging.getLogger(__name__)


@dataclass
class StageFailure:
    """
    阶段失败记录 (Stage Failure Record)
    记录流水线特定阶段的错误信息。
    """
    stage: str          # "scrape", "classify", "notify"
    error_type: str     # e.g. "SCRAPE", "CANCELLED", "LLM", "NOTIFY"
    message: str
    source: str = ""    # adapter name or review id


@dataclass
class PipelineResult:
    """
    流水线执行结果数据类 (Pipeline Result Data Class)
    用于统计和报告整个流水线的执行情况。
    """
    run_id: str
    date: str
    success: bool = False
    exit_reason: str = ""
    duration_seconds: float = 0.0
    scraped_count: int = 0      # 抓取总数
    deduped_count: int = 0      # 去重后数量
    classified_count: int = 0   # 分类完成数量
    fallback_count: int = 0     # 远程失败后改用本地分类的数量
    actionable_count: int = 0   # negative and relevant
    notified_count: int = 0
    notify_failed_count: int = 0
    routed: dict[str, int] = field(default_factory=dict)  # department id -> count
    failures: list[StageFailure] = field(default_factory=list)


@dataclass(frozen=True)
class RoutedReview:
    review: Review
    analysis: AnalysisResult
    department: Department


def append_failure(
    result: PipelineResult, stage: str, error_type: str, message: str, source: str = ""
) -> None:
    result.failures.append(
        StageFailure(stage=stage, error_type=error_type, message=message, source=source)
    )


def dedupe_reviews(reviews: list[Review]) -> list[Review]:
    """Drop later duplicates by id and items without content."""
    seen: set[str] = set()
    kept: list[Review] = []
    for review in reviews:
        if not review.content.strip() or review.id in seen:
            continue
        seen.add(review.id)
        kept.append(review)
    return kept


class ReviewPipeline:
    """
    Owns one orchestrator, classifier, router and notifier for the process lifetime.
    """

    def __init__(
        self,
        scraper: ScraperManager,
        classifier: Classifier,
        router: DepartmentRouter,
        notifier: Notifier,
        max_workers: int = 4,
        history_size: int = 200,
    ):
        self.scraper = scraper
        self.classifier = classifier
        self.router = router
        self.notifier = notifier
        self.max_workers = max(1, max_workers)
        self._recent: deque[RoutedReview] = deque(maxlen=history_size)
        self._recent_lock = threading.Lock()
        self._run_lock = threading.Lock()

    # --- read-only accessors for an API layer ---

    def departments(self) -> list[Department]:
        return self.router.list_departments()

    def recent_reviews(self, limit: int = 50) -> list[RoutedReview]:
        """Most recent routed reviews, newest first."""
        with self._recent_lock:
            items = list(self._recent)
        return list(reversed(items))[: max(0, limit)]

    def trigger(self) -> PipelineResult:
        """Manual run; identical to a scheduled run."""
        logger.info("[PIPELINE] Manual trigger")
        return self.run_once()

    # --- run ---

    def run_once(self, ctx: ScrapeContext | None = None) -> PipelineResult:
        today = date.today().strftime("%Y-%m-%d")
        result = PipelineResult(run_id=f"{today}-{int(time.time())}", date=today)
        started = time.perf_counter()

        if not self._run_lock.acquire(blocking=False):
            result.exit_reason = "run already in progress"
            return result
        try:
            self._run(result, ctx)
        finally:
            self._run_lock.release()
            result.duration_seconds = round(time.perf_counter() - started, 3)
        return result

    def _run(self, result: PipelineResult, ctx: ScrapeContext | None) -> None:
        # 1. 抓取 (Scrape)
        try:
            reviews = self.scraper.scrape_all(ctx)
        except AggregateScrapeError as exc:
            for err in exc.errors:
                error_type = "CANCELLED" if isinstance(err, ScrapeCancelled) else "SCRAPE"
                append_failure(result, "scrape", error_type, err.message, source=err.source)
            result.exit_reason = "scraping stage failed"
            logger.error("[PIPELINE] %s", exc)
            return

        for name, stats in self.scraper.stats().items():
            for message in stats.errors:
                append_failure(result, "scrape", "SCRAPE", message, source=name)

        result.scraped_count = len(reviews)
        reviews = dedupe_reviews(reviews)
        result.deduped_count = len(reviews)
        logger.info("[PIPELINE] scraped=%s deduped=%s", result.scraped_count, result.deduped_count)
        if not reviews:
            result.success = True
            result.exit_reason = "no reviews scraped"
            return

        # 2. 分类 (Classify)
        analyzed = self._classify_all(reviews, result)
        result.classified_count = len(analyzed)

        # 3-5. 过滤 -> 路由 -> 通知 (Filter -> Route -> Notify)
        for review, analysis in analyzed:
            if not (analysis.is_negative and analysis.is_relevant):
                continue
            result.actionable_count += 1
            department = self.router.route(analysis)
            result.routed[department.id] = result.routed.get(department.id, 0) + 1
            with self._recent_lock:
                self._recent.append(RoutedReview(review, analysis, department))

            try:
                self.notifier.notify(department, review, analysis)
                result.notified_count += 1
            except NotificationError as exc:
                result.notify_failed_count += 1
                append_failure(result, "notify", "NOTIFY", str(exc), source=review.id)
                logger.error("[NOTIFY] %s -> %s failed: %s", review.id, department.id, exc)
            except Exception as exc:
                result.notify_failed_count += 1
                append_failure(result, "notify", "NOTIFY", f"{type(exc).__name__}: {exc}", source=review.id)
                logger.error(
                    "[NOTIFY] %s -> %s raised unexpectedly: %s", review.id, department.id, exc, exc_info=True
                )

        result.success = True
        result.exit_reason = "completed"
        logger.info(
            "[PIPELINE] classified=%s actionable=%s notified=%s routed=%s",
            result.classified_count,
            result.actionable_count,
            result.notified_count,
            result.routed,
        )

    def _classify_one(self, review: Review) -> tuple[AnalysisResult, bool]:
        try:
            return self.classifier.classify(review), False
        except ClassificationError as exc:
            logger.warning("[CLASSIFY] %s: %s, falling back to local", review.id, exc)
            return self.classifier.classify(review, strategy=LOCAL), True

    def _classify_all(self, reviews: list[Review], result: PipelineResult) -> list[tuple[Review, AnalysisResult]]:
        # Keep scrape order while classifying concurrently
        indexed: dict[int, tuple[Review, AnalysisResult]] = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_map = {
                executor.submit(self._classify_one, review): (idx, review)
                for idx, review in enumerate(reviews)
            }
            for future in as_completed(future_map):
                idx, review = future_map[future]
                try:
                    analysis, fell_back = future.result()
                except Exception as exc:
                    logger.error("[CLASSIFY] Worker failed for %s: %s", review.id, exc)
                    append_failure(result, "classify", "CLASSIFY", str(exc), source=review.id)
                    continue
                if fell_back:
                    result.fallback_count += 1
                indexed[idx] = (review, analysis)
        return [indexed[idx] for idx in sorted(indexed)]
