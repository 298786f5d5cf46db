"""
Classification engine: strategy dispatch, content-fingerprint cache and
threshold post-processing.
"""

from __future__ import annotations

import dataclasses
import hashlib
import logging
import threading
from typing import Protocol

from config import AnalyzerConfig
from review_triage.analyzers.lexicon import LexiconAnalyzer
from review_triage.analyzers.llm_analyzer import LLMAnalyzer
from review_triage.models import AnalysisResult, Review

logger = logging.getLogger(__name__)

LOCAL = "local"
REMOTE_STRATEGIES = ("openai", "azure", "ollama")


class Strategy(Protocol):
    name: str

    def analyze(self, review: Review) -> AnalysisResult: ...


def fingerprint(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class Classifier:
    """
    Maps a Review to an AnalysisResult.

    Results are cached by the SHA-256 of the review content for the lifetime of
    the instance (no eviction). The cache lock only guards single reads and
    writes; strategies run outside it, so two threads may classify the same
    content concurrently and the later write wins.
    """

    def __init__(self, config: AnalyzerConfig | None = None,
                 strategies: dict[str, Strategy] | None = None):
        self.config = config or AnalyzerConfig()
        self.strategies: dict[str, Strategy] = {LOCAL: LexiconAnalyzer(self.config)}
        mode = (self.config.mode or LOCAL).lower()
        if mode in REMOTE_STRATEGIES:
            self.strategies[mode] = LLMAnalyzer(self.config, provider=mode)
        if strategies:
            self.strategies.update(strategies)

        self.mode = mode if mode in self.strategies else LOCAL
        if self.mode != mode:
            logger.warning("[CLASSIFY] Unknown analyzer mode '%s', using local", mode)

        self._cache: dict[str, AnalysisResult] = {}
        self._cache_lock = threading.Lock()

    def classify(self, review: Review, strategy: str | None = None) -> AnalysisResult:
        """
        Classify one review. A cache hit returns the stored result unchanged.
        Raises ClassificationError when a remote strategy fails; nothing is cached then.
        """
        key = fingerprint(review.content)
        with self._cache_lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached

        name = (strategy or self.mode).lower()
        impl = self.strategies.get(name) or self.strategies[LOCAL]
        raw = impl.analyze(review)
        result = self._finalize(review, raw)

        with self._cache_lock:
            self._cache[key] = result
        logger.debug(
            "[CLASSIFY] %s via %s: score=%.2f intent=%s confidence=%.2f",
            review.id, impl.name, result.sentiment_score, result.intent_category.value, result.confidence,
        )
        return result

    def _finalize(self, review: Review, raw: AnalysisResult) -> AnalysisResult:
        score = max(-1.0, min(1.0, float(raw.sentiment_score)))
        confidence = max(0.0, min(1.0, float(raw.confidence)))
        return dataclasses.replace(
            raw,
            review_id=review.id,
            sentiment_score=score,
            confidence=confidence,
            is_negative=score <= self.config.negative_threshold,
            is_relevant=confidence >= self.config.relevance_threshold,
        )

    def cache_size(self) -> int:
        with self._cache_lock:
            return len(self._cache)

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    def stats(self) -> dict:
        return {
            "mode": self.mode,
            "strategies": sorted(self.strategies),
            "cache_size": self.cache_size(),
            "negative_threshold": self.config.negative_threshold,
            "relevance_threshold": self.config.relevance_threshold,
            "keyword_count": len(self.config.keywords) + len(self.config.intent_keywords),
            "product_term_count": len(self.config.product_terms),
        }
