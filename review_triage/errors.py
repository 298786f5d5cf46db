"""Exception types shared by the scrape, classify and notify stages."""

from __future__ import annotations

from review_triage.models import Review


class ReviewTriageError(Exception):
    """Base class for pipeline errors."""


class ConfigError(ReviewTriageError):
    pass


class ScrapeError(ReviewTriageError):
    """
    Failure of a single adapter.
    `partial` holds whatever the adapter collected before failing.
    """

    def __init__(self, source: str, message: str, partial: list[Review] | None = None):
        super().__init__(message)
        self.source = source
        self.message = message
        self.partial = list(partial or [])

    def __str__(self) -> str:
        return f"{self.source} scraper error: {self.message}"


class ScrapeCancelled(ScrapeError):
    """Adapter stopped because the shared scrape context was cancelled or timed out."""

    def __init__(self, source: str = "", message: str = "scrape cancelled",
                 partial: list[Review] | None = None):
        super().__init__(source, message, partial)


class AggregateScrapeError(ReviewTriageError):
    """Every enabled adapter failed. Message joins each adapter's error with '; '."""

    def __init__(self, errors: list[ScrapeError], partial: list[Review] | None = None):
        self.errors = list(errors)
        self.partial = list(partial or [])
        message = "; ".join(str(err) for err in self.errors) or "no scraper produced results"
        super().__init__(message)

    @property
    def cancelled(self) -> bool:
        return any(isinstance(err, ScrapeCancelled) for err in self.errors)


class ClassificationError(ReviewTriageError):
    """Remote classification failed or returned an unusable payload."""

    def __init__(self, strategy: str, message: str):
        super().__init__(f"[{strategy}] {message}")
        self.strategy = strategy


class NotificationError(ReviewTriageError):
    """
    Notification delivery failure.
    `category` is one of: config, transport, rejected.
    """

    def __init__(self, channel: str, category: str, message: str):
        super().__init__(f"{channel} notification failed ({category}): {message}")
        self.channel = channel
        self.category = category
