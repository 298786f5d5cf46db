"""Notifier contract plus the dry-run and fan-out channels."""

import logging
from abc import ABC, abstractmethod

from review_triage.errors import NotificationError
from review_triage.models import AnalysisResult, Department, Review

logger = logging.getLogger(__name__)


class Notifier(ABC):
    channel = "notifier"

    @abstractmethod
    def notify(self, department: Department, review: Review, analysis: AnalysisResult) -> None:
        """Deliver one routed review. Raises NotificationError on failure."""

    def is_configured(self) -> bool:
        return True


def summarize(review: Review, analysis: AnalysisResult, limit: int = 280) -> str:
    text = review.content if len(review.content) <= limit else review.content[: limit - 3] + "..."
    return (
        f"[{review.source}] {analysis.intent_category.value} "
        f"(sentiment {analysis.sentiment_score:+.2f}, confidence {analysis.confidence:.2f}): {text}"
    )


class LogNotifier(Notifier):
    """Dry run: writes the notification to the log instead of sending it."""

    channel = "log"

    def notify(self, department: Department, review: Review, analysis: AnalysisResult) -> None:
        logger.info("[NOTIFY] (dry-run) -> %s <%s> %s", department.id, department.contact, summarize(review, analysis))


class CompositeNotifier(Notifier):
    """Sends through every configured channel; one failing channel doesn't stop the others."""

    channel = "composite"

    def __init__(self, notifiers: list[Notifier]):
        self.notifiers = [n for n in notifiers if n.is_configured()]

    def is_configured(self) -> bool:
        return bool(self.notifiers)

    def notify(self, department: Department, review: Review, analysis: AnalysisResult) -> None:
        errors: list[NotificationError] = []
        for notifier in self.notifiers:
            try:
                notifier.notify(department, review, analysis)
            except NotificationError as exc:
                logger.error("[NOTIFY] %s", exc)
                errors.append(exc)
        if errors:
            raise NotificationError(
                self.channel,
                errors[0].category if len(errors) == 1 else "multiple",
                "; ".join(str(err) for err in errors),
            )
