"""Slack notifier: posts routed reviews to an incoming webhook."""

import logging
from typing import Any

import requests

from config import NotifierConfig
from review_triage.delivery.notifier import Notifier
from review_triage.errors import NotificationError
from review_triage.models import AnalysisResult, Department, Review

logger = logging.getLogger(__name__)

SENTIMENT_EMOJI = (
    (-0.6, ":red_circle:"),
    (-0.2, ":orange_circle:"),
    (0.2, ":yellow_circle:"),
)


def _emoji(score: float) -> str:
    for bound, emoji in SENTIMENT_EMOJI:
        if score <= bound:
            return emoji
    return ":white_circle:"


class SlackNotifier(Notifier):
    channel = "slack"

    def __init__(self, config: NotifierConfig, session: requests.Session | None = None):
        self.config = config
        self.session = session or requests.Session()

    def is_configured(self) -> bool:
        return self.config.slack_enabled

    def _channel_for(self, department: Department) -> str:
        override = self.config.slack_channels.get(department.id)
        if override:
            return override
        return department.contact if department.contact.startswith("#") else ""

    def _build_message(self, department: Department, review: Review, analysis: AnalysisResult) -> dict[str, Any]:
        """Build Slack message payload."""
        header = (
            f"{_emoji(analysis.sentiment_score)} *{department.name}* · "
            f"`{analysis.intent_category.value}` from {review.source}"
        )
        details = f"sentiment {analysis.sentiment_score:+.2f} | confidence {analysis.confidence:.2f}"
        if review.rating is not None:
            details += f" | rating {review.rating:g}/5"
        body = review.content if len(review.content) <= 1500 else review.content[:1497] + "..."

        blocks: list[dict[str, Any]] = [
            {"type": "section", "text": {"type": "mrkdwn", "text": header}},
            {"type": "section", "text": {"type": "mrkdwn", "text": f">{body}"}},
            {"type": "context", "elements": [{"type": "mrkdwn", "text": details}]},
        ]
        if review.url:
            blocks.append(
                {"type": "context", "elements": [{"type": "mrkdwn", "text": f"<{review.url}|View original>"}]}
            )

        payload: dict[str, Any] = {"text": f"{department.name}: {analysis.intent_category.value}", "blocks": blocks}
        channel = self._channel_for(department)
        if channel:
            payload["channel"] = channel
        return payload

    def notify(self, department: Department, review: Review, analysis: AnalysisResult) -> None:
        if not self.is_configured():
            raise NotificationError(self.channel, "config", "SLACK_WEBHOOK_URL not set")
        try:
            response = self.session.post(
                self.config.slack_webhook_url,
                json=self._build_message(department, review, analysis),
                timeout=10,
            )
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise NotificationError(self.channel, "rejected", str(exc)) from exc
        except requests.RequestException as exc:
            raise NotificationError(self.channel, "transport", str(exc)) from exc
        logger.info("[SLACK] Alert for %s posted to %s", review.id, department.id)
