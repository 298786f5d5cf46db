"""Review data models used across the pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class IntentCategory(str, Enum):
    """
    Fixed vocabulary of issue kinds.
    Declaration order is also the tie-break order when two categories score the same.
    """
    BUG_REPORT = "bug_report"
    FEATURE_REQUEST = "feature_request"
    PERFORMANCE = "performance"
    BILLING = "billing"
    LOGISTICS = "logistics"
    CUSTOMER_SERVICE = "customer_service"
    UI_UX = "ui_ux"
    SECURITY = "security"
    GENERAL_COMPLAINT = "general_complaint"

    @classmethod
    def parse(cls, value: str) -> "IntentCategory":
        """Accept 'Bug Report', 'bug-report' or 'bug_report'. Raises ValueError otherwise."""
        normalized = str(value or "").strip().lower().replace("-", "_").replace(" ", "_")
        return cls(normalized)


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True)
class Review:
    """
    One scraped feedback item.
    `id` is source-prefixed (e.g. "twitter-123") and unique within a run.
    """
    id: str                     # stable id, e.g. "trustpilot-abc"
    source: str                 # origin name, e.g. "twitter"
    source_id: str              # origin-native id
    content: str                # review body
    title: str = ""
    author: str = ""
    rating: float | None = None  # 1-5 when the origin has one
    url: str = ""
    created_at: datetime | None = None
    retrieved_at: datetime = field(default_factory=utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)

    def tags(self) -> list[str]:
        """Hashtags or labels attached by the origin (used in remote prompts)."""
        raw = self.metadata.get("hashtags") or self.metadata.get("tags") or []
        if isinstance(raw, str):
            return [part.strip() for part in raw.split(",") if part.strip()]
        return [str(item) for item in raw]


@dataclass(frozen=True)
class Entity:
    text: str
    type: str
    offset: int


@dataclass(frozen=True)
class AnalysisResult:
    """
    Classification of one Review.
    is_negative / is_relevant are derived from thresholds by the Classifier only.
    """
    review_id: str
    sentiment_score: float
    intent_category: IntentCategory = IntentCategory.GENERAL_COMPLAINT
    confidence: float = 0.0
    is_negative: bool = False
    is_relevant: bool = False
    keywords: tuple[str, ...] = ()
    entities: tuple[Entity, ...] = ()
    category_scores: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["intent_category"] = self.intent_category.value
        data["keywords"] = list(self.keywords)
        data["entities"] = [asdict(entity) for entity in self.entities]
        return data

    @classmethod
    def from_payload(cls, review_id: str, payload: dict[str, Any]) -> "AnalysisResult":
        """
        Build a result from a model's JSON payload.
        Raises KeyError / ValueError / TypeError when required fields are missing or invalid.
        """
        score = float(payload["sentiment_score"])
        category = IntentCategory.parse(payload["intent_category"])
        confidence = float(payload.get("confidence", 0.5))

        keywords = payload.get("keywords") or []
        if isinstance(keywords, str):
            keywords = [part.strip() for part in keywords.split(",")]

        entities: list[Entity] = []
        for item in payload.get("entities") or []:
            if isinstance(item, dict) and item.get("text"):
                entities.append(
                    Entity(
                        text=str(item["text"]),
                        type=str(item.get("type", "PRODUCT")),
                        offset=int(item.get("offset", -1)),
                    )
                )

        raw_scores = payload.get("category_scores") or {category.value: 1.0}
        if not isinstance(raw_scores, dict):
            raise TypeError("category_scores must be an object")
        category_scores = {str(name): float(value) for name, value in raw_scores.items()}

        return cls(
            review_id=review_id,
            sentiment_score=score,
            intent_category=category,
            confidence=confidence,
            keywords=tuple(str(k) for k in keywords if str(k).strip()),
            entities=tuple(entities),
            category_scores=category_scores,
        )


@dataclass(frozen=True)
class Department:
    """Routing target. `contact` is an email address or a Slack channel."""
    id: str
    name: str
    contact: str = ""
    categories: tuple[str, ...] = ()


@dataclass
class ScraperStats:
    """Per-adapter statistics for the last scrape run."""
    source: str
    started_at: datetime | None = None
    finished_at: datetime | None = None
    reviews_scraped: int = 0
    errors: list[str] = field(default_factory=list)
    cancelled: bool = False
