"""
Local lexical classifier.
Deterministic, no I/O: word lists for sentiment, a keyword table for intent,
and a product vocabulary for entities and relevance.
"""

import re

from config import DEFAULT_INTENT_KEYWORDS, DEFAULT_PRODUCT_TERMS, AnalyzerConfig
from review_triage.models import AnalysisResult, Entity, IntentCategory, Review

POSITIVE_WORDS = (
    "good", "great", "awesome", "excellent", "amazing", "love", "best", "fantastic",
    "perfect", "happy", "pleased", "satisfied", "wonderful", "helpful", "thank",
    "reliable", "efficient", "intuitive",
)

# "fail" also matches fails/failed/failing/failure at a word start
NEGATIVE_WORDS = (
    "bad", "poor", "terrible", "awful", "horrible", "worst", "hate", "disappointed",
    "frustrating", "useless", "broken", "annoying", "slow", "expensive", "waste",
    "difficult", "confusing", "crash", "bug", "error", "problem", "issue", "fail",
    "cannot", "can't", "won't", "insecure", "vulnerability", "breach", "outage", "downtime",
)

NEGATIONS = ("not", "don't", "doesn't", "didn't", "never", "no")

# Generic nouns only tagged when no product term already covers the spot
GENERIC_TERMS = ("app", "platform", "product", "software", "tool", "service", "system")

INTENSITY_FACTOR = 1.2
RATING_WEIGHT = 0.4

_CAPS_RE = re.compile(r"[A-Z]{3,}")


def _word_pattern(word: str) -> re.Pattern:
    # Word-start match so inflections count ("crash" -> "crashes")
    return re.compile(r"\b" + re.escape(word.lower()))


_POSITIVE_PATTERNS = [_word_pattern(w) for w in POSITIVE_WORDS]
_NEGATIVE_PATTERNS = [_word_pattern(w) for w in NEGATIVE_WORDS]
_POSITIVE_ALT = "|".join(re.escape(w) for w in POSITIVE_WORDS)
_NEGATION_PATTERNS = [
    re.compile(r"\b" + re.escape(neg) + r"\s+(?:[\w']+\s+){0,3}(?:" + _POSITIVE_ALT + r")")
    for neg in NEGATIONS
]


def _count(patterns: list[re.Pattern], text: str) -> int:
    return sum(len(p.findall(text)) for p in patterns)


def sentiment_score(text: str, raw_text: str, rating: float | None) -> float:
    """
    Score in [-1, 1].
    `text` is the lower-cased input, `raw_text` the original (for !!! and CAPS).
    """
    positive = _count(_POSITIVE_PATTERNS, text)
    negative = _count(_NEGATIVE_PATTERNS, text)

    # "not good" reads as one negative hit instead of one positive hit
    for pattern in _NEGATION_PATTERNS:
        for _ in pattern.finditer(text):
            if positive > 0:
                positive -= 1
                negative += 1

    total = positive + negative
    score = (positive - negative) / total if total else 0.0

    if raw_text.count("!") > 2 or len(_CAPS_RE.findall(raw_text)) > 2:
        score = max(-1.0, min(1.0, score * INTENSITY_FACTOR))

    if rating is not None:
        rating_score = (rating - 3.0) / 2.0
        score = score * (1 - RATING_WEIGHT) + rating_score * RATING_WEIGHT

    return max(-1.0, min(1.0, score))


class LexiconAnalyzer:
    """Local classification strategy."""

    name = "local"

    def __init__(self, config: AnalyzerConfig | None = None):
        config = config or AnalyzerConfig()
        self.intent_keywords = {
            k.lower(): v for k, v in (config.intent_keywords or DEFAULT_INTENT_KEYWORDS).items()
        }
        self.product_terms = {
            k.lower(): v for k, v in (config.product_terms or DEFAULT_PRODUCT_TERMS).items()
        }
        vocabulary: list[str] = []
        for word in [*config.keywords, *self.intent_keywords, *self.product_terms]:
            word = word.lower().strip()
            if word and word not in vocabulary:
                vocabulary.append(word)
        self._vocabulary = [(word, _word_pattern(word)) for word in vocabulary]

    def analyze(self, review: Review) -> AnalysisResult:
        raw_text = f"{review.title} {review.content}".strip()
        text = raw_text.lower()

        score = sentiment_score(text, raw_text, review.rating)
        keywords = [word for word, pattern in self._vocabulary if pattern.search(text)]
        category, category_scores = self._categorize(keywords)

        if keywords:
            confidence = max(0.3, min(1.0, len(keywords) / 10.0))
        else:
            confidence = 0.5

        return AnalysisResult(
            review_id=review.id,
            sentiment_score=score,
            intent_category=category,
            confidence=confidence,
            keywords=tuple(keywords),
            entities=tuple(self._entities(text)),
            category_scores=category_scores,
        )

    def _categorize(self, keywords: list[str]) -> tuple[IntentCategory, dict[str, float]]:
        scores: dict[str, float] = {}
        for keyword in keywords:
            category = self.intent_keywords.get(keyword)
            if category:
                scores[category] = scores.get(category, 0.0) + 1.0

        order = {member.value: idx for idx, member in enumerate(IntentCategory)}
        ranked = sorted(
            (name for name in scores if name in order),
            key=lambda name: (-scores[name], order[name]),
        )
        if not ranked:
            return IntentCategory.GENERAL_COMPLAINT, scores
        return IntentCategory(ranked[0]), scores

    def _entities(self, text: str) -> list[Entity]:
        entities: list[Entity] = []
        spans: list[tuple[int, int]] = []
        # longest terms first so "dns firewall" wins over "dns" at the same spot
        for term in sorted(self.product_terms, key=len, reverse=True):
            match = _word_pattern(term).search(text)
            if match and not any(start <= match.start() < end for start, end in spans):
                entities.append(Entity(text=term, type="PRODUCT", offset=match.start()))
                spans.append((match.start(), match.start() + len(term)))

        for term in GENERIC_TERMS:
            match = re.search(r"\b" + re.escape(term) + r"\b", text)
            if match and not any(start <= match.start() < end for start, end in spans):
                entities.append(Entity(text=term, type="PRODUCT", offset=match.start()))
                spans.append((match.start(), match.end()))

        return sorted(entities, key=lambda entity: entity.offset)
