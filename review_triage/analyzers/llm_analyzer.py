"""
LLM Analyzer Module
Remote classification strategy: asks an OpenAI-compatible chat-completions endpoint
(OpenAI, Azure OpenAI, local Ollama) to score a review and parses its JSON reply.
"""

import json
import logging
import re
import threading
import time

from openai import AzureOpenAI, OpenAI

from config import AnalyzerConfig
from review_triage.errors import ClassificationError
from review_triage.models import AnalysisResult, IntentCategory, Review

logger = logging.getLogger(__name__)

MAX_TOKENS = 500
MIN_REQUEST_INTERVAL_SECONDS = 0.5
RATE_LIMIT_BACKOFF_SECONDS = 5.0
MAX_RATE_LIMIT_RETRIES = 2
CONTENT_LIMIT = 2000

SYSTEM_PROMPT = (
    "You classify customer feedback. Return ONLY a JSON object with exactly these keys: "
    '"sentiment_score" (number between -1 very negative and 1 very positive), '
    '"intent_category" (one of: ' + ", ".join(c.value for c in IntentCategory) + "), "
    '"confidence" (number between 0 and 1), '
    '"keywords" (list of short strings), '
    '"entities" (list of objects with "text", "type", "offset"), '
    '"category_scores" (object mapping intent categories to numbers). '
    "No markdown. No explanations."
)


def _repair(candidate: str) -> str:
    """Typographic quotes, BOM, stray control chars and trailing commas from local models."""
    repaired = candidate.replace("“", '"').replace("”", '"').replace("’", "'")
    repaired = repaired.replace("\ufeff", "")
    repaired = re.sub(r"[\x00-\x08\x0B\x0C\x0E-\x1F]", "", repaired)
    repaired = re.sub(r",\s*([}\]])", r"\1", repaired)
    return repaired


def _try_parse(candidate: str) -> dict | None:
    text = (candidate or "").strip()
    if not text:
        return None
    for attempt in (text, _repair(text)):
        try:
            parsed = json.loads(attempt)
        except json.JSONDecodeError:
            continue
        return parsed if isinstance(parsed, dict) else None
    return None


def _close_truncated(candidate: str) -> str:
    """Best-effort close for output cut off by max_tokens: open string, then open braces."""
    depth = 0
    in_string = False
    escaped = False
    for ch in candidate:
        if escaped:
            escaped = False
        elif ch == "\\" and in_string:
            escaped = True
        elif ch == '"':
            in_string = not in_string
        elif not in_string and ch == "{":
            depth += 1
        elif not in_string and ch == "}":
            depth = max(0, depth - 1)
    return candidate + ('"' if in_string else "") + "}" * depth


def _extract_json(text: str | None) -> dict | None:
    """
    Robustly extract a JSON object from model output.
    Handles: pure JSON, markdown code blocks, JSON embedded in free text, truncated tails.
    """
    if not text or not text.strip():
        return None
    raw = text.strip()

    parsed = _try_parse(raw)
    if parsed is not None:
        return parsed

    fenced = re.search(r"```(?:json)?\s*\n?(.*?)(?:\n?```|$)", raw, re.DOTALL)
    if fenced:
        parsed = _try_parse(fenced.group(1))
        if parsed is not None:
            return parsed

    start = raw.find("{")
    if start == -1:
        return None

    depth = 0
    for idx in range(start, len(raw)):
        if raw[idx] == "{":
            depth += 1
        elif raw[idx] == "}":
            depth -= 1
            if depth == 0:
                parsed = _try_parse(raw[start:idx + 1])
                if parsed is not None:
                    return parsed
                break

    return _try_parse(_close_truncated(raw[start:].replace("```", "")))


def build_user_prompt(review: Review) -> str:
    rating = f"{review.rating:g}/5" if review.rating is not None else "n/a"
    tags = ", ".join(review.tags()) or "none"
    return (
        f"Source: {review.source}\n"
        f"Title: {review.title or '-'}\n"
        f"Rating: {rating}\n"
        f"Tags: {tags}\n"
        f"Content:\n{review.content[:CONTENT_LIMIT]}\n\n"
        "Reply with JSON only."
    )


def _message_to_text(message: object) -> str:
    content = getattr(message, "content", None)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for item in content:
            text = item.get("text") if isinstance(item, dict) else getattr(item, "text", None)
            if isinstance(text, str):
                parts.append(text)
        return "\n".join(parts).strip()
    return ""


class LLMAnalyzer:
    """
    Remote classification strategy.
    Every failure (API error, empty reply, unparseable or invalid payload) raises
    ClassificationError so the caller can fall back to the local strategy.
    """

    def __init__(self, config: AnalyzerConfig, provider: str | None = None, client: OpenAI | None = None):
        self.config = config
        self.name = provider or config.mode
        self._client = client
        self._client_lock = threading.Lock()
        self._rate_lock = threading.Lock()
        self._last_request_ts = 0.0

    def _get_client(self) -> OpenAI:
        """Lazy-init API client (延迟初始化 API 客户端)."""
        with self._client_lock:
            if self._client is None:
                if not self.config.api_key:
                    raise ClassificationError(self.name, "API key is not set")
                if self.name == "azure":
                    # `model` is the Azure deployment name
                    if not self.config.base_url:
                        raise ClassificationError(self.name, "Azure endpoint (LLM_BASE_URL) is not set")
                    self._client = AzureOpenAI(
                        api_key=self.config.api_key,
                        azure_endpoint=self.config.base_url,
                        api_version=self.config.api_version,
                        max_retries=0,
                    )
                    return self._client
                self._client = OpenAI(
                    api_key=self.config.api_key,
                    base_url=self.config.base_url or None,
                    max_retries=0,
                )
            return self._client

    def _throttle(self) -> None:
        # Global spacing between requests to reduce provider-side 429s
        with self._rate_lock:
            wait_s = MIN_REQUEST_INTERVAL_SECONDS - (time.monotonic() - self._last_request_ts)
            if wait_s > 0:
                time.sleep(wait_s)
            self._last_request_ts = time.monotonic()

    def _complete(self, user_content: str) -> str:
        client = self._get_client()
        for attempt in range(MAX_RATE_LIMIT_RETRIES + 1):
            self._throttle()
            try:
                response = client.chat.completions.create(
                    model=self.config.model,
                    messages=[
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": user_content},
                    ],
                    temperature=0.0,
                    max_tokens=MAX_TOKENS,
                    timeout=self.config.request_timeout,
                )
            except Exception as exc:
                msg = str(exc).lower()
                if ("429" in msg or "too many requests" in msg) and attempt < MAX_RATE_LIMIT_RETRIES:
                    backoff = RATE_LIMIT_BACKOFF_SECONDS * (2 ** attempt)
                    logger.warning(
                        "[%s] 429 rate limit, backoff %.1fs then retry (%s/%s)",
                        self.name, backoff, attempt + 1, MAX_RATE_LIMIT_RETRIES,
                    )
                    time.sleep(backoff)
                    continue
                raise ClassificationError(self.name, f"API call error: {exc}") from exc

            if not response.choices:
                raise ClassificationError(self.name, "response has no choices")
            return _message_to_text(response.choices[0].message).strip()
        raise ClassificationError(self.name, "rate limited")

    def analyze(self, review: Review) -> AnalysisResult:
        raw = self._complete(build_user_prompt(review))
        if not raw:
            raise ClassificationError(self.name, "empty response from model")

        preview = raw[:200] + ("..." if len(raw) > 200 else "")
        logger.debug("[%s] Raw response (%s chars): %s", self.name, len(raw), preview)

        data = _extract_json(raw)
        if data is None:
            raise ClassificationError(self.name, f"could not extract JSON from response: {preview}")
        try:
            return AnalysisResult.from_payload(review.id, data)
        except (KeyError, ValueError, TypeError) as exc:
            raise ClassificationError(self.name, f"invalid classification payload: {exc}") from exc
