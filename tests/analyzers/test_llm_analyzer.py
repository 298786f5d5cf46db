from types import SimpleNamespace
from unittest.mock import MagicMock

import openai
import pytest

from config import AnalyzerConfig
from review_triage.analyzers import llm_analyzer
from review_triage.analyzers.llm_analyzer import LLMAnalyzer, _extract_json, build_user_prompt
from review_triage.errors import ClassificationError
from review_triage.models import IntentCategory, Review


class TestExtractJson:
    def test_valid_json(self):
        text = '{"key": "value"}'
        assert _extract_json(text) == {"key": "value"}

    def test_markdown_json(self):
        text = '```json\n{"key": "value"}\n```'
        assert _extract_json(text) == {"key": "value"}

    def test_markdown_no_lang(self):
        text = '```\n{"key": "value"}\n```'
        assert _extract_json(text) == {"key": "value"}

    def test_json_in_text(self):
        text = 'Here is the JSON: {"key": "value"} hope that helps'
        assert _extract_json(text) == {"key": "value"}

    def test_trailing_comma(self):
        text = '{"key": "value",}'
        assert _extract_json(text) == {"key": "value"}

    def test_smart_quotes(self):
        text = "{“key”: “value”}"
        assert _extract_json(text) == {"key": "value"}

    def test_truncated_json(self):
        result = _extract_json('{"key": "val')
        assert result.get("key") == "val"

    def test_empty_input(self):
        assert _extract_json("") is None
        assert _extract_json(None) is None

    def test_no_json(self):
        assert _extract_json("Just some text without any braces.") is None

    def test_top_level_list_is_rejected(self):
        assert _extract_json("[1, 2, 3]") is None


REVIEW = Review(
    id="g2-1",
    source="g2",
    source_id="1",
    content="Grid upgrade failed twice and support was no help.",
    title="Upgrade pain",
    rating=2,
    metadata={"hashtags": ["nios", "upgrade"]},
)

PAYLOAD = (
    '```json\n{"sentiment_score": -0.8, "intent_category": "Bug Report", "confidence": 0.9,'
    ' "keywords": ["upgrade", "grid"], "entities": [{"text": "grid", "type": "PRODUCT", "offset": 0}],'
    ' "category_scores": {"bug_report": 0.7, "customer_service": 0.3}}\n```'
)


def _completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


@pytest.fixture(autouse=True)
def no_throttle(monkeypatch):
    monkeypatch.setattr(llm_analyzer, "MIN_REQUEST_INTERVAL_SECONDS", 0)
    monkeypatch.setattr(llm_analyzer, "RATE_LIMIT_BACKOFF_SECONDS", 0)


def _analyzer(client):
    return LLMAnalyzer(AnalyzerConfig(mode="openai", api_key="sk-test"), provider="openai", client=client)


def test_user_prompt_carries_review_context():
    prompt = build_user_prompt(REVIEW)
    assert "Source: g2" in prompt
    assert "Rating: 2/5" in prompt
    assert "Tags: nios, upgrade" in prompt
    assert REVIEW.content in prompt


def test_analyze_parses_model_reply():
    client = MagicMock()
    client.chat.completions.create.return_value = _completion(PAYLOAD)

    result = _analyzer(client).analyze(REVIEW)

    assert result.review_id == "g2-1"
    assert result.sentiment_score == -0.8
    assert result.intent_category is IntentCategory.BUG_REPORT
    assert result.keywords == ("upgrade", "grid")
    assert result.entities[0].text == "grid"
    assert result.category_scores["customer_service"] == 0.3
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["messages"][0]["role"] == "system"
    assert kwargs["temperature"] == 0.0


def test_rate_limit_is_retried():
    client = MagicMock()
    client.chat.completions.create.side_effect = [Exception("Error code: 429 Too Many Requests"), _completion(PAYLOAD)]

    result = _analyzer(client).analyze(REVIEW)

    assert result.intent_category is IntentCategory.BUG_REPORT
    assert client.chat.completions.create.call_count == 2


@pytest.mark.parametrize(
    "reply",
    [
        "",
        "I cannot classify this.",
        '{"sentiment_score": "very bad", "intent_category": "bug_report"}',
        '{"sentiment_score": -0.5, "intent_category": "weather"}',
        '{"intent_category": "bug_report"}',
    ],
)
def test_unusable_reply_raises_classification_error(reply):
    client = MagicMock()
    client.chat.completions.create.return_value = _completion(reply)
    with pytest.raises(ClassificationError):
        _analyzer(client).analyze(REVIEW)


def test_api_error_raises_classification_error():
    client = MagicMock()
    client.chat.completions.create.side_effect = Exception("connection refused")
    with pytest.raises(ClassificationError) as excinfo:
        _analyzer(client).analyze(REVIEW)
    assert excinfo.value.strategy == "openai"


def test_missing_api_key_raises_classification_error():
    analyzer = LLMAnalyzer(AnalyzerConfig(mode="openai", api_key=""), provider="openai")
    with pytest.raises(ClassificationError):
        analyzer.analyze(REVIEW)


def test_azure_mode_builds_azure_client():
    config = AnalyzerConfig(
        mode="azure",
        api_key="k",
        base_url="https://acme.openai.azure.com",
        api_version="2024-06-01",
        model="triage-gpt4o",
    )
    client = LLMAnalyzer(config)._get_client()

    assert isinstance(client, openai.AzureOpenAI)
    assert client.default_query["api-version"] == "2024-06-01"
    assert str(client.base_url).startswith("https://acme.openai.azure.com/openai")


def test_azure_mode_without_endpoint_raises_classification_error():
    analyzer = LLMAnalyzer(AnalyzerConfig(mode="azure", api_key="k", base_url=""))
    with pytest.raises(ClassificationError):
        analyzer.analyze(REVIEW)


def test_openai_mode_builds_plain_client():
    client = LLMAnalyzer(AnalyzerConfig(mode="openai", api_key="sk-test"))._get_client()
    assert isinstance(client, openai.OpenAI)
    assert not isinstance(client, openai.AzureOpenAI)
