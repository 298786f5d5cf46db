import pytest

from config import AnalyzerConfig
from review_triage.analyzers.lexicon import LexiconAnalyzer, sentiment_score
from review_triage.models import IntentCategory, Review


def _review(content, rating=None, title=""):
    return Review(id="r-1", source="test", source_id="1", content=content, title=title, rating=rating)


@pytest.fixture
def analyzer():
    return LexiconAnalyzer(AnalyzerConfig())


def test_enthusiastic_positive_review(analyzer):
    result = analyzer.analyze(_review("This is the BEST DNS tool ever!!!", rating=5))

    assert result.sentiment_score == pytest.approx(1.0)
    assert result.keywords == ("dns",)
    assert result.confidence == pytest.approx(0.3)
    assert result.intent_category is IntentCategory.GENERAL_COMPLAINT
    assert [e.text for e in result.entities] == ["dns", "tool"]


def test_negative_crash_review(analyzer):
    result = analyzer.analyze(_review("Constant crashes and terrible DHCP support", rating=1))

    assert result.sentiment_score == pytest.approx(-1.0)
    assert result.keywords == ("crash", "support", "dhcp")
    # bug_report and customer_service tie; declaration order decides
    assert result.intent_category is IntentCategory.BUG_REPORT
    assert result.category_scores == {"bug_report": 1.0, "customer_service": 1.0}
    assert result.confidence == pytest.approx(0.3)


def test_no_keywords_gives_default_confidence(analyzer):
    result = analyzer.analyze(_review("meh"))
    assert result.keywords == ()
    assert result.confidence == 0.5
    assert result.sentiment_score == 0.0


def test_negation_turns_positive_into_negative():
    text = "the upgrade was not good"
    assert sentiment_score(text, text, None) == pytest.approx(-1.0)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("not really very much good", -1.0),  # three words in between still flips
        ("not really very much so good", 1.0),  # four words: too far
        ("not bad", -1.0),  # nothing positive to move
        ("great support, not bad", 0.0),
    ],
)
def test_negation_word_distance(text, expected):
    assert sentiment_score(text, text, None) == pytest.approx(expected)


def test_exclamations_amplify_score():
    plain = sentiment_score("bad bad good", "bad bad good", None)
    loud = sentiment_score("bad bad good!!!", "bad bad good!!!", None)
    assert plain == pytest.approx(-1 / 3)
    assert loud == pytest.approx(-0.4)


def test_caps_runs_amplify_score():
    raw = "WHY does THE dashboard LOOK bad bad but good"
    assert sentiment_score(raw.lower(), raw, None) == pytest.approx(-0.4)


def test_rating_blends_into_score():
    # neutral text, 1 star: 0.6 * 0 + 0.4 * -1
    assert sentiment_score("ok", "ok", 1.0) == pytest.approx(-0.4)
    assert sentiment_score("ok", "ok", 3.0) == pytest.approx(0.0)


def test_title_is_part_of_the_text(analyzer):
    result = analyzer.analyze(_review("see title", title="Refund never arrived"))
    assert "refund" in result.keywords
    assert result.intent_category is IntentCategory.BILLING


def test_custom_keywords_count_towards_relevance():
    analyzer = LexiconAnalyzer(AnalyzerConfig(keywords=["failover", "zone transfer"]))
    result = analyzer.analyze(_review("Zone transfer and failover both broke"))
    assert result.keywords[:2] == ("failover", "zone transfer")
    assert "broken" not in result.keywords


def test_longer_product_term_wins_entity_span(analyzer):
    result = analyzer.analyze(_review("dns firewall blocked our platform"))
    texts = [e.text for e in result.entities]
    assert texts == ["dns firewall", "platform"]
    assert result.entities[0].offset == 0
