"""Tests for heuristic feature extraction."""

from storylens.tools.narrative_analysis.features import (
    extract_features,
    reflection_quality,
    render_feature_summary,
    sentence_spans,
    sentence_variety,
    split_sentences,
)

from conftest import FOOD_DRIVE


def assert_offsets_valid(features, text):
    for family in ("voice", "evidence", "arc", "collaboration", "reflection"):
        for match in features.bucket(family).matches:
            assert text[match.start:match.end] == match.text


def test_food_drive_evidence_and_collaboration():
    features = extract_features(FOOD_DRIVE)

    quantities = features.evidence.texts("quantity")
    assert "1,200 lbs" in quantities
    assert "15 volunteers" in quantities
    assert "3-day" in quantities
    assert features.evidence.with_label("outcome")
    assert "coordinating" in features.collaboration.texts("collaboration_verb")
    assert features.word_count == 19
    assert_offsets_valid(features, FOOD_DRIVE)


def test_empty_text_yields_empty_features():
    for text in ("", "   \n\t"):
        features = extract_features(text)
        assert features.is_empty
        assert features.evidence.count == 0
        assert features.voice.score == 0.0
        assert features.reflection_quality == "none"


def test_unicode_offsets_stay_aligned():
    text = "Über drei Monate — I organized 40 volunteers with Zoë and raised 500 dollars. 我们 worked together."
    features = extract_features(text)
    assert_offsets_valid(features, text)
    assert "40 volunteers" in features.evidence.texts("quantity")
    assert "together" in features.collaboration.texts("collaboration_verb")


def test_named_partner_excludes_common_words():
    text = "I worked alongside Maria Lopez and Monday was our first meeting."
    features = extract_features(text)
    partners = features.collaboration.texts("named_partner")
    assert "Maria Lopez" in partners
    assert "Monday" not in partners


def test_buzzwords_and_passive_voice():
    text = ("I was tasked with stakeholder outreach. Reports were completed and emails were sent. "
            "I leveraged synergies.")
    features = extract_features(text)
    assert {"tasked with", "stakeholder", "leveraged", "synergies"} <= set(features.voice.texts("buzzword"))
    assert len(features.voice.with_label("passive")) == 2
    assert features.passive_ratio == 1.0
    assert features.buzzword_density > 2.0


def test_reflection_levels():
    assert reflection_quality(0, 0) == "none"
    assert reflection_quality(1, 0) == "superficial"
    assert reflection_quality(2, 0) == "moderate"
    assert reflection_quality(0, 1) == "moderate"
    assert reflection_quality(3, 1) == "deep"

    text = ("At first I thought tutoring was about answers. I realized it was about patience, "
            "and I learned to listen. I used to think speed mattered; now I see it differently. "
            "That lesson is one I carry into every team.")
    features = extract_features(text)
    assert features.reflection_quality == "deep"
    assert features.reflection.score >= 9.0


def test_arc_markers():
    text = ("Initially the club had two members. The budget was cut and we faced a deadline. "
            "Then I realized we could partner with the library. Eventually we had thirty members.")
    features = extract_features(text)
    assert "deadline" in features.arc.texts("stakes")
    assert "realized" in features.arc.texts("turning_point")
    assert len(features.arc.with_label("temporal")) >= 3
    assert features.arc.score == 10.0


def test_sentences_and_spans():
    text = "  First one. Second, longer sentence here!  Third?"
    assert split_sentences(text) == ["First one", "Second, longer sentence here", "Third"]
    spans = sentence_spans(text)
    assert [text[s:e] for s, e in spans] == ["First one", "Second, longer sentence here", "Third"]


def test_sentence_variety_bounds():
    assert sentence_variety([]) == 0.0
    assert sentence_variety(["just one"]) == 5.0
    assert sentence_variety(["a b", "a b"]) == 0.0
    assert 0.0 < sentence_variety(["a", "a b c d e f g h i j k l m n o p q r s t"]) <= 10.0


def test_extraction_is_deterministic():
    assert extract_features(FOOD_DRIVE) == extract_features(FOOD_DRIVE)


def test_feature_summary_mentions_markers():
    summary = render_feature_summary(extract_features(FOOD_DRIVE))
    assert '"1,200 lbs"' in summary
    assert '"coordinating"' in summary
    assert render_feature_summary(extract_features("")).endswith("The entry is empty.")
