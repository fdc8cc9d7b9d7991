"""Tests for batched category scoring and evidence validation."""

import json

import pytest

from storylens.libs.model_gateway import GatewayErrorKind, ModelGateway
from storylens.tools.narrative_analysis.category_scorer import (
    CategoryScorer,
    PartialFailure,
    normalize_quote,
    truncate,
)
from storylens.tools.narrative_analysis.features import extract_features
from storylens.tools.narrative_analysis.models import INSUFFICIENT_EVIDENCE_NOTE, Entry

from conftest import FOOD_DRIVE, FakeAgent, batch_ids, batch_response, make_responder


def make_scorer(responder, config, max_attempts=2):
    agent = FakeAgent(responder)
    gateway = ModelGateway(agent, max_attempts=max_attempts, backoff_base=0.0, backoff_max=0.0)
    return CategoryScorer(gateway, config), agent


@pytest.fixture
def entry():
    return Entry(id="food-drive", category="volunteer", text=FOOD_DRIVE)


def test_plan_batches_by_label(pipeline_config):
    scorer, _ = make_scorer(make_responder(), pipeline_config)
    batches = scorer.plan_batches(pipeline_config.categories)
    assert [b.name for b in batches] == ["text_focused", "outcome_focused", "narrative_focused"]
    assert sum(len(b.categories) for b in batches) == len(pipeline_config.categories)


def test_plan_batches_unlabelled_chunks(pipeline_config):
    categories = [c.model_copy(update={"batch": None}) for c in pipeline_config.categories]
    scorer, _ = make_scorer(make_responder(), pipeline_config)
    batches = scorer.plan_batches(categories)
    assert len(batches) == 3
    assert [len(b.categories) for b in batches] == [4, 4, 3]
    flattened = [c.id for b in batches for c in b.categories]
    assert flattened == [c.id for c in categories]


@pytest.mark.asyncio
async def test_scores_every_category_in_order(pipeline_config, entry):
    scorer, agent = make_scorer(make_responder(score=7.5), pipeline_config)
    result = await scorer.score_categories(entry, extract_features(entry.text))
    assert isinstance(result, list)
    assert [s.category_id for s in result] == pipeline_config.category_ids
    assert all(s.score == 7.5 and s.raw_score == 7.5 for s in result)
    assert all(q in entry.text for s in result for q in s.evidence)
    assert len(agent.prompts) == 3


@pytest.mark.asyncio
async def test_hallucinated_quote_gives_placeholder(pipeline_config, entry):
    def responder(prompt):
        ids = batch_ids(prompt)
        overrides = {"voice_integrity": {"evidence": ["I fed 5,000 families"]}}
        return batch_response(ids, **overrides)

    scorer, _ = make_scorer(responder, pipeline_config)
    result = await scorer.score_categories(entry, extract_features(entry.text))
    by_id = {s.category_id: s for s in result}
    voice = by_id["voice_integrity"]
    assert voice.score is None
    assert voice.status == "insufficient_evidence"
    assert voice.justification == INSUFFICIENT_EVIDENCE_NOTE
    assert by_id["craft_language_quality"].score == 7.0


@pytest.mark.asyncio
async def test_wrapped_quotes_are_trimmed(pipeline_config, entry):
    def responder(prompt):
        ids = batch_ids(prompt)
        return batch_response(ids, quote='  “15 volunteers”  ')

    scorer, _ = make_scorer(responder, pipeline_config)
    result = await scorer.score_categories(entry, extract_features(entry.text))
    assert all(s.evidence == ("15 volunteers",) for s in result)


@pytest.mark.asyncio
async def test_out_of_range_and_missing_categories(pipeline_config, entry):
    def responder(prompt):
        categories = [
            {"id": cid, "score": 11 if cid == "specificity_evidence" else 6,
             "evidence": ["15 volunteers"], "justification": "ok"}
            for cid in batch_ids(prompt) if cid != "fit_trajectory"
        ]
        return json.dumps({"categories": categories})

    scorer, _ = make_scorer(responder, pipeline_config)
    result = await scorer.score_categories(entry, extract_features(entry.text))
    by_id = {s.category_id: s for s in result}
    assert by_id["specificity_evidence"].status == "insufficient_evidence"
    assert by_id["fit_trajectory"].status == "insufficient_evidence"
    assert by_id["reflection_meaning"].is_scored


@pytest.mark.asyncio
async def test_no_evidence_gives_placeholder(pipeline_config, entry):
    def responder(prompt):
        ids = batch_ids(prompt)
        return batch_response(ids, **{cid: {"evidence": []} for cid in ids})

    scorer, _ = make_scorer(responder, pipeline_config)
    result = await scorer.score_categories(entry, extract_features(entry.text))
    assert all(s.status == "insufficient_evidence" for s in result)


@pytest.mark.asyncio
async def test_failed_batch_is_partial_failure(pipeline_config, entry):
    scorer, _ = make_scorer(make_responder(fail_batches=["transformative_impact"]), pipeline_config)
    result = await scorer.score_categories(entry, extract_features(entry.text))
    assert isinstance(result, PartialFailure)
    assert result.failed_categories == [
        "transformative_impact", "initiative_leadership", "community_collaboration", "role_clarity_ownership",
    ]
    assert all(e.kind == GatewayErrorKind.MALFORMED for e in result.errors.values())
    by_id = {s.category_id: s for s in result.scores}
    assert by_id["transformative_impact"].status == "unavailable"
    assert by_id["transformative_impact"].score is None
    assert by_id["voice_integrity"].score == 7.0
    assert not result.all_failed


@pytest.mark.asyncio
async def test_justification_is_truncated(pipeline_config, entry):
    def responder(prompt):
        ids = batch_ids(prompt)
        return batch_response(ids, **{cid: {"justification": "x" * 2000} for cid in ids})

    scorer, _ = make_scorer(responder, pipeline_config)
    result = await scorer.score_categories(entry, extract_features(entry.text))
    assert all(len(s.justification) <= pipeline_config.justification_max_chars for s in result)


def test_prompt_contains_rubric_and_context(pipeline_config, entry):
    scorer, _ = make_scorer(make_responder(), pipeline_config)
    batch = scorer.plan_batches(pipeline_config.categories)[0]
    prompt = scorer.build_prompt(batch, entry, extract_features(entry.text), None).render()
    assert FOOD_DRIVE in prompt
    assert "[voice_integrity] Voice Integrity" in prompt
    assert "EXTRACTED FEATURES" in prompt
    assert "AUTHENTICITY SIGNALS" in prompt
    assert "transformative_impact" not in prompt


def test_normalize_quote():
    assert normalize_quote('  "hello world" ') == "hello world"
    assert normalize_quote("‘single’") == "single"
    assert normalize_quote("plain") == "plain"
    assert normalize_quote('"') == '"'


def test_truncate():
    assert truncate("short", 10) == "short"
    assert truncate("a" * 50, 10) == "aaaaaaa..."
