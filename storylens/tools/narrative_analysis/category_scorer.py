"""Rubric category scoring in concurrent, evidence-checked batches."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, Field

from storylens.libs.model_gateway import GatewayError, GatewayErrorKind, ModelGateway, PromptSpec, RetryBudget
from .authenticity import render_authenticity_context
from .config import PipelineConfig
from .errors import EvidenceValidationError
from .features import render_feature_summary
from .models import AuthenticityAnalysis, Entry, ExtractedFeatures, RubricCategoryDefinition, RubricCategoryScore
from .prompts import READER_ROLE, render_entry, render_rubric

LOG = logging.getLogger(__name__)

_QUOTE_MARKS = "\"'“”‘’`"

DEADLINE_ERROR = GatewayError(GatewayErrorKind.TIMEOUT, "run deadline passed before the batch finished", 0)


class CategoryScorePayload(BaseModel):
    """One category as returned by the model. Range checks happen per category, not here."""
    id: str
    score: Optional[float] = None
    evidence: List[str] = Field(default_factory=list)
    justification: str = ""
    confidence: Optional[float] = None


class CategoryBatchPayload(BaseModel):
    categories: List[CategoryScorePayload]


@dataclass(frozen=True)
class ScoringBatch:
    name: str
    categories: Tuple[RubricCategoryDefinition, ...]

    @property
    def category_ids(self) -> List[str]:
        return [c.id for c in self.categories]


@dataclass
class BatchOutcome:
    """Scores for one batch, or the gateway error that prevented them."""
    batch: ScoringBatch
    scores: List[RubricCategoryScore] = field(default_factory=list)
    error: Optional[GatewayError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class PartialFailure:
    """Scoring finished but at least one batch produced no scores."""
    scores: List[RubricCategoryScore]
    failed_categories: List[str]
    errors: Dict[str, GatewayError]

    @property
    def all_failed(self) -> bool:
        return all(not s.is_scored and s.status == "unavailable" for s in self.scores)


ScoringResult = Union[List[RubricCategoryScore], PartialFailure]


def normalize_quote(quote: str) -> str:
    """Trim whitespace and a single layer of wrapping quote marks."""
    quote = (quote or "").strip()
    if len(quote) >= 2 and quote[0] in _QUOTE_MARKS and quote[-1] in _QUOTE_MARKS:
        quote = quote[1:-1].strip()
    return quote


def truncate(text: str, max_chars: int) -> str:
    text = (text or "").strip()
    if len(text) <= max_chars:
        return text
    return text[:max_chars - 3].rstrip() + "..."


class CategoryScorer:
    """Score rubric categories against an entry through the model gateway."""

    def __init__(self, gateway: ModelGateway, config: PipelineConfig):
        self.gateway = gateway
        self.config = config

    def plan_batches(self, categories: Sequence[RubricCategoryDefinition]) -> List[ScoringBatch]:
        """
        Group categories into scoring batches.

        Labelled categories are grouped by their ``batch`` label, in order of first
        appearance. Unlabelled categories are split into ``batch_count`` contiguous chunks.
        """
        grouped: Dict[str, List[RubricCategoryDefinition]] = {}
        unlabelled: List[RubricCategoryDefinition] = []
        for category in categories:
            if category.batch:
                grouped.setdefault(category.batch, []).append(category)
            else:
                unlabelled.append(category)

        batches = [ScoringBatch(name, tuple(members)) for name, members in grouped.items()]
        if unlabelled:
            n = min(self.config.batch_count, len(unlabelled))
            size, extra = divmod(len(unlabelled), n)
            start = 0
            for i in range(n):
                end = start + size + (1 if i < extra else 0)
                batches.append(ScoringBatch(f"batch_{i + 1}", tuple(unlabelled[start:end])))
                start = end
        return batches

    def build_prompt(self,
                     batch: ScoringBatch,
                     entry: Entry,
                     features: ExtractedFeatures,
                     authenticity: Optional[AuthenticityAnalysis]) -> PromptSpec:
        ids = ", ".join(batch.category_ids)
        return PromptSpec(
            role=READER_ROLE,
            task=(
                f"Score the student's writing on these rubric categories: {ids}. For each "
                "category give a score from 0 to 10, one or more short quotes copied exactly "
                "from the student text that support the score, a justification of at most "
                f"{self.config.justification_max_chars} characters, and your confidence from "
                "0 to 1. If the text offers no evidence for a category, return an empty "
                "evidence list rather than inventing a quote."
            ),
            context=[
                render_entry(entry),
                render_feature_summary(features),
                render_authenticity_context(authenticity),
                render_rubric(batch.categories),
            ],
            output_format=(
                '{"categories": [{"id": "<category id>", "score": <0-10>, '
                '"evidence": ["<exact quote>", ...], "justification": "<text>", '
                '"confidence": <0-1>}, ...]}'
            ),
        )

    def validate_category(self,
                          payload: CategoryScorePayload,
                          category: RubricCategoryDefinition,
                          text: str) -> RubricCategoryScore:
        """
        Check one category's range and evidence against the entry text.

        Raises:
            EvidenceValidationError: if the score or any quote fails validation
        """
        if payload.score is None:
            raise EvidenceValidationError(category.id, "missing score")
        if not 0 <= payload.score <= 10:
            raise EvidenceValidationError(category.id, f"score {payload.score} outside [0, 10]")

        quotes = [normalize_quote(q) for q in payload.evidence]
        if not quotes:
            raise EvidenceValidationError(category.id, "no evidence quotes")
        for quote in quotes:
            if not quote or quote not in text:
                raise EvidenceValidationError(category.id, f"quote not found in text: {quote[:60]!r}")

        confidence = payload.confidence
        if confidence is not None:
            confidence = max(0.0, min(1.0, confidence))

        return RubricCategoryScore(
            category_id=category.id,
            score=payload.score,
            raw_score=payload.score,
            evidence=tuple(quotes),
            justification=truncate(payload.justification, self.config.justification_max_chars),
            confidence=confidence,
            status="scored",
        )

    def _scores_from_payload(self,
                             batch: ScoringBatch,
                             payload: CategoryBatchPayload,
                             entry: Entry) -> List[RubricCategoryScore]:
        by_id: Dict[str, CategoryScorePayload] = {}
        for item in payload.categories:
            if item.id in by_id:
                LOG.debug(f"Ignoring duplicate score for {item.id}")
                continue
            by_id[item.id] = item

        unexpected = sorted(set(by_id) - set(batch.category_ids))
        if unexpected:
            LOG.debug(f"Ignoring scores for categories outside batch {batch.name}: {unexpected}")

        scores = []
        for category in batch.categories:
            item = by_id.get(category.id)
            if item is None:
                LOG.warning(f"No score returned for {category.id}")
                scores.append(RubricCategoryScore.placeholder(category.id))
                continue
            try:
                scores.append(self.validate_category(item, category, entry.text))
            except EvidenceValidationError as e:
                LOG.warning(f"Discarding score for {e.category_id}: {e.reason}")
                scores.append(RubricCategoryScore.placeholder(category.id))
        return scores

    async def score_batch(self,
                          batch: ScoringBatch,
                          entry: Entry,
                          features: ExtractedFeatures,
                          authenticity: Optional[AuthenticityAnalysis] = None,
                          budget: Optional[RetryBudget] = None) -> BatchOutcome:
        """
        Score one batch with a single gateway call.

        Raises:
            PermanentGatewayError: propagated from the gateway
        """
        prompt = self.build_prompt(batch, entry, features, authenticity)
        result = await self.gateway.invoke(
            prompt, CategoryBatchPayload, self.config.gateway.call_timeout_seconds, budget
        )
        if not result.ok:
            LOG.warning(f"Batch {batch.name} failed for {entry.id}: {result.error}")
            return BatchOutcome(
                batch=batch,
                scores=[RubricCategoryScore.placeholder(c.id, status="unavailable") for c in batch.categories],
                error=result.error,
            )
        return BatchOutcome(batch=batch, scores=self._scores_from_payload(batch, result.payload, entry))

    def collect(self,
                categories: Sequence[RubricCategoryDefinition],
                outcomes: Sequence[BatchOutcome],
                missing_error: GatewayError = DEADLINE_ERROR) -> ScoringResult:
        """
        Merge batch outcomes into one score per category, in declaration order.

        Categories covered by no outcome (their batch never finished) become
        ``unavailable`` placeholders attributed to ``missing_error``.
        """
        scored: Dict[str, RubricCategoryScore] = {}
        errors: Dict[str, GatewayError] = {}
        for outcome in outcomes:
            for score in outcome.scores:
                scored[score.category_id] = score
            if outcome.error is not None:
                for category_id in outcome.batch.category_ids:
                    errors[category_id] = outcome.error

        scores = []
        for category in categories:
            score = scored.get(category.id)
            if score is None:
                score = RubricCategoryScore.placeholder(category.id, status="unavailable")
                errors[category.id] = missing_error
            scores.append(score)

        if not errors:
            return scores
        failed = [c.id for c in categories if c.id in errors]
        return PartialFailure(scores=scores, failed_categories=failed, errors=errors)

    async def score_categories(self,
                               entry: Entry,
                               features: ExtractedFeatures,
                               authenticity: Optional[AuthenticityAnalysis] = None,
                               categories: Optional[Sequence[RubricCategoryDefinition]] = None,
                               budget: Optional[RetryBudget] = None) -> ScoringResult:
        """
        Score every category, one concurrent gateway call per batch.

        Args:
            entry: The entry being analyzed
            features: Features extracted from the entry text
            authenticity: Authenticity signals passed to the model as context
            categories: Rubric categories (defaults to the configured rubric)
            budget: Shared per-run retry budget

        Returns:
            Scores in declaration order, or a PartialFailure if any batch failed
        """
        categories = list(categories if categories is not None else self.config.categories)
        batches = self.plan_batches(categories)
        LOG.info(f"Scoring {len(categories)} categories for {entry.id} in {len(batches)} batches")
        outcomes = await asyncio.gather(*[
            self.score_batch(batch, entry, features, authenticity, budget) for batch in batches
        ])
        return self.collect(categories, outcomes)
