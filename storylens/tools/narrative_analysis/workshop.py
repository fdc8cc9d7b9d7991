"""Ranked, evidence-linked revision suggestions ("workshop items")."""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from storylens.libs.model_gateway import ModelGateway, PromptSpec, RetryBudget
from .config import PipelineConfig, WorkshopSettings
from .errors import DeadlineExceeded
from .features import sentence_spans
from .models import (
    NO_SUGGESTION_NOTE,
    SEVERITY_RANK,
    AnalysisReport,
    Entry,
    ExtractedFeatures,
    RubricCategoryDefinition,
    RubricCategoryScore,
    Severity,
    SuggestedRewrite,
    WorkshopItem,
)
from .prompts import READER_ROLE, render_category, render_entry

LOG = logging.getLogger(__name__)


class SuggestionPayload(BaseModel):
    text: str = Field(min_length=1)
    rationale: str = ""


class SuggestionsPayload(BaseModel):
    suggestions: List[SuggestionPayload] = Field(min_length=1)


@dataclass(frozen=True)
class WorkshopCandidate:
    """A category worth revising, with its ranking keys."""
    category: RubricCategoryDefinition
    score: RubricCategoryScore
    position: int
    impact: float
    severity: Severity

    @property
    def is_evidence_gap(self) -> bool:
        return self.score.status == "insufficient_evidence"

    def sort_key(self) -> Tuple[float, int, int]:
        return (-self.impact, -SEVERITY_RANK[self.severity], self.position)


def severity_for(score: RubricCategoryScore, settings: WorkshopSettings) -> Severity:
    if score.score is None or score.score < settings.high_severity_below:
        return "high"
    if score.score < settings.medium_severity_below:
        return "medium"
    return "low"


def rank_candidates(report: AnalysisReport,
                    categories: Sequence[RubricCategoryDefinition],
                    settings: WorkshopSettings) -> List[WorkshopCandidate]:
    """
    Select and order workshop candidates.

    Scored categories below the threshold and evidence gaps qualify;
    categories that were unavailable do not. Order is estimated impact
    descending, then severity, then declaration order.
    """
    candidates = []
    for position, category in enumerate(categories):
        score = report.category(category.id)
        if score is None or score.status == "unavailable":
            continue
        if score.is_scored:
            if score.score >= settings.score_threshold:
                continue
            distance = 10.0 - score.score
        elif score.status == "insufficient_evidence":
            distance = 10.0
        else:
            continue
        candidates.append(WorkshopCandidate(
            category=category,
            score=score,
            position=position,
            impact=round(distance * category.weight, 4),
            severity=severity_for(score, settings),
        ))
    return sorted(candidates, key=WorkshopCandidate.sort_key)


def locate_problem(candidate: WorkshopCandidate,
                   entry: Entry,
                   features: ExtractedFeatures) -> Tuple[str, int, int]:
    """
    Pick the passage an item points at, with character offsets into the entry text.

    Prefers the first evidence quote, then the first marker of the category's
    feature family, then the first sentence.
    """
    text = entry.text
    for quote in candidate.score.evidence:
        start = text.find(quote)
        if quote and start >= 0:
            return quote, start, start + len(quote)

    family = candidate.category.feature_family
    if family:
        matches = features.bucket(family).matches
        if matches:
            first = matches[0]
            return first.text, first.start, first.end

    spans = sentence_spans(text)
    if spans:
        start, end = spans[0]
        return text[start:end], start, end
    return "", 0, 0


def describe_problem(candidate: WorkshopCandidate) -> str:
    label = candidate.category.label
    if candidate.is_evidence_gap:
        return f"{label}: the text offers no verifiable evidence for this category."
    detail = candidate.score.justification or candidate.category.definition
    summary = f"{label} scored {candidate.score.score:g}/10."
    return f"{summary} {detail}".strip()


class WorkshopItemGenerator:
    """Turn low-scoring categories into ranked workshop items with suggested rewrites."""

    def __init__(self, gateway: ModelGateway, config: PipelineConfig):
        self.gateway = gateway
        self.config = config

    def _build_prompt(self, category: RubricCategoryDefinition, item: WorkshopItem, entry: Entry) -> PromptSpec:
        limit = self.config.workshop.max_suggestions_per_item
        return PromptSpec(
            role=READER_ROLE,
            task=(
                f"The student's writing is weak on '{category.label}'. Suggest up to "
                f"{limit} concrete revisions the student could make. Do not invent facts; where "
                "detail is missing, tell the student what kind of detail to add."
            ),
            context=[
                render_entry(entry),
                f"CATEGORY:\n{render_category(category)}",
                f"PROBLEM:\n{item.problem}",
                f"PASSAGE:\n\"{item.quote}\"" if item.quote else "",
            ],
            output_format='{"suggestions": [{"text": "<revision>", "rationale": "<why it helps>"}, ...]}',
        )

    async def _suggest(self,
                       item: WorkshopItem,
                       category: RubricCategoryDefinition,
                       entry: Entry,
                       budget: Optional[RetryBudget]) -> WorkshopItem:
        prompt = self._build_prompt(category, item, entry)
        result = await self.gateway.invoke(
            prompt, SuggestionsPayload, self.config.gateway.call_timeout_seconds, budget
        )
        if not result.ok:
            LOG.warning(f"No suggestions for {item.category_id}: {result.error}")
            return without_suggestions(item)

        suggestions = tuple(
            SuggestedRewrite(text=s.text.strip(), rationale=s.rationale.strip())
            for s in result.payload.suggestions[:self.config.workshop.max_suggestions_per_item]
        )
        return item.model_copy(update={"suggestions": suggestions, "suggestion_status": "generated"})

    def build_items(self,
                    report: AnalysisReport,
                    entry: Entry,
                    features: ExtractedFeatures,
                    categories: Optional[Sequence[RubricCategoryDefinition]] = None,
                    max_items: int = 3) -> List[WorkshopItem]:
        """Rank candidates and locate the quoted problem for the top ``max_items``."""
        categories = categories if categories is not None else self.config.categories
        ranked = rank_candidates(report, categories, self.config.workshop)[:max(0, max_items)]

        items = []
        for rank, candidate in enumerate(ranked, start=1):
            quote, start, end = locate_problem(candidate, entry, features)
            items.append(WorkshopItem(
                id=f"{report.entry_id}-w{rank}",
                severity=candidate.severity,
                category_id=candidate.category.id,
                problem=describe_problem(candidate),
                quote=quote,
                start=start,
                end=end,
                estimated_impact=candidate.impact,
            ))
        return items

    async def add_suggestions(self,
                              items: Sequence[WorkshopItem],
                              entry: Entry,
                              categories: Optional[Sequence[RubricCategoryDefinition]] = None,
                              budget: Optional[RetryBudget] = None,
                              timeout: Optional[float] = None) -> List[WorkshopItem]:
        """
        Request suggestions for every item, one concurrent call per item.

        A failed call keeps its item with ``suggestion_status="unavailable"``.
        Items keep their ranked order regardless of completion order.

        Args:
            timeout: Seconds to wait for the whole wave; ``None`` waits for every call

        Raises:
            DeadlineExceeded: if calls were still pending at ``timeout``; ``partial``
                holds every item, with finished suggestions kept and the rest unavailable
            PermanentGatewayError: propagated from the gateway
        """
        items = list(items)
        if not items:
            return items
        if timeout is not None and timeout <= 0:
            raise DeadlineExceeded("no time left for workshop suggestions",
                                   partial=[without_suggestions(item) for item in items])

        by_id = {c.id: c for c in (categories if categories is not None else self.config.categories)}
        LOG.info(f"Requesting suggestions for {len(items)} workshop item(s)")
        tasks = [
            asyncio.ensure_future(self._suggest(item, by_id[item.category_id], entry, budget))
            for item in items
        ]
        done, pending = await asyncio.wait(tasks, timeout=timeout, return_when=asyncio.FIRST_EXCEPTION)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for task in done:
            if task.exception() is not None:
                raise task.exception()

        results = [task.result() if task in done else without_suggestions(item) for item, task in zip(items, tasks)]
        if pending:
            raise DeadlineExceeded(f"{len(pending)} suggestion call(s) still pending at the run deadline",
                                   partial=results)
        return results

    async def generate_items(self,
                             report: AnalysisReport,
                             entry: Entry,
                             features: ExtractedFeatures,
                             categories: Optional[Sequence[RubricCategoryDefinition]] = None,
                             max_items: int = 3,
                             with_suggestions: bool = True,
                             budget: Optional[RetryBudget] = None) -> List[WorkshopItem]:
        """Build up to ``max_items`` ranked workshop items, with suggestions unless disabled."""
        items = self.build_items(report, entry, features, categories, max_items)
        if not with_suggestions:
            return items
        return await self.add_suggestions(items, entry, categories, budget)


def without_suggestions(item: WorkshopItem) -> WorkshopItem:
    return item.model_copy(update={"suggestion_status": "unavailable", "suggestions": (), "note": NO_SUGGESTION_NOTE})
