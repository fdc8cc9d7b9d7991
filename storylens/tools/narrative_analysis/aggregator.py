"""Assemble calibrated scores and authenticity into an AnalysisReport."""

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from .config import PipelineConfig
from .models import AnalysisReport, AuthenticityAnalysis, Depth, RubricCategoryScore

LOG = logging.getLogger(__name__)


def compute_overall_index(scores: Iterable[RubricCategoryScore], weights: Dict[str, float]) -> float:
    """
    Weighted mean of scored categories, scaled to [0, 100].

    Categories with no score are left out and the remaining weights are
    renormalized to sum to 1, so a missing category's weight is spread across
    the scored ones in proportion to their own weights. With nothing scored
    the index is 0.0.
    """
    total_weight = 0.0
    weighted_sum = 0.0
    for score in scores:
        weight = weights.get(score.category_id, 0.0)
        if score.score is None or weight <= 0:
            continue
        total_weight += weight
        weighted_sum += weight * score.score
    if total_weight <= 0:
        return 0.0
    index = round(10 * weighted_sum / total_weight, 1)
    return max(0.0, min(100.0, index))


def derive_flags(scores: Sequence[RubricCategoryScore],
                 authenticity: Optional[AuthenticityAnalysis],
                 config: PipelineConfig,
                 empty_entry: bool = False) -> List[str]:
    flags: List[str] = []
    if empty_entry:
        flags.append("empty_entry")

    if authenticity is None or not authenticity.available:
        flags.append("authenticity_unavailable")
    else:
        if authenticity.score < config.flags.voice_concern_below:
            flags.append("voice_concern")
        if authenticity.voice_type == "manufactured":
            flags.append("manufactured_voice")

    scored = [s for s in scores if s.is_scored]
    if not scored:
        flags.append("no_scored_categories")
    elif len(scored) < len(scores):
        flags.append("incomplete_scoring")

    for score in scored:
        if score.score < config.flags.low_score_below:
            flags.append(f"low_score:{score.category_id}")
    return flags


def order_scores(scores: Iterable[RubricCategoryScore], config: PipelineConfig) -> List[RubricCategoryScore]:
    """One score per configured category, in configuration order; gaps become placeholders."""
    by_id: Dict[str, RubricCategoryScore] = {}
    for score in scores:
        by_id.setdefault(score.category_id, score)
    return [
        by_id.get(category_id) or RubricCategoryScore.placeholder(category_id, status="unavailable")
        for category_id in config.category_ids
    ]


def aggregate(scores: Iterable[RubricCategoryScore],
              authenticity: Optional[AuthenticityAnalysis],
              config: PipelineConfig,
              *,
              entry_id: str,
              depth: Depth = "standard",
              empty_entry: bool = False,
              unavailable_analyses: Sequence[str] = (),
              deadline_exceeded: bool = False,
              failed: bool = False) -> AnalysisReport:
    """
    Build the report. Pure and total: every optional input has an explicit branch.

    Args:
        scores: Calibrated category scores, in any order
        authenticity: Authenticity analysis, or None if it never ran
        config: Pipeline configuration (weights, thresholds, impression bands)
        entry_id: Identifier of the analyzed entry
        depth: Analysis depth the run used
        empty_entry: Whether scoring was skipped because the entry was empty
        unavailable_analyses: Names of sub-analyses that degraded
        deadline_exceeded: Whether the run deadline cut scoring short
        failed: Whether no category batch produced usable scores

    Returns:
        AnalysisReport without workshop items
    """
    ordered = order_scores(scores, config)
    authenticity = authenticity or AuthenticityAnalysis.neutral()
    overall_index = compute_overall_index(ordered, config.weights)
    flags = derive_flags(ordered, authenticity, config, empty_entry=empty_entry)
    unavailable = tuple(dict.fromkeys(unavailable_analyses))

    report = AnalysisReport(
        entry_id=entry_id,
        rubric_version=config.rubric_version,
        overall_index=overall_index,
        reader_impression=config.impression_for(overall_index),
        categories=tuple(ordered),
        authenticity=authenticity,
        flags=tuple(flags),
        status="failed" if failed else "done",
        degraded=failed or deadline_exceeded or bool(unavailable),
        unavailable_analyses=unavailable,
        deadline_exceeded=deadline_exceeded,
        depth=depth,
    )
    LOG.debug(f"Aggregated {entry_id}: index={overall_index} impression={report.reader_impression} "
              f"flags={list(flags)}")
    return report
