"""Deterministic post-hoc calibration of raw category scores."""

import logging
from typing import Iterable, List

from ..models import RubricCategoryScore
from .calibration_models import CalibrationTable

LOG = logging.getLogger(__name__)


def _clamp(value: float) -> float:
    return max(0.0, min(10.0, value))


def calibrate_score(score: RubricCategoryScore, table: CalibrationTable) -> RubricCategoryScore:
    """
    Calibrate a single score against ``table``.

    The adjustment is always computed from ``raw_score``, and the result is
    stamped with the table version, so applying the same table twice returns
    the score unchanged.
    """
    if not score.is_scored:
        return score
    if score.calibration_version == table.version:
        return score

    raw = score.raw_score if score.raw_score is not None else score.score
    adjustment = table.adjustment_for(score.category_id, raw) or 0.0
    calibrated = _clamp(raw + adjustment)

    if adjustment:
        LOG.debug(f"Calibrated {score.category_id}: {raw} -> {calibrated} ({table.version})")

    return score.model_copy(update={
        "score": calibrated,
        "raw_score": raw,
        "calibration_version": table.version,
    })


def calibrate(scores: Iterable[RubricCategoryScore], table: CalibrationTable) -> List[RubricCategoryScore]:
    """Calibrate every score; order is preserved and null scores pass through."""
    return [calibrate_score(score, table) for score in scores]
