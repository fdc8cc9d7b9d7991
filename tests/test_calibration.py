"""Tests for score calibration."""

import pytest
from pydantic import ValidationError

from storylens.tools.narrative_analysis.calibration import (
    CalibrationTable,
    CalibrationTier,
    calibrate,
    calibrate_score,
)
from storylens.tools.narrative_analysis.models import RubricCategoryScore


@pytest.fixture
def table():
    return CalibrationTable(
        version="t1",
        tiers=[
            CalibrationTier(min_score=0, max_score=4, adjustment=0.5),
            CalibrationTier(min_score=8, max_score=10, adjustment=-0.5),
        ],
        category_overrides={
            "voice_integrity": [CalibrationTier(min_score=0, max_score=10, adjustment=1.0)],
        },
    )


def scored(category_id, score):
    return RubricCategoryScore(category_id=category_id, score=score, raw_score=score,
                               evidence=("quote",), confidence=0.7)


def test_tier_adjustments(table):
    low, mid, high = calibrate([scored("a", 3.0), scored("b", 6.0), scored("c", 9.0)], table)
    assert low.score == 3.5
    assert mid.score == 6.0
    assert high.score == 8.5
    assert all(s.calibration_version == "t1" for s in (low, mid, high))
    assert low.raw_score == 3.0


def test_category_override(table):
    result = calibrate_score(scored("voice_integrity", 9.5), table)
    assert result.score == 10.0


def test_top_of_range_is_inclusive(table):
    assert calibrate_score(scored("c", 10.0), table).score == 9.5


def test_never_leaves_range():
    table = CalibrationTable(version="t2", tiers=[
        CalibrationTier(min_score=0, max_score=1, adjustment=-1.5),
        CalibrationTier(min_score=9, max_score=10, adjustment=2.0),
    ])
    low, high = calibrate([scored("a", 0.5), scored("b", 9.5)], table)
    assert low.score == 0.0
    assert high.score == 10.0


def test_idempotent(table):
    scores = [scored("a", 3.0), scored("voice_integrity", 7.0), scored("c", 9.0),
              RubricCategoryScore.placeholder("d")]
    once = calibrate(scores, table)
    twice = calibrate(once, table)
    assert once == twice


def test_new_table_recalibrates_from_raw(table):
    once = calibrate_score(scored("a", 3.0), table)
    other = CalibrationTable(version="t2", tiers=[CalibrationTier(min_score=0, max_score=10, adjustment=-1.0)])
    again = calibrate_score(once, other)
    assert again.score == 2.0
    assert again.calibration_version == "t2"


def test_null_scores_pass_through(table):
    placeholder = RubricCategoryScore.placeholder("a", status="unavailable")
    assert calibrate([placeholder], table) == [placeholder]


def test_empty_table_only_stamps_version():
    result = calibrate_score(scored("a", 6.5), CalibrationTable())
    assert result.score == 6.5
    assert result.calibration_version == "none"


def test_adjustment_must_be_half_points():
    with pytest.raises(ValidationError):
        CalibrationTier(min_score=0, max_score=5, adjustment=0.3)


def test_tier_bounds_ordered():
    with pytest.raises(ValidationError):
        CalibrationTier(min_score=6, max_score=5, adjustment=0.5)
