"""Data models for score calibration tables."""

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class CalibrationTier(BaseModel):
    """Scores in ``[min_score, max_score)`` move by ``adjustment`` points."""
    model_config = ConfigDict(frozen=True)

    min_score: float = Field(ge=0, le=10, description="Inclusive lower bound of the tier")
    max_score: float = Field(ge=0, le=10, description="Exclusive upper bound (10 is inclusive)")
    adjustment: float = Field(description="Shift applied to scores in this tier, in half points")

    @field_validator("adjustment")
    @classmethod
    def _half_point_steps(cls, value: float) -> float:
        if abs(value * 2 - round(value * 2)) > 1e-9:
            raise ValueError(f"adjustment {value} is not a multiple of 0.5")
        return value

    @model_validator(mode="after")
    def _ordered(self) -> "CalibrationTier":
        if self.max_score < self.min_score:
            raise ValueError("max_score must not be below min_score")
        return self

    def contains(self, score: float) -> bool:
        if self.max_score >= 10 and score == 10:
            return self.min_score <= score
        return self.min_score <= score < self.max_score


class CalibrationTable(BaseModel):
    """Tuned adjustment table supplied as configuration."""
    model_config = ConfigDict(frozen=True)

    version: str = Field(default="none", description="Identifies the table; stamped on calibrated scores")
    tiers: List[CalibrationTier] = Field(default_factory=list)
    category_overrides: Dict[str, List[CalibrationTier]] = Field(
        default_factory=dict,
        description="Per-category tiers that replace the default tiers"
    )

    def tiers_for(self, category_id: str) -> List[CalibrationTier]:
        return self.category_overrides.get(category_id, self.tiers)

    def adjustment_for(self, category_id: str, score: float) -> Optional[float]:
        for tier in self.tiers_for(category_id):
            if tier.contains(score):
                return tier.adjustment
        return None
