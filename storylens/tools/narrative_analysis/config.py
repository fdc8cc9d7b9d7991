"""Pipeline configuration, built once from the merged YAML configs."""

from __future__ import annotations

from typing import Dict, List, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from storylens.libs.config_loader import ConfigType, get_config
from .calibration import CalibrationTable
from .errors import ConfigError
from .models import Depth, RubricCategoryDefinition


class GatewaySettings(BaseModel):
    """Retry and concurrency policy for model calls."""
    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1, le=5)
    backoff_base_seconds: float = Field(default=0.5, ge=0.0)
    backoff_max_seconds: float = Field(default=4.0, ge=0.0)
    call_timeout_seconds: float = Field(default=12.0, gt=0.0)
    max_concurrent_calls: int = Field(default=4, ge=1)


class DepthProfile(BaseModel):
    """Deadline and coaching budget for one analysis depth."""
    model_config = ConfigDict(frozen=True)

    run_timeout_seconds: float = Field(default=30.0, gt=0.0)
    max_workshop_items: int = Field(default=3, ge=0)
    generate_suggestions: bool = True


class ImpressionBand(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    min_index: float = Field(ge=0, le=100)


class FlagThresholds(BaseModel):
    model_config = ConfigDict(frozen=True)

    voice_concern_below: float = Field(default=5.0, ge=0, le=10)
    low_score_below: float = Field(default=4.0, ge=0, le=10)


class WorkshopSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    score_threshold: float = Field(default=7.0, ge=0, le=10,
                                   description="Categories scoring below this become workshop candidates")
    high_severity_below: float = Field(default=4.0, ge=0, le=10)
    medium_severity_below: float = Field(default=6.0, ge=0, le=10)
    max_suggestions_per_item: int = Field(default=3, ge=1)


DEFAULT_DEPTHS: Dict[str, DepthProfile] = {
    "quick": DepthProfile(run_timeout_seconds=30.0, max_workshop_items=3, generate_suggestions=False),
    "standard": DepthProfile(run_timeout_seconds=30.0, max_workshop_items=3, generate_suggestions=True),
    "comprehensive": DepthProfile(run_timeout_seconds=60.0, max_workshop_items=5, generate_suggestions=True),
}

DEFAULT_IMPRESSION_BANDS: Tuple[ImpressionBand, ...] = (
    ImpressionBand(label="arresting_deeply_human", min_index=90),
    ImpressionBand(label="compelling_clear_voice", min_index=80),
    ImpressionBand(label="competent_needs_texture", min_index=70),
    ImpressionBand(label="readable_but_generic", min_index=60),
    ImpressionBand(label="template_like_rebuild", min_index=0),
)


class PipelineConfig(BaseModel):
    """Everything the pipeline needs, resolved once at process start."""
    model_config = ConfigDict(frozen=True)

    rubric_version: str = "v1.0.0"
    categories: Tuple[RubricCategoryDefinition, ...]
    calibration: CalibrationTable = CalibrationTable()
    gateway: GatewaySettings = GatewaySettings()
    depths: Dict[str, DepthProfile] = Field(default_factory=lambda: dict(DEFAULT_DEPTHS))
    batch_count: int = Field(default=3, ge=1)
    run_retry_budget: int = Field(default=6, ge=0)
    justification_max_chars: int = Field(default=600, ge=40)
    flags: FlagThresholds = FlagThresholds()
    impression_bands: Tuple[ImpressionBand, ...] = DEFAULT_IMPRESSION_BANDS
    workshop: WorkshopSettings = WorkshopSettings()

    @model_validator(mode="after")
    def _check_consistency(self) -> "PipelineConfig":
        if not self.categories:
            raise ValueError("rubric must define at least one category")
        ids = [c.id for c in self.categories]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"duplicate rubric category ids: {duplicates}")
        for name in ("quick", "standard", "comprehensive"):
            if name not in self.depths:
                raise ValueError(f"missing depth profile '{name}'")
        for name, profile in self.depths.items():
            if self.gateway.call_timeout_seconds >= profile.run_timeout_seconds:
                raise ValueError(
                    f"gateway call timeout ({self.gateway.call_timeout_seconds}s) must be shorter "
                    f"than the '{name}' run deadline ({profile.run_timeout_seconds}s)"
                )
        known = set(ids)
        unknown = sorted(set(self.calibration.category_overrides) - known)
        if unknown:
            raise ValueError(f"calibration overrides reference unknown categories: {unknown}")
        return self

    @property
    def weights(self) -> Dict[str, float]:
        return {c.id: c.weight for c in self.categories}

    @property
    def category_ids(self) -> List[str]:
        return [c.id for c in self.categories]

    def depth(self, depth: Depth) -> DepthProfile:
        return self.depths[depth]

    def impression_for(self, overall_index: float) -> str:
        for band in sorted(self.impression_bands, key=lambda b: b.min_index, reverse=True):
            if overall_index >= band.min_index:
                return band.label
        return self.impression_bands[-1].label

    @classmethod
    def from_configs(cls, configs: ConfigType) -> "PipelineConfig":
        """
        Build the pipeline configuration from merged YAML configs.

        Raises:
            ConfigError: if the configuration is missing or inconsistent
        """
        pipeline = get_config("pipeline", configs, default={}) or {}
        rubric = get_config("rubric", configs, default=None)
        if not rubric:
            raise ConfigError("Configuration has no 'rubric' section")

        data = dict(pipeline)
        data["rubric_version"] = rubric.get("version", "v1.0.0")
        data["categories"] = rubric.get("categories", [])
        if "calibration" in configs:
            data["calibration"] = configs["calibration"] or {}
        try:
            if "depths" in data:
                depths = dict(DEFAULT_DEPTHS)
                depths.update({
                    name: DepthProfile(**(profile or {}))
                    for name, profile in data["depths"].items()
                })
                data["depths"] = depths
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid pipeline configuration: {e}") from e
