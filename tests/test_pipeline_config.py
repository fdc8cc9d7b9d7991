"""Tests for building the pipeline configuration from YAML configs."""

import copy

import pytest

from storylens.tools.narrative_analysis.config import DEFAULT_DEPTHS, PipelineConfig
from storylens.tools.narrative_analysis.errors import ConfigError

from conftest import make_configs


def test_repository_config(pipeline_config):
    assert pipeline_config.rubric_version == "v1.0.0"
    assert len(pipeline_config.categories) == 11
    assert sum(pipeline_config.weights.values()) == pytest.approx(1.0)
    assert pipeline_config.calibration.version == "none"
    assert pipeline_config.depth("comprehensive").max_workshop_items == 5
    assert not pipeline_config.depth("quick").generate_suggestions


def test_impression_bands(pipeline_config):
    assert pipeline_config.impression_for(95.0) == "arresting_deeply_human"
    assert pipeline_config.impression_for(80.0) == "compelling_clear_voice"
    assert pipeline_config.impression_for(69.9) == "readable_but_generic"
    assert pipeline_config.impression_for(0.0) == "template_like_rebuild"


def test_call_timeout_must_be_shorter_than_deadline():
    with pytest.raises(ConfigError, match="call timeout"):
        PipelineConfig.from_configs(make_configs(call_timeout=3.0, run_timeout=2.0))


def test_missing_rubric():
    configs = make_configs()
    del configs["rubric"]
    with pytest.raises(ConfigError, match="no 'rubric' section"):
        PipelineConfig.from_configs(configs)


def test_duplicate_category_ids():
    configs = make_configs()
    categories = configs["rubric"]["categories"]
    categories.append(copy.deepcopy(categories[0]))
    with pytest.raises(ConfigError, match="duplicate rubric category ids"):
        PipelineConfig.from_configs(configs)


def test_empty_rubric():
    configs = make_configs()
    configs["rubric"]["categories"] = []
    with pytest.raises(ConfigError, match="at least one category"):
        PipelineConfig.from_configs(configs)


def test_calibration_overrides_must_name_known_categories():
    configs = make_configs()
    configs["calibration"] = {
        "version": "bad",
        "tiers": [],
        "category_overrides": {"no_such_category": [{"min_score": 0, "max_score": 5, "adjustment": 0.5}]},
    }
    with pytest.raises(ConfigError, match="unknown categories"):
        PipelineConfig.from_configs(configs)


def test_calibration_adjustment_in_half_points():
    configs = make_configs()
    configs["calibration"] = {"version": "odd", "tiers": [{"min_score": 0, "max_score": 5, "adjustment": 0.3}]}
    with pytest.raises(ConfigError, match="multiple of 0.5"):
        PipelineConfig.from_configs(configs)


def test_partial_depths_merge_with_defaults():
    configs = make_configs()
    configs["pipeline"]["depths"] = {"quick": {"run_timeout_seconds": 5}}
    config = PipelineConfig.from_configs(configs)
    assert config.depth("quick").run_timeout_seconds == 5
    assert config.depth("standard") == DEFAULT_DEPTHS["standard"]
    assert config.depth("comprehensive") == DEFAULT_DEPTHS["comprehensive"]


def test_invalid_gateway_settings():
    configs = make_configs()
    configs["pipeline"]["gateway"]["max_attempts"] = 0
    with pytest.raises(ConfigError, match="Invalid pipeline configuration"):
        PipelineConfig.from_configs(configs)


def test_rubric_text_with_quotes_loads(pipeline_config):
    categories = {c.id: c for c in pipeline_config.categories}
    assert categories["community_collaboration"].warning_signs == (
        '"I" throughout with no mention of teammates',
    )
    assert all(c.anchor_0 and c.anchor_5 and c.anchor_10 for c in pipeline_config.categories)
