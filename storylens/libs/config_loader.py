"""YAML configuration for storylens.

Settings live in ``config/*.yaml`` at the repository root. Files are merged in
alphabetical order, so an uncommitted ``config/local.yaml`` can add the API key
or override any default.
"""

import copy
import logging
import os
from typing import Any, Optional

import yaml

LOG = logging.getLogger(__name__)

ConfigType = dict[str, Any]

_MISSING = object()


def _merge(base: Any, override: Any) -> Any:
    """Deep-merge ``override`` into a copy of ``base``; non-dict values replace."""
    if not (isinstance(base, dict) and isinstance(override, dict)):
        return copy.deepcopy(override)
    merged = copy.deepcopy(base)
    for key, value in override.items():
        merged[key] = _merge(base[key], value) if key in base else copy.deepcopy(value)
    return merged


def load_configs(*paths: str) -> ConfigType:
    """Merge YAML files, later ones winning. Missing files are skipped.

    Raises:
        TypeError: a file holds something other than a mapping
        ValueError: none of the files could be loaded
    """
    merged: ConfigType = {}
    for path in paths:
        if not os.path.isfile(path):
            LOG.warning(f"Skipping missing config file {path!r}")
            continue
        LOG.info(f"loading config from {path}")
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        if not isinstance(data, dict):
            raise TypeError(f"YAML config file {path} must be a dict")
        merged = _merge(merged, data)
    if not merged:
        raise ValueError("No configs loaded")
    return merged


def default_config_dir() -> str:
    """The ``config/`` directory next to the ``storylens`` package."""
    libs_dir = os.path.dirname(os.path.abspath(__file__))
    return os.path.join(os.path.dirname(os.path.dirname(libs_dir)), "config")


def load_all_configs(config_dir: Optional[str] = None) -> ConfigType:
    """Merge every ``*.yaml``/``*.yml`` file in ``config_dir`` (default: repository ``config/``)."""
    config_dir = config_dir or default_config_dir()
    if not os.path.exists(config_dir):
        raise ValueError(f"Config directory not found: {config_dir}")

    yaml_files = [
        os.path.join(config_dir, name)
        for name in sorted(os.listdir(config_dir))
        if name.endswith((".yaml", ".yml"))
    ]
    if not yaml_files:
        raise ValueError(f"No YAML files found in {config_dir}")

    LOG.info(f"Loading configs from: {yaml_files}")
    return load_configs(*yaml_files)


def get_config(key: str, config: ConfigType, default: Any = _MISSING) -> Any:
    """Look up a dotted key such as ``"pipeline.gateway.max_attempts"``.

    Returns ``default`` when the key is absent and a default was given.

    Raises:
        KeyError: the key is absent and no default was given
    """
    value: Any = config
    for part in key.split("."):
        if not isinstance(value, dict) or part not in value:
            if default is not _MISSING:
                return default
            raise KeyError(f"Key {key} not found in configuration")
        value = value[part]
    return value
