"""
Layered configuration loading for the record data generator.

A session's configuration is built from three layers, later ones winning:

1. Built-in defaults of `DataGenConfig`
2. A JSON file: an explicit path, else RECORD_DATAGEN_CONFIG_FILE, else
   `record_datagen.json` in the working directory or its `config/` folder
3. Individual RECORD_DATAGEN_* environment variables

The merged values are validated once, so an override that breaks a
cross-field check is reported together with the file it was applied to.
"""

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .models import DataGenConfig

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "record_datagen.json"
CONFIG_FILE_ENV = "RECORD_DATAGEN_CONFIG_FILE"

# Environment variable -> dotted config path
ENV_VARS = {
    "RECORD_DATAGEN_SEED": "seed",
    "RECORD_DATAGEN_MAX_REPAIR_ATTEMPTS": "generation.max_repair_attempts",
    "RECORD_DATAGEN_NULL_PROBABILITY": "generation.null_probability",
    "RECORD_DATAGEN_FAKER_LOCALE": "generation.faker_locale",
    "RECORD_DATAGEN_MAX_RECORDS": "prevalidation.max_records",
    "RECORD_DATAGEN_TIMEOUT_MS": "prevalidation.timeout_ms",
    "RECORD_DATAGEN_MAX_WORKERS": "prevalidation.max_workers",
    "RECORD_DATAGEN_EVAL_CACHE_SIZE": "cache.evaluation_cache_size",
    "RECORD_DATAGEN_LOG_LEVEL": "logging.level",
}


def find_config_file(
    config_path: str | Path | None = None, env: Mapping[str, str] | None = None
) -> Path | None:
    """
    Resolve which config file to read.

    An explicit path (argument or RECORD_DATAGEN_CONFIG_FILE) may name the
    file or the directory holding `record_datagen.json`, and must exist.
    Without one, the working directory is searched and None is returned
    when nothing is there.

    Raises:
        FileNotFoundError: If an explicitly named file does not exist
    """
    env = os.environ if env is None else env
    explicit = config_path or env.get(CONFIG_FILE_ENV)

    if explicit:
        path = Path(explicit)
        if path.is_dir():
            path = path / CONFIG_FILE_NAME
        if not path.is_file():
            raise FileNotFoundError(f"Configuration file not found: {path}")
        return path

    for candidate in (Path.cwd() / CONFIG_FILE_NAME, Path.cwd() / "config" / CONFIG_FILE_NAME):
        if candidate.is_file():
            return candidate
    return None


def read_config_file(path: str | Path) -> dict[str, Any]:
    """
    Read the raw JSON object of a config file.

    Raises:
        ValueError: If the file is not JSON or not a JSON object
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in configuration file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {path} must hold a JSON object")
    return data


def env_overrides(env: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Nested config values taken from the RECORD_DATAGEN_* variables that are set."""
    env = os.environ if env is None else env
    overrides: dict[str, Any] = {}
    for env_name, dotted in ENV_VARS.items():
        raw = env.get(env_name)
        if raw is None or raw == "":
            continue
        section, _, key = dotted.rpartition(".")
        target = overrides.setdefault(section, {}) if section else overrides
        target[key] = raw
    return overrides


def merge_config_data(base: Mapping[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    """Merge section by section; override values replace base values."""
    merged = dict(base)
    for key, value in overrides.items():
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            merged[key] = merge_config_data(current, value)
        else:
            merged[key] = value
    return merged


def load_config(
    config_path: str | Path | None = None, env: Mapping[str, str] | None = None
) -> DataGenConfig:
    """
    Build a session configuration from defaults, a config file and the environment.

    Args:
        config_path: Explicit config file, or directory holding record_datagen.json
        env: Environment to read; defaults to os.environ

    Returns:
        DataGenConfig: Validated configuration

    Raises:
        FileNotFoundError: If an explicitly named config file is missing
        ValueError: If the file is malformed or the merged values are invalid
    """
    path = find_config_file(config_path, env)
    overrides = env_overrides(env)

    data: dict[str, Any] = {}
    sources = []
    if path is not None:
        logger.info(f"Loading configuration from {path}")
        data = read_config_file(path)
        sources.append(str(path))
    if overrides:
        logger.debug(f"Applying environment overrides: {sorted(overrides)}")
        data = merge_config_data(data, overrides)
        sources.append("environment")

    try:
        return DataGenConfig.model_validate(data)
    except ValidationError as e:
        origin = " + ".join(sources) or "defaults"
        raise ValueError(f"Invalid configuration from {origin}: {e}") from e


def create_default_config(output_path: str | Path) -> DataGenConfig:
    """Write the built-in defaults to `output_path` and return them."""
    default_config = DataGenConfig()
    default_config.to_file(output_path)
    return default_config
