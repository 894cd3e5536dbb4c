"""Configuration models and loaders for the record data generator."""

from .models import (
    CacheSettings,
    DataGenConfig,
    GenerationSettings,
    LoggingSettings,
    PreValidationSettings,
)
from .settings import create_default_config, env_overrides, find_config_file, load_config

__all__ = [
    "CacheSettings",
    "DataGenConfig",
    "GenerationSettings",
    "LoggingSettings",
    "PreValidationSettings",
    "create_default_config",
    "env_overrides",
    "find_config_file",
    "load_config",
]
