"""Configuration system for timevault.

This module provides TOML-based configuration loading, validation,
and schema definitions for backup jobs.
"""

from .loader import ConfigError, find_config_file, load_config
from .schema import (
    Config,
    Job,
    LockGranularity,
    Options,
    RunMode,
    RunPolicy,
)

__all__ = [
    "Config",
    "Job",
    "LockGranularity",
    "Options",
    "RunMode",
    "RunPolicy",
    "load_config",
    "find_config_file",
    "ConfigError",
]
