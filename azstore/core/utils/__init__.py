"""Utility functions for azstore."""

from azstore.core.utils.config import (
    ConfigError,
    expand_env_vars,
    load_and_resolve_config,
    load_config_from_module,
    resolve_config_inheritance,
)
from azstore.core.utils.env import load_env_file_if_present

__all__ = [
    "load_env_file_if_present",
    "load_config_from_module",
    "load_and_resolve_config",
    "resolve_config_inheritance",
    "expand_env_vars",
    "ConfigError",
]
