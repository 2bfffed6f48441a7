"""Configuration loading utilities using importlib.

Configuration lives in plain Python modules that expose a dict (by default
named ``CONFIGURATION``) mapping backend names to their parameters.

Supports configuration inheritance using the "__inherits__" key and
environment variable references (``${NAME}`` or ``${NAME:-default}``) inside
string values.
"""

from __future__ import annotations

import importlib
import logging
import os
import re
from typing import Any

logger = logging.getLogger(__name__)

_ENV_REFERENCE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


class ConfigError(Exception):
    """Raised when configuration loading or resolution fails."""

    pass


def load_config_from_module(
    module_path: str,
    config_name: str = "CONFIGURATION",
    default: Any | None = None,
) -> Any:
    """Load a configuration object from a Python module using importlib.

    Args:
        module_path: Dotted module path (e.g., "configs.table_backends")
        config_name: Name of the configuration object to retrieve (default: "CONFIGURATION")
        default: Default value to return if loading fails

    Returns:
        The configuration object from the module, or default if loading fails

    Examples:
        >>> config = load_config_from_module("configs.table_backends")
        >>> custom = load_config_from_module("myapp.custom_config", "SETTINGS")
    """
    try:
        module = importlib.import_module(module_path)

        if not hasattr(module, config_name):
            logger.warning(f"Module '{module_path}' does not have attribute '{config_name}'")
            return default

        config = getattr(module, config_name)
        logger.debug(f"Loaded configuration from {module_path}.{config_name}")
        return config

    except ImportError as e:
        logger.warning(f"Could not import module '{module_path}': {e}")
        return default


def expand_env_vars(value: Any, environ: dict[str, str] | None = None) -> Any:
    """Replace ``${NAME}`` and ``${NAME:-default}`` references in strings.

    Dicts and lists are expanded recursively; other values pass through.
    An unset variable without a default expands to an empty string.

    Examples:
        >>> expand_env_vars("${HOME_DIR:-/tmp}/data", {})
        '/tmp/data'
    """
    env = os.environ if environ is None else environ

    if isinstance(value, str):
        return _ENV_REFERENCE.sub(lambda m: env.get(m.group(1), m.group(2) or ""), value)
    if isinstance(value, dict):
        return {key: expand_env_vars(item, env) for key, item in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(item, env) for item in value]
    return value


def resolve_config_inheritance(config_dict: dict[str, dict[str, Any]]) -> dict[str, dict[str, Any]]:
    """Resolve inheritance in a configuration dictionary.

    Configurations can inherit from other configurations using the "__inherits__" key.

    Args:
        config_dict: Configuration dictionary with potential inheritance relationships

    Returns:
        Fully resolved configuration dictionary with all inheritance applied

    Raises:
        ConfigError: If circular inheritance detected or parent not found

    Examples:
        >>> config = {
        ...     "azure": {"type": "azure", "connection_string": "...", "table": "Settings"},
        ...     "logs": {"__inherits__": "azure", "table": "Logs"}
        ... }
        >>> resolved = resolve_config_inheritance(config)
        >>> resolved["logs"]["connection_string"]  # Inherited from azure
        '...'
    """
    resolved_configs = {}

    def _resolve_single(name: str, config: dict[str, Any], visited: set[str]) -> dict[str, Any]:
        if name in visited:
            chain = " -> ".join(visited) + f" -> {name}"
            raise ConfigError(f"Circular inheritance detected: {chain}")

        if name in resolved_configs:
            return resolved_configs[name]

        if "__inherits__" not in config:
            resolved = config.copy()
            resolved_configs[name] = resolved
            return resolved

        parent_name = config["__inherits__"]

        if parent_name not in config_dict:
            raise ConfigError(
                f"Configuration '{name}' inherits from '{parent_name}', "
                f"but '{parent_name}' not found"
            )

        new_visited = visited | {name}
        resolved_parent = _resolve_single(parent_name, config_dict[parent_name], new_visited)

        # Parent first, child overrides
        resolved = resolved_parent.copy()
        for key, value in config.items():
            if key != "__inherits__":
                resolved[key] = value

        logger.debug(f"Resolved inheritance for '{name}' from '{parent_name}'")
        resolved_configs[name] = resolved
        return resolved

    for name, config in config_dict.items():
        if name not in resolved_configs:
            _resolve_single(name, config, set())

    return resolved_configs


def load_and_resolve_config(
    module_path: str,
    config_name: str = "CONFIGURATION",
    default: Any | None = None,
) -> dict[str, dict[str, Any]]:
    """Load configuration from module, resolve inheritance and expand variables.

    Args:
        module_path: Dotted module path (e.g., "configs.table_backends")
        config_name: Name of the configuration object to retrieve
        default: Default value to return if loading fails

    Returns:
        Fully resolved configuration dictionary

    Examples:
        >>> config = load_and_resolve_config("configs.table_backends")
        >>> config["dev"]["type"]
        'azure'
    """
    raw_config = load_config_from_module(module_path, config_name, default)

    if raw_config is None or not isinstance(raw_config, dict):
        logger.warning(f"Invalid configuration loaded from {module_path}, using default")
        return default or {}

    try:
        resolved = expand_env_vars(resolve_config_inheritance(raw_config))
        logger.info(f"Loaded and resolved {len(resolved)} configurations from {module_path}")
        return resolved
    except ConfigError as e:
        logger.error(f"Failed to resolve configuration inheritance: {e}")
        raise
