"""Table storage backend configuration.

This module defines the CONFIGURATION dict which maps backend names to their
connection parameters. Users can customize this file or create their own
config module and load it using the config utilities.

Configuration location: configs/table_backends.py

Example usage:
    from azstore.core.storage import TableDictionary, TableStorage

    # Table taken from the backend's "table" setting
    storage = TableStorage.from_name("dev")

    # Table named explicitly
    settings = TableDictionary.from_name("cfg", "dev.Settings")

Environment overrides:
    # Point "azure" at a real account instead of the local emulator
    export AZSTORE_CONNECTION_STRING="DefaultEndpointsProtocol=https;AccountName=..."

    # Switch the "dev" namespace between the emulator and in-process memory
    export AZSTORE_DEV_BACKEND=memory

String values may reference environment variables as ${NAME} or
${NAME:-default}; they are expanded when the configuration is loaded.

Configuration inheritance:
    "azure": {
        "type": "azure",
        "connection_string": "${AZSTORE_CONNECTION_STRING}",
        "table": "Settings",
    },
    "logs": {
        "__inherits__": "azure",  # Inherits all settings from azure
        "table": "Logs",           # Override only the table
    }
"""

from __future__ import annotations

import os
from typing import Any

from azstore.core.storage.registry import DEVELOPMENT_STORAGE_CONNECTION_STRING
from azstore.core.utils.env import load_env_file_if_present

load_env_file_if_present()  # Load .env file if present


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _build_dev_config() -> dict[str, Any]:
    """Determine the configuration of the dev namespace."""
    backend_type = os.getenv("AZSTORE_DEV_BACKEND", "azure").strip().lower()
    if backend_type == "memory":
        return {"type": "memory", "table": "Settings"}

    return {
        "type": "azure",
        "connection_string": DEVELOPMENT_STORAGE_CONNECTION_STRING,
        "table": "Settings",
    }


CONFIGURATION = {
    # Local storage emulator (or memory with AZSTORE_DEV_BACKEND=memory)
    "dev": _build_dev_config(),
    # In-process tables, handy for tests and scripts
    "memory": {
        "type": "memory",
        "table": "Settings",
    },
    # Azure account from a connection string
    "azure": {
        "type": "azure",
        "connection_string": "${AZSTORE_CONNECTION_STRING}",
        "table": "Settings",
    },
    # Same account, log table
    "logs": {
        "__inherits__": "azure",
        "table": "Logs",
    },
    # Azure account from name and key
    "account": {
        "type": "azure",
        "account_name": "${AZSTORE_ACCOUNT_NAME}",
        "account_key": "${AZSTORE_ACCOUNT_KEY}",
        "use_https": _env_flag("AZSTORE_USE_HTTPS", True),
        "endpoint": "${AZSTORE_TABLE_ENDPOINT:-}",
        "table": "Settings",
    },
    # MongoDB stand-in for the table service
    "mongodb": {
        "type": "mongodb",
        "host": "${AZSTORE_MONGO_HOST:-localhost}",
        "port": int(os.getenv("AZSTORE_MONGO_PORT", "27017")),
        "database": "${AZSTORE_MONGO_DATABASE:-azstore}",
        "username": "${AZSTORE_MONGO_USERNAME:-}",
        "password": "${AZSTORE_MONGO_PASSWORD:-}",
        "table": "Settings",
    },
}
