"""Backend registry for named table storage backends."""

from __future__ import annotations

import logging
import threading
from typing import Any

from azstore.core.storage.backends.azure_backend import AzureTableBackend
from azstore.core.storage.backends.memory_backend import InMemoryTableBackend
from azstore.core.storage.backends.mongodb_backend import MongoDBTableBackend
from azstore.core.storage.table import TableStorageBackend
from azstore.core.storage.validation import validate_table_name
from azstore.core.utils.config import load_and_resolve_config

logger = logging.getLogger(__name__)

# Well-known account of the local storage emulator (Azurite)
DEVELOPMENT_STORAGE_CONNECTION_STRING = (
    "DefaultEndpointsProtocol=http;"
    "AccountName=devstoreaccount1;"
    "AccountKey=Eby8vdM02xNOcqFlqUwJPLlmEtlCDXJ1OUzFT50uSRZ6IFsuFq2UVErCz4I6tq/K1SZFPTOtr/KBHBeksoGMGw==;"
    "TableEndpoint=http://127.0.0.1:10002/devstoreaccount1;"
)


class BackendConfigError(Exception):
    """Raised when backend configuration is invalid."""

    pass


class BackendNotFoundError(Exception):
    """Raised when a named backend is not found in configuration."""

    pass


class TableBackendRegistry:
    """Registry for managing named table storage backends.

    A name is ``<backend>`` or ``<backend>.<Table>``. The part before the
    first dot selects a configuration; the rest names the table, falling back
    to the configuration's ``table`` key.

    Memory backends created by one registry share a single in-process store,
    so two names that resolve to the same table see the same rows.

    Examples:
        >>> registry = TableBackendRegistry()
        >>> backend = registry.get_backend("dev")
        >>> backend = registry.get_backend("dev.Settings")
    """

    def __init__(self, configuration: dict[str, dict[str, Any]] | None = None):
        """Initialize the registry.

        Args:
            configuration: Backend configuration dict. If None, loads and resolves
                          configuration from configs/table_backends.py with inheritance
        """
        if configuration is None:
            configuration = load_and_resolve_config(
                "configs.table_backends",
                config_name="CONFIGURATION",
                default={},
            )

        self._config = configuration
        self._backend_cache: dict[str, TableStorageBackend] = {}
        self._memory_store: dict = {}
        self._lock = threading.Lock()

    def parse_name(self, name: str) -> tuple[str, str]:
        """Parse a backend name into base name and table name.

        Examples:
            >>> registry.parse_name("dev")
            ("dev", "")
            >>> registry.parse_name("dev.Settings")
            ("dev", "Settings")
        """
        base_name, _, table_name = name.partition(".")
        return base_name, table_name

    def create_backend(self, config: dict[str, Any], table_name: str) -> TableStorageBackend:
        """Create a backend instance bound to a table.

        Args:
            config: Backend configuration dict with "type" and backend-specific params
            table_name: Table to bind the backend to

        Returns:
            Instantiated backend

        Raises:
            BackendConfigError: If configuration is invalid
        """
        backend_type = config.get("type")

        if not backend_type:
            raise BackendConfigError("Backend configuration must specify 'type'")

        if backend_type == "memory":
            return InMemoryTableBackend(table_name, store=self._memory_store)

        elif backend_type == "azure":
            if config.get("connection_string"):
                return AzureTableBackend.from_connection_string(config["connection_string"], table_name)

            missing = [f for f in ("account_name", "account_key") if not config.get(f)]
            if missing:
                raise BackendConfigError(
                    "Azure backend requires 'connection_string' or "
                    f"'account_name' and 'account_key' (missing: {', '.join(missing)})"
                )
            return AzureTableBackend.from_account(
                config["account_name"],
                config["account_key"],
                table_name,
                use_https=config.get("use_https", True),
                endpoint=config.get("endpoint") or None,
            )

        elif backend_type == "mongodb":
            return MongoDBTableBackend(
                table_name,
                host=config.get("host", "localhost"),
                port=int(config.get("port", 27017)),
                database=config.get("database", "azstore"),
                username=config.get("username") or None,
                password=config.get("password") or None,
            )

        else:
            raise BackendConfigError(f"Unknown backend type: {backend_type}")

    def get_backend(self, name: str, use_cache: bool = True) -> TableStorageBackend:
        """Get a backend instance by name.

        Args:
            name: Backend name with optional table (e.g., "dev", "dev.Settings")
            use_cache: Whether to use cached backend instances

        Returns:
            Backend instance bound to the resolved table

        Raises:
            BackendNotFoundError: If base name not found in configuration
            BackendConfigError: If backend configuration is invalid
        """
        with self._lock:
            if use_cache and name in self._backend_cache:
                return self._backend_cache[name]

            base_name, table_name = self.parse_name(name)

            if base_name not in self._config:
                available = ", ".join(self._config.keys())
                raise BackendNotFoundError(
                    f"Backend '{base_name}' not found in configuration. "
                    f"Available backends: {available or 'none'}"
                )

            config = self._config[base_name]
            table_name = table_name or config.get("table", "")
            if not table_name:
                raise BackendConfigError(
                    f"No table given for '{name}' and backend '{base_name}' has no 'table' setting"
                )
            validate_table_name(table_name)

            backend = self.create_backend(config, table_name)
            if use_cache:
                self._backend_cache[name] = backend

        logger.info(f"Created backend for '{name}' (base: {base_name}, table: {table_name})")
        return backend

    def list_backends(self) -> list[str]:
        """List all configured backend names."""
        return list(self._config.keys())

    def register(self, name: str, config: dict[str, Any]) -> None:
        """Register a new backend configuration.

        Args:
            name: Backend name
            config: Backend configuration dict
        """
        with self._lock:
            self._config[name] = config
            stale = [k for k in self._backend_cache if self.parse_name(k)[0] == name]
            for key in stale:
                del self._backend_cache[key]

    def clear_cache(self) -> None:
        """Clear the backend instance cache."""
        with self._lock:
            self._backend_cache.clear()


_default_registry: TableBackendRegistry | None = None
_default_registry_lock = threading.Lock()


def get_default_registry() -> TableBackendRegistry:
    """Get the default global registry instance.

    Created on first use; concurrent first calls still create exactly one.
    """
    global _default_registry
    if _default_registry is None:
        with _default_registry_lock:
            if _default_registry is None:
                _default_registry = TableBackendRegistry()
    return _default_registry


def get_table_backend(name: str) -> TableStorageBackend:
    """Get a table backend by name from the default registry.

    Examples:
        >>> from azstore.core.storage.registry import get_table_backend
        >>> backend = get_table_backend("dev.Settings")
    """
    return get_default_registry().get_backend(name)
