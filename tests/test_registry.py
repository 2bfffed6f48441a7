"""Tests for the table backend registry."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from azstore.core.storage import (
    BackendConfigError,
    BackendNotFoundError,
    TableBackendRegistry,
    TableDictionary,
    TableStorage,
)
from azstore.core.storage.backends import InMemoryTableBackend
from azstore.core.storage.errors import InvalidArgumentError


@pytest.fixture
def registry():
    """Registry with memory and azure entries."""
    return TableBackendRegistry(
        {
            "mem": {"type": "memory", "table": "Settings"},
            "bare": {"type": "memory"},
            "azure": {"type": "azure", "connection_string": "UseDevelopmentStorage=true", "table": "Settings"},
            "account": {
                "type": "azure",
                "account_name": "acct",
                "account_key": "a2V5",
                "use_https": False,
                "endpoint": "",
                "table": "Settings",
            },
            "mongo": {"type": "mongodb", "host": "db", "port": "27018", "table": "Settings"},
        }
    )


class TestParseName:
    """Test suite for backend name parsing."""

    def test_plain_name(self, registry):
        assert registry.parse_name("mem") == ("mem", "")

    def test_name_with_table(self, registry):
        assert registry.parse_name("mem.Logs") == ("mem", "Logs")


class TestMemoryBackends:
    """Test suite for memory backends from the registry."""

    def test_table_from_config(self, registry):
        backend = registry.get_backend("mem")
        assert isinstance(backend, InMemoryTableBackend)
        assert backend.table_name == "Settings"

    def test_table_from_name(self, registry):
        assert registry.get_backend("mem.Logs").table_name == "Logs"

    def test_missing_table(self, registry):
        with pytest.raises(BackendConfigError):
            registry.get_backend("bare")

    def test_invalid_table_name(self, registry):
        with pytest.raises(InvalidArgumentError):
            registry.get_backend("mem.bad-name")

    def test_cache(self, registry):
        assert registry.get_backend("mem") is registry.get_backend("mem")
        assert registry.get_backend("mem", use_cache=False) is not registry.get_backend("mem")

    def test_backends_share_store(self, registry):
        """Two names resolving to one table see the same rows."""
        writer = TableDictionary("cfg", TableStorage(registry.get_backend("mem"), create_if_not_exists=True))
        reader = TableDictionary("cfg", TableStorage(registry.get_backend("bare.Settings")))
        writer["k"] = 1
        assert reader["k"] == 1

    def test_registries_are_isolated(self, registry):
        TableStorage(registry.get_backend("mem"), create_if_not_exists=True)
        other = TableBackendRegistry({"mem": {"type": "memory", "table": "Settings"}})
        assert not other.get_backend("mem").table_exists()


class TestAzureBackends:
    """Test suite for azure backends from the registry."""

    @patch("azstore.core.storage.registry.AzureTableBackend")
    def test_connection_string(self, mock_backend, registry):
        registry.get_backend("azure.Logs")
        mock_backend.from_connection_string.assert_called_once_with("UseDevelopmentStorage=true", "Logs")

    @patch("azstore.core.storage.registry.AzureTableBackend")
    def test_account(self, mock_backend, registry):
        registry.get_backend("account")
        mock_backend.from_account.assert_called_once_with(
            "acct", "a2V5", "Settings", use_https=False, endpoint=None
        )

    def test_missing_credentials(self):
        registry = TableBackendRegistry({"azure": {"type": "azure", "account_name": "acct", "table": "Settings"}})
        with pytest.raises(BackendConfigError, match="account_key"):
            registry.get_backend("azure")


class TestMongoBackends:
    """Test suite for mongodb backends from the registry."""

    @patch("azstore.core.storage.registry.MongoDBTableBackend")
    def test_parameters(self, mock_backend, registry):
        registry.get_backend("mongo")
        mock_backend.assert_called_once_with(
            "Settings",
            host="db",
            port=27018,
            database="azstore",
            username=None,
            password=None,
        )


class TestRegistryManagement:
    """Test suite for registry configuration management."""

    def test_unknown_backend(self, registry):
        with pytest.raises(BackendNotFoundError, match="Available backends"):
            registry.get_backend("nope")

    def test_missing_type(self):
        with pytest.raises(BackendConfigError):
            TableBackendRegistry({"x": {"table": "Settings"}}).get_backend("x")

    def test_unknown_type(self):
        with pytest.raises(BackendConfigError, match="Unknown backend type"):
            TableBackendRegistry({"x": {"type": "s3", "table": "Settings"}}).get_backend("x")

    def test_list_backends(self, registry):
        assert registry.list_backends() == ["mem", "bare", "azure", "account", "mongo"]

    def test_register_invalidates_cache(self, registry):
        first = registry.get_backend("mem.Logs")
        registry.register("mem", {"type": "memory", "table": "Other"})
        second = registry.get_backend("mem")
        assert registry.get_backend("mem.Logs") is not first
        assert second.table_name == "Other"

    def test_clear_cache(self, registry):
        first = registry.get_backend("mem")
        registry.clear_cache()
        assert registry.get_backend("mem") is not first

    def test_loads_default_configuration(self, clean_env):
        registry = TableBackendRegistry()
        assert {"dev", "memory", "azure", "logs", "account", "mongodb"} <= set(registry.list_backends())
        assert registry.get_backend("memory").table_name == "Settings"


class TestStorageFromName:
    """Test suite for creating storage from registry names."""

    @patch("azstore.core.storage.registry.get_default_registry")
    def test_table_storage_from_name(self, mock_get_registry, registry):
        mock_get_registry.return_value = registry
        storage = TableStorage.from_name("mem.Names")
        assert storage.table_name == "Names"
        assert storage.table_exists()

    @patch("azstore.core.storage.registry.get_default_registry")
    def test_dictionary_from_name(self, mock_get_registry, registry):
        mock_get_registry.return_value = registry
        settings = TableDictionary.from_name("cfg", "mem")
        settings["a"] = 1
        assert settings["a"] == 1
