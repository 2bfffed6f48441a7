"""Tests for configuration loading, inheritance resolution and env expansion."""

from __future__ import annotations

import os
import sys
import types

import pytest

from azstore.core.utils.config import (
    ConfigError,
    expand_env_vars,
    load_and_resolve_config,
    load_config_from_module,
    resolve_config_inheritance,
)
from azstore.core.utils.env import load_env_file_if_present


@pytest.fixture
def config_module(monkeypatch):
    """Register an importable in-memory configuration module."""
    module = types.ModuleType("azstore_test_config")
    module.CONFIGURATION = {
        "azure": {
            "type": "azure",
            "connection_string": "${AZSTORE_TEST_CONN:-UseDevelopmentStorage=true}",
            "table": "Settings",
        },
        "logs": {"__inherits__": "azure", "table": "Logs"},
    }
    monkeypatch.setitem(sys.modules, "azstore_test_config", module)
    return module


class TestConfigInheritance:
    """Test suite for configuration inheritance resolution."""

    def test_resolve_inheritance_basic(self):
        """Test basic configuration inheritance."""
        config = {
            "azure": {
                "type": "azure",
                "connection_string": "UseDevelopmentStorage=true",
                "table": "Settings",
            },
            "logs": {
                "__inherits__": "azure",
                "table": "Logs",
            },
        }

        resolved = resolve_config_inheritance(config)

        assert resolved["azure"]["table"] == "Settings"
        assert resolved["logs"]["type"] == "azure"
        assert resolved["logs"]["connection_string"] == "UseDevelopmentStorage=true"
        assert resolved["logs"]["table"] == "Logs"
        assert "__inherits__" not in resolved["logs"]

    def test_resolve_inheritance_multi_level(self):
        """Test grandchild -> child -> parent."""
        config = {
            "base": {"type": "memory", "a": 1, "b": 1, "c": 1},
            "child": {"__inherits__": "base", "b": 2},
            "grandchild": {"__inherits__": "child", "c": 3},
        }

        resolved = resolve_config_inheritance(config)

        assert resolved["grandchild"] == {"type": "memory", "a": 1, "b": 2, "c": 3}
        assert resolved["child"] == {"type": "memory", "a": 1, "b": 2, "c": 1}

    def test_resolve_inheritance_circular_detection(self):
        config = {
            "a": {"__inherits__": "b"},
            "b": {"__inherits__": "a"},
        }
        with pytest.raises(ConfigError, match="Circular inheritance"):
            resolve_config_inheritance(config)

    def test_resolve_inheritance_self_reference(self):
        with pytest.raises(ConfigError, match="Circular inheritance"):
            resolve_config_inheritance({"a": {"__inherits__": "a"}})

    def test_resolve_inheritance_missing_parent(self):
        with pytest.raises(ConfigError, match="not found"):
            resolve_config_inheritance({"a": {"__inherits__": "missing"}})

    def test_resolve_inheritance_does_not_mutate_input(self):
        config = {"base": {"type": "memory"}, "child": {"__inherits__": "base", "table": "T"}}
        resolve_config_inheritance(config)
        assert config["child"] == {"__inherits__": "base", "table": "T"}
        assert config["base"] == {"type": "memory"}

    def test_resolve_inheritance_empty_config(self):
        assert resolve_config_inheritance({}) == {}


class TestExpandEnvVars:
    """Test suite for environment variable references."""

    def test_set_variable(self):
        assert expand_env_vars("${NAME}", {"NAME": "value"}) == "value"

    def test_default(self):
        assert expand_env_vars("${NAME:-fallback}", {}) == "fallback"
        assert expand_env_vars("${NAME:-fallback}", {"NAME": "set"}) == "set"

    def test_unset_without_default(self):
        assert expand_env_vars("x${NAME}y", {}) == "xy"

    def test_embedded_references(self):
        env = {"HOST": "db", "PORT": "5"}
        assert expand_env_vars("${HOST}:${PORT}", env) == "db:5"

    def test_nested_structures(self):
        env = {"NAME": "v"}
        value = {"a": "${NAME}", "b": ["${NAME}", 3], "c": True}
        assert expand_env_vars(value, env) == {"a": "v", "b": ["v", 3], "c": True}

    def test_plain_dollar_untouched(self):
        assert expand_env_vars("cost $5", {}) == "cost $5"


class TestLoadConfig:
    """Test suite for module-based configuration loading."""

    def test_load_from_module(self, config_module):
        assert load_config_from_module("azstore_test_config") is config_module.CONFIGURATION

    def test_missing_module_returns_default(self):
        assert load_config_from_module("azstore_no_such_module", default={"x": {}}) == {"x": {}}

    def test_missing_attribute_returns_default(self, config_module):
        assert load_config_from_module("azstore_test_config", "MISSING", default=None) is None

    def test_load_and_resolve(self, config_module, monkeypatch):
        monkeypatch.setenv("AZSTORE_TEST_CONN", "AccountName=acct")
        resolved = load_and_resolve_config("azstore_test_config")
        assert resolved["logs"]["connection_string"] == "AccountName=acct"
        assert resolved["logs"]["table"] == "Logs"

    def test_load_and_resolve_default_expansion(self, config_module, monkeypatch):
        monkeypatch.delenv("AZSTORE_TEST_CONN", raising=False)
        resolved = load_and_resolve_config("azstore_test_config")
        assert resolved["azure"]["connection_string"] == "UseDevelopmentStorage=true"

    def test_invalid_configuration_falls_back(self, config_module):
        config_module.CONFIGURATION = "not a dict"
        assert load_and_resolve_config("azstore_test_config", default={"d": {}}) == {"d": {}}

    def test_circular_configuration_raises(self, config_module):
        config_module.CONFIGURATION = {"a": {"__inherits__": "a"}}
        with pytest.raises(ConfigError):
            load_and_resolve_config("azstore_test_config")


class TestEnvFile:
    """Test suite for .env loading."""

    def test_missing_file(self, tmp_path):
        assert load_env_file_if_present(tmp_path / ".env") == {}

    def test_loads_values(self, tmp_path, monkeypatch):
        for name in ("AZSTORE_A", "AZSTORE_B"):
            # Recorded first so teardown removes what the file sets
            monkeypatch.setenv(name, "")
            monkeypatch.delenv(name)
        env_file = tmp_path / ".env"
        env_file.write_text('# comment\nAZSTORE_A="one"\nexport AZSTORE_B=two\nnot a pair\n')

        loaded = load_env_file_if_present(env_file)

        assert loaded == {"AZSTORE_A": "one", "AZSTORE_B": "two"}
        assert os.environ["AZSTORE_A"] == "one"
        assert os.environ["AZSTORE_B"] == "two"

    def test_existing_variables_win(self, tmp_path, monkeypatch):
        monkeypatch.setenv("AZSTORE_A", "shell")
        env_file = tmp_path / ".env"
        env_file.write_text("AZSTORE_A=file\n")

        load_env_file_if_present(env_file)
        assert os.environ["AZSTORE_A"] == "shell"

        load_env_file_if_present(env_file, override=True)
        assert os.environ["AZSTORE_A"] == "file"
