from __future__ import annotations

import os

import pytest

from azstore.core.storage import TableDictionary, TableStorage
from azstore.core.storage.backends import InMemoryTableBackend


@pytest.fixture
def clean_env(monkeypatch):
    """Clean environment fixture to isolate tests."""
    for key in list(os.environ):
        if key.startswith("AZSTORE_"):
            monkeypatch.delenv(key, raising=False)
    yield


@pytest.fixture
def memory_backend():
    """Fresh in-memory backend with its table created."""
    return InMemoryTableBackend("TestTable", create=True)


@pytest.fixture
def table_storage(memory_backend):
    """TableStorage over a fresh in-memory table."""
    return TableStorage(memory_backend)


@pytest.fixture
def dictionary(table_storage):
    """Empty dictionary named "cfg"."""
    return TableDictionary("cfg", table_storage)
