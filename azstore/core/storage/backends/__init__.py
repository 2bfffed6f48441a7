"""Storage backend implementations."""

from azstore.core.storage.backends.azure_async_backend import AzureAsyncTableBackend
from azstore.core.storage.backends.azure_backend import AzureTableBackend
from azstore.core.storage.backends.memory_backend import InMemoryTableBackend
from azstore.core.storage.backends.mongodb_backend import MongoDBTableBackend

__all__ = [
    "InMemoryTableBackend",
    "AzureTableBackend",
    "AzureAsyncTableBackend",
    "MongoDBTableBackend",
]
