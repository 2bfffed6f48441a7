"""Table storage abstractions: typed rows, dictionary entities and table dictionaries."""

from azstore.core.storage.codec import PropertyType, TypedValue
from azstore.core.storage.dictionary import TableDictionary
from azstore.core.storage.dictionary_async import (
    AsyncTableDictionary,
    AsyncTableStorage,
    AsyncTableStorageBackend,
    ThreadedAsyncTableBackend,
)
from azstore.core.storage.entity import DeclaredProperty, DictionaryTableEntity
from azstore.core.storage.errors import (
    DuplicateKeyError,
    EntityAlreadyExistsError,
    EntityNotFoundError,
    EntryNotFoundError,
    InvalidArgumentError,
    SerializationError,
    TableServiceError,
    TableStorageConnectionError,
    TableStorageError,
    TypeConversionError,
)
from azstore.core.storage.keys import (
    DICTIONARY_VALUE_PROPERTY,
    PARTITION_KEY_PREFIX,
    ROW_KEY_PREFIX,
    DictionaryKeySpace,
)
from azstore.core.storage.registry import (
    DEVELOPMENT_STORAGE_CONNECTION_STRING,
    BackendConfigError,
    BackendNotFoundError,
    TableBackendRegistry,
    get_default_registry,
    get_table_backend,
)
from azstore.core.storage.table import (
    BATCH_SIZE,
    ComparisonOperator,
    TableQuery,
    TableRow,
    TableStorage,
    TableStorageBackend,
    UpdateMode,
    row_to_object,
    to_table_row,
)

__all__ = [
    # Table storage
    "TableStorage",
    "TableStorageBackend",
    "TableRow",
    "TableQuery",
    "ComparisonOperator",
    "UpdateMode",
    "BATCH_SIZE",
    "to_table_row",
    "row_to_object",
    # Codec
    "PropertyType",
    "TypedValue",
    # Entities and dictionaries
    "DeclaredProperty",
    "DictionaryTableEntity",
    "TableDictionary",
    "DictionaryKeySpace",
    "PARTITION_KEY_PREFIX",
    "ROW_KEY_PREFIX",
    "DICTIONARY_VALUE_PROPERTY",
    # Async
    "AsyncTableStorageBackend",
    "ThreadedAsyncTableBackend",
    "AsyncTableStorage",
    "AsyncTableDictionary",
    # Errors
    "TableStorageError",
    "InvalidArgumentError",
    "EntryNotFoundError",
    "DuplicateKeyError",
    "TypeConversionError",
    "SerializationError",
    "TableServiceError",
    "EntityNotFoundError",
    "EntityAlreadyExistsError",
    "TableStorageConnectionError",
    # Registry
    "TableBackendRegistry",
    "BackendConfigError",
    "BackendNotFoundError",
    "DEVELOPMENT_STORAGE_CONNECTION_STRING",
    "get_default_registry",
    "get_table_backend",
]
