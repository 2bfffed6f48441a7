"""Asynchronous table storage and dictionary.

The async classes mirror the synchronous ones call for call and share the
same key scheme, validation and codec, so both paths read and write
identical rows. Cancelling the awaiting task aborts the pending call; no
local state needs rolling back.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable
from dataclasses import replace
from typing import Any

from azstore.core.storage.entity import copy_entries
from azstore.core.storage.errors import (
    DuplicateKeyError,
    EntityAlreadyExistsError,
    EntryNotFoundError,
)
from azstore.core.storage.keys import DictionaryKeySpace
from azstore.core.storage.table import (
    BatchOperation,
    BatchOperationKind,
    TableQuery,
    TableRow,
    TableStorageBackend,
    UpdateMode,
    iter_batches,
    prepare_row,
)
from azstore.core.storage.validation import validate_key_value, validate_not_none


class AsyncTableStorageBackend(ABC):
    """Coroutine counterpart of :class:`TableStorageBackend`."""

    @property
    @abstractmethod
    def table_name(self) -> str:
        pass

    @abstractmethod
    async def create_table_if_not_exists(self) -> bool:
        pass

    @abstractmethod
    async def table_exists(self) -> bool:
        pass

    @abstractmethod
    async def delete_table(self) -> bool:
        pass

    @abstractmethod
    async def get_entity(
        self, partition_key: str, row_key: str, select: list[str] | None = None
    ) -> TableRow | None:
        pass

    @abstractmethod
    async def insert_entity(self, row: TableRow) -> None:
        pass

    @abstractmethod
    async def upsert_entity(self, row: TableRow, mode: UpdateMode = UpdateMode.REPLACE) -> None:
        pass

    @abstractmethod
    async def update_entity(self, row: TableRow, mode: UpdateMode = UpdateMode.REPLACE) -> None:
        pass

    @abstractmethod
    async def delete_entity(self, partition_key: str, row_key: str) -> bool:
        pass

    @abstractmethod
    def query_entities(self, query: TableQuery) -> AsyncIterator[TableRow]:
        pass

    @abstractmethod
    async def submit_batch(self, operations: list[BatchOperation]) -> None:
        pass

    async def close(self) -> None:
        """Release network resources held by the backend."""
        return None


class ThreadedAsyncTableBackend(AsyncTableStorageBackend):
    """Runs a synchronous backend's calls in worker threads."""

    def __init__(self, backend: TableStorageBackend):
        validate_not_none(backend, "backend")
        self._backend = backend

    @property
    def table_name(self) -> str:
        return self._backend.table_name

    @property
    def sync_backend(self) -> TableStorageBackend:
        return self._backend

    async def create_table_if_not_exists(self) -> bool:
        return await asyncio.to_thread(self._backend.create_table_if_not_exists)

    async def table_exists(self) -> bool:
        return await asyncio.to_thread(self._backend.table_exists)

    async def delete_table(self) -> bool:
        return await asyncio.to_thread(self._backend.delete_table)

    async def get_entity(
        self, partition_key: str, row_key: str, select: list[str] | None = None
    ) -> TableRow | None:
        return await asyncio.to_thread(self._backend.get_entity, partition_key, row_key, select)

    async def insert_entity(self, row: TableRow) -> None:
        await asyncio.to_thread(self._backend.insert_entity, row)

    async def upsert_entity(self, row: TableRow, mode: UpdateMode = UpdateMode.REPLACE) -> None:
        await asyncio.to_thread(self._backend.upsert_entity, row, mode)

    async def update_entity(self, row: TableRow, mode: UpdateMode = UpdateMode.REPLACE) -> None:
        await asyncio.to_thread(self._backend.update_entity, row, mode)

    async def delete_entity(self, partition_key: str, row_key: str) -> bool:
        return await asyncio.to_thread(self._backend.delete_entity, partition_key, row_key)

    async def query_entities(self, query: TableQuery) -> AsyncIterator[TableRow]:
        rows = await asyncio.to_thread(lambda: list(self._backend.query_entities(query)))
        for row in rows:
            yield row

    async def submit_batch(self, operations: list[BatchOperation]) -> None:
        await asyncio.to_thread(self._backend.submit_batch, operations)


class AsyncTableStorage:
    """Coroutine counterpart of :class:`TableStorage` for dictionary use."""

    def __init__(self, backend: AsyncTableStorageBackend | TableStorageBackend):
        """Initialize async table storage.

        Args:
            backend: Async backend, or a synchronous backend to run in threads
        """
        validate_not_none(backend, "backend")
        if isinstance(backend, TableStorageBackend):
            backend = ThreadedAsyncTableBackend(backend)
        self._backend = backend

    @classmethod
    def from_connection_string(cls, table_name: str, connection_string: str) -> AsyncTableStorage:
        from azstore.core.storage.backends.azure_async_backend import AzureAsyncTableBackend

        return cls(AzureAsyncTableBackend.from_connection_string(connection_string, table_name))

    @property
    def backend(self) -> AsyncTableStorageBackend:
        return self._backend

    @property
    def table_name(self) -> str:
        return self._backend.table_name

    async def __aenter__(self) -> AsyncTableStorage:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._backend.close()

    async def create_if_not_exists(self) -> AsyncTableStorage:
        await self._backend.create_table_if_not_exists()
        return self

    async def table_exists(self) -> bool:
        return await self._backend.table_exists()

    async def delete_table_if_exists(self) -> bool:
        return await self._backend.delete_table()

    def get_table_dictionary(self, dictionary_name: str, ignore_case: bool = False) -> AsyncTableDictionary:
        return AsyncTableDictionary(dictionary_name, self, ignore_case=ignore_case)

    async def entity_exists(self, partition_key: str, row_key: str) -> bool:
        validate_key_value(partition_key, "partition_key")
        validate_key_value(row_key, "row_key")
        return await self._backend.get_entity(partition_key, row_key, select=[]) is not None

    async def partition_key_exists(self, partition_key: str) -> bool:
        validate_key_value(partition_key, "partition_key")
        query = replace(TableQuery.partition(partition_key, select=["PartitionKey"]), top=1)
        async for _ in self._backend.query_entities(query):
            return True
        return False

    async def retrieve(self, partition_key: str, row_key: str, entity_type: type | None = None) -> Any:
        validate_key_value(partition_key, "partition_key")
        validate_key_value(row_key, "row_key")
        row = await self._backend.get_entity(partition_key, row_key)
        if row is None or entity_type is None:
            return row
        return entity_type.from_row(row)

    async def query(self, query: TableQuery, entity_type: type | None = None) -> list:
        validate_not_none(query, "query")
        rows = [row async for row in self._backend.query_entities(query)]
        if entity_type is None:
            return rows
        return [entity_type.from_row(row) for row in rows]

    async def insert(self, entity: Any, partition_key: str | None = None, row_key: str | None = None) -> TableRow:
        row = prepare_row(entity, partition_key, row_key)
        await self._backend.insert_entity(row)
        return row

    async def insert_or_replace(
        self, entity: Any, partition_key: str | None = None, row_key: str | None = None
    ) -> TableRow:
        row = prepare_row(entity, partition_key, row_key)
        await self._backend.upsert_entity(row, UpdateMode.REPLACE)
        return row

    async def insert_or_merge(
        self, entity: Any, partition_key: str | None = None, row_key: str | None = None
    ) -> TableRow:
        row = prepare_row(entity, partition_key, row_key)
        await self._backend.upsert_entity(row, UpdateMode.MERGE)
        return row

    async def delete(self, entity: Any) -> bool:
        validate_not_none(entity, "entity")
        return await self.delete_key(entity.partition_key, entity.row_key)

    async def delete_key(self, partition_key: str, row_key: str) -> bool:
        validate_key_value(partition_key, "partition_key")
        validate_key_value(row_key, "row_key")
        return await self._backend.delete_entity(partition_key, row_key)

    async def delete_many(self, entities: Iterable[Any]) -> int:
        """Delete entities in batches of at most 100 rows per partition."""
        validate_not_none(entities, "entities")
        rows = [prepare_row(entity, None, None) for entity in entities]
        for chunk in iter_batches(rows):
            await self._backend.submit_batch(
                [BatchOperation(BatchOperationKind.DELETE, row) for row in chunk]
            )
        return len(rows)


class AsyncTableDictionary:
    """Coroutine counterpart of :class:`TableDictionary`.

    Examples:
        >>> storage = AsyncTableStorage(InMemoryTableBackend("Settings", create=True))
        >>> settings = storage.get_table_dictionary("cfg")
        >>> await settings.add("retries", 3)
        >>> await settings.get_value("retries")
        3
    """

    def __init__(self, dictionary_name: str, table_storage: AsyncTableStorage, ignore_case: bool = False):
        self._key_space = DictionaryKeySpace(dictionary_name, ignore_case)
        validate_not_none(table_storage, "table_storage")
        self._storage = table_storage

    @property
    def name(self) -> str:
        return self._key_space.dictionary_name

    @property
    def ignore_case(self) -> bool:
        return self._key_space.ignore_case

    @property
    def table_storage(self) -> AsyncTableStorage:
        return self._storage

    def __repr__(self) -> str:
        return f"AsyncTableDictionary(name={self.name!r}, table={self._storage.table_name!r})"

    def __aiter__(self) -> AsyncIterator[str]:
        return self._iter_keys()

    async def _iter_keys(self) -> AsyncIterator[str]:
        for key in await self.keys():
            yield key

    async def exists(self) -> bool:
        return await self._storage.partition_key_exists(self._key_space.partition_key)

    async def _retrieve(self, key: str) -> TableRow | None:
        return await self._storage.retrieve(self._key_space.partition_key, self._key_space.row_key(key))

    async def get_value(self, key: str, value_type: Any = None) -> Any:
        """Get the value stored under key.

        Raises:
            EntryNotFoundError: If the key is not in the dictionary
            TypeConversionError: If the value cannot be converted to value_type
        """
        row = await self._retrieve(key)
        if row is None:
            raise EntryNotFoundError(key)
        return DictionaryKeySpace.entry_value(row, value_type)

    async def add_or_update(self, key: str, value: Any) -> TableRow:
        return await self._storage.insert_or_replace(self._key_space.entry_row(key, value))

    async def add(self, key: str, value: Any) -> None:
        if await self._retrieve(key) is not None:
            raise DuplicateKeyError(f"An element with the same key already exists: {key}")
        try:
            await self._storage.insert(self._key_space.entry_row(key, value))
        except EntityAlreadyExistsError as e:
            raise DuplicateKeyError(f"An element with the same key already exists: {key}") from e

    async def remove(self, key: str) -> bool:
        return await self._storage.delete_key(self._key_space.partition_key, self._key_space.row_key(key))

    async def remove_entry(self, key: str, value: Any) -> bool:
        row = await self._retrieve(key)
        if row is None or not DictionaryKeySpace.holds_value(row, value):
            return False
        return await self._storage.delete(row)

    async def contains_key(self, key: str) -> bool:
        return await self._storage.entity_exists(self._key_space.partition_key, self._key_space.row_key(key))

    async def contains_entry(self, key: str, value: Any) -> bool:
        row = await self._retrieve(key)
        return row is not None and DictionaryKeySpace.holds_value(row, value)

    async def count(self) -> int:
        return len(await self._query(select=["RowKey"]))

    async def keys(self) -> list[str]:
        return [DictionaryKeySpace.user_key(row.row_key) for row in await self._query(select=["RowKey"])]

    async def values(self) -> list[Any]:
        return [DictionaryKeySpace.entry_value(row) for row in await self._query()]

    async def items(self) -> list[tuple[str, Any]]:
        return [
            (DictionaryKeySpace.user_key(row.row_key), DictionaryKeySpace.entry_value(row))
            for row in await self._query()
        ]

    async def clear(self) -> None:
        """Delete every entry; entries written after the enumeration survive."""
        await self._storage.delete_many(await self._query(select=["RowKey"]))

    async def copy_to(self, target: list, start_index: int = 0) -> None:
        copy_entries(await self.items(), target, start_index)

    async def _query(self, select: list[str] | None = None) -> list[TableRow]:
        return await self._storage.query(self._key_space.range_query(select=select))
