"""Dictionary semantics on top of a shared table.

Each dictionary occupies its own partition and its own row-key range inside
a table that may hold any other data. See :mod:`azstore.core.storage.keys`
for the key scheme.
"""

from __future__ import annotations

from collections.abc import Iterator, MutableMapping
from typing import Any

from azstore.core.storage.entity import copy_entries
from azstore.core.storage.errors import (
    DuplicateKeyError,
    EntityAlreadyExistsError,
    EntryNotFoundError,
)
from azstore.core.storage.keys import DictionaryKeySpace
from azstore.core.storage.table import TableRow, TableStorage
from azstore.core.storage.validation import validate_not_none


class TableDictionary(MutableMapping[str, Any]):
    """A named key/value dictionary persisted as rows of a table.

    Every operation is a point operation or a ranged query against the
    backing table; nothing is cached between calls.

    Examples:
        >>> storage = TableStorage(InMemoryTableBackend("Settings"), create_if_not_exists=True)
        >>> settings = TableDictionary("cfg", storage)
        >>> settings.add("retries", 3)
        >>> settings["retries"]
        3
    """

    def __init__(self, dictionary_name: str, table_storage: TableStorage, ignore_case: bool = False):
        """Initialize a dictionary view.

        Args:
            dictionary_name: Dictionary name, unique within the table
            table_storage: Backing table
            ignore_case: Fold keys to lower case on every read and write
        """
        self._key_space = DictionaryKeySpace(dictionary_name, ignore_case)
        validate_not_none(table_storage, "table_storage")
        self._storage = table_storage

    @classmethod
    def from_connection_string(
        cls,
        dictionary_name: str,
        table_name: str,
        connection_string: str,
        ignore_case: bool = False,
    ) -> TableDictionary:
        return cls(
            dictionary_name,
            TableStorage.from_connection_string(table_name, connection_string),
            ignore_case=ignore_case,
        )

    @classmethod
    def from_account(
        cls,
        dictionary_name: str,
        table_name: str,
        account_name: str,
        account_key: str,
        use_https: bool = True,
        ignore_case: bool = False,
    ) -> TableDictionary:
        return cls(
            dictionary_name,
            TableStorage.from_account(table_name, account_name, account_key, use_https=use_https),
            ignore_case=ignore_case,
        )

    @classmethod
    def from_name(cls, dictionary_name: str, backend_name: str, ignore_case: bool = False) -> TableDictionary:
        """Create a dictionary on a registry backend such as ``"dev.Settings"``."""
        return cls(dictionary_name, TableStorage.from_name(backend_name), ignore_case=ignore_case)

    @property
    def name(self) -> str:
        return self._key_space.dictionary_name

    @property
    def ignore_case(self) -> bool:
        return self._key_space.ignore_case

    @property
    def table_storage(self) -> TableStorage:
        return self._storage

    def __repr__(self) -> str:
        return f"TableDictionary(name={self.name!r}, table={self._storage.table_name!r})"

    # Mapping protocol

    def __getitem__(self, key: str) -> Any:
        return self.get_value(key)

    def __setitem__(self, key: str, value: Any) -> None:
        self.add_or_update(key, value)

    def __delitem__(self, key: str) -> None:
        if not self.remove(key):
            raise EntryNotFoundError(key)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.contains_key(key)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __len__(self) -> int:
        return self.count()

    # Dictionary operations

    def exists(self) -> bool:
        """Check whether any row exists in the dictionary's partition."""
        return self._storage.partition_key_exists(self._key_space.partition_key)

    def _retrieve(self, key: str) -> TableRow | None:
        return self._storage.retrieve(self._key_space.partition_key, self._key_space.row_key(key))

    def get_value(self, key: str, value_type: Any = None) -> Any:
        """Get the value stored under key.

        Args:
            key: Dictionary key
            value_type: Requested type, None for the stored value

        Raises:
            EntryNotFoundError: If the key is not in the dictionary
            TypeConversionError: If the value cannot be converted to value_type
        """
        row = self._retrieve(key)
        if row is None:
            raise EntryNotFoundError(key)
        return DictionaryKeySpace.entry_value(row, value_type)

    def add_or_update(self, key: str, value: Any) -> TableRow:
        """Insert or replace the entry for key."""
        return self._storage.insert_or_replace(self._key_space.entry_row(key, value))

    def add(self, key: str, value: Any) -> None:
        """Add a new entry.

        Raises:
            DuplicateKeyError: If the key already exists, including when a
                concurrent writer inserts it between the check and the insert
        """
        if self._retrieve(key) is not None:
            raise DuplicateKeyError(f"An element with the same key already exists: {key}")
        try:
            self._storage.insert(self._key_space.entry_row(key, value))
        except EntityAlreadyExistsError as e:
            raise DuplicateKeyError(f"An element with the same key already exists: {key}") from e

    def remove(self, key: str) -> bool:
        """Remove an entry.

        Returns:
            True if the entry existed and was removed
        """
        return self._storage.delete_key(self._key_space.partition_key, self._key_space.row_key(key))

    def remove_entry(self, key: str, value: Any) -> bool:
        """Remove an entry only if it currently holds value."""
        row = self._retrieve(key)
        if row is None or not DictionaryKeySpace.holds_value(row, value):
            return False
        return self._storage.delete(row)

    def contains_key(self, key: str) -> bool:
        return self._storage.entity_exists(self._key_space.partition_key, self._key_space.row_key(key))

    def contains_entry(self, key: str, value: Any) -> bool:
        row = self._retrieve(key)
        return row is not None and DictionaryKeySpace.holds_value(row, value)

    def count(self) -> int:
        return sum(1 for _ in self._query(select=["RowKey"]))

    def keys(self) -> list[str]:
        return [DictionaryKeySpace.user_key(row.row_key) for row in self._query(select=["RowKey"])]

    def values(self) -> list[Any]:
        return [DictionaryKeySpace.entry_value(row) for row in self._query()]

    def items(self) -> list[tuple[str, Any]]:
        return [
            (DictionaryKeySpace.user_key(row.row_key), DictionaryKeySpace.entry_value(row))
            for row in self._query()
        ]

    def clear(self) -> None:
        """Delete every entry.

        Enumerates the range and then deletes in batches; entries written
        concurrently after the enumeration survive.
        """
        self._storage.delete_many(list(self._query(select=["RowKey"])))

    def copy_to(self, target: list, start_index: int = 0) -> None:
        """Copy (key, value) pairs into target starting at start_index.

        Raises:
            InvalidArgumentError: If target is too small; target is not modified
        """
        copy_entries(self.items(), target, start_index)

    def _query(self, select: list[str] | None = None) -> Iterator[TableRow]:
        return iter(self._storage.query(self._key_space.range_query(select=select)))
