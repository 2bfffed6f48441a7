"""Table storage abstraction for partitioned key/value rows.

Provides a high-level interface over a single table with support for
various backends (Azure Table Storage, MongoDB, in-memory).
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from azstore.core.storage.codec import TypedValue, decode, decode_as, encode
from azstore.core.storage.errors import InvalidArgumentError
from azstore.core.storage.validation import (
    validate_dictionary_value,
    validate_key_value,
    validate_not_blank,
    validate_not_none,
    validate_table_name,
)

if TYPE_CHECKING:
    from azstore.core.storage.dictionary import TableDictionary

# Maximum number of operations the service accepts in one transaction
BATCH_SIZE = 100

# Property holding a single value stored with to_table_row()
OBJECT_VALUE_PROPERTY = "Value_bcd3499d059f4971b10b512019738535"

SYSTEM_PROPERTIES = frozenset({"PartitionKey", "RowKey", "Timestamp"})


@dataclass
class TableRow:
    """One stored entity: identity plus a flat bag of typed properties."""

    partition_key: str
    row_key: str
    properties: dict[str, TypedValue] = field(default_factory=dict)
    timestamp: datetime | None = None
    etag: str | None = None

    def __getitem__(self, name: str) -> TypedValue:
        return self.properties[name]

    def __contains__(self, name: object) -> bool:
        return name in self.properties

    def get(self, name: str, default: TypedValue | None = None) -> TypedValue | None:
        return self.properties.get(name, default)

    def to_row(self) -> TableRow:
        return self

    def copy(self) -> TableRow:
        return replace(self, properties=dict(self.properties))


class ComparisonOperator(Enum):
    """Comparison operators supported in table filters."""

    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GE = "ge"
    LT = "lt"
    LE = "le"


_COMPARATORS = {
    ComparisonOperator.EQ: lambda a, b: a == b,
    ComparisonOperator.NE: lambda a, b: a != b,
    ComparisonOperator.GT: lambda a, b: a > b,
    ComparisonOperator.GE: lambda a, b: a >= b,
    ComparisonOperator.LT: lambda a, b: a < b,
    ComparisonOperator.LE: lambda a, b: a <= b,
}


def format_literal(value: Any) -> str:
    """Render a value as a filter literal."""
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value) if -(2**31) <= value < 2**31 else f"{value}L"
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(UTC).replace(tzinfo=None)
        return f"datetime'{value.isoformat()}Z'"
    if isinstance(value, UUID):
        return f"guid'{value}'"
    if isinstance(value, (bytes, bytearray)):
        return f"X'{bytes(value).hex()}'"
    raise TypeError(f"Unsupported filter value type: {type(value).__name__}")


@dataclass(frozen=True)
class Condition:
    """A single ``<field> <operator> <value>`` predicate."""

    field: str
    operator: ComparisonOperator
    value: Any

    def to_filter(self) -> str:
        return f"{self.field} {self.operator.value} {format_literal(self.value)}"

    def _field_value(self, row: TableRow) -> Any:
        if self.field == "PartitionKey":
            return row.partition_key
        if self.field == "RowKey":
            return row.row_key
        if self.field == "Timestamp":
            return row.timestamp
        prop = row.properties.get(self.field)
        return None if prop is None else prop.value

    def matches(self, row: TableRow) -> bool:
        actual = self._field_value(row)
        if actual is None:
            return False
        try:
            return bool(_COMPARATORS[self.operator](actual, self.value))
        except TypeError:
            return False


@dataclass
class TableQuery:
    """Conjunction of conditions with an optional column projection."""

    conditions: list[Condition] = field(default_factory=list)
    select: list[str] | None = None
    top: int | None = None

    @classmethod
    def partition(cls, partition_key: str, select: list[str] | None = None) -> TableQuery:
        """Query all rows of one partition."""
        return cls(select=select).where("PartitionKey", ComparisonOperator.EQ, partition_key)

    @classmethod
    def row(cls, row_key: str, select: list[str] | None = None) -> TableQuery:
        """Query all rows with the given row key across partitions."""
        return cls(select=select).where("RowKey", ComparisonOperator.EQ, row_key)

    def where(
        self, field_name: str, operator: ComparisonOperator | str, value: Any
    ) -> TableQuery:
        """Return a new query with one more condition."""
        op = operator if isinstance(operator, ComparisonOperator) else ComparisonOperator(operator)
        return replace(self, conditions=[*self.conditions, Condition(field_name, op, value)])

    def to_filter(self) -> str | None:
        """Render the filter string, nesting conditions to the right.

        Examples:
            >>> TableQuery.partition("p").where("RowKey", "ge", "a").where("RowKey", "lt", "b").to_filter()
            "(PartitionKey eq 'p') and ((RowKey ge 'a') and (RowKey lt 'b'))"
        """
        if not self.conditions:
            return None
        rendered = self.conditions[-1].to_filter()
        for condition in reversed(self.conditions[:-1]):
            rendered = f"({condition.to_filter()}) and ({rendered})"
        return rendered

    def matches(self, row: TableRow) -> bool:
        return all(condition.matches(row) for condition in self.conditions)

    def project(self, row: TableRow) -> TableRow:
        """Apply the column projection to a row."""
        if self.select is None:
            return row
        wanted = set(self.select)
        return replace(
            row, properties={k: v for k, v in row.properties.items() if k in wanted}
        )


class UpdateMode(Enum):
    """How an update combines with an existing entity."""

    MERGE = "merge"
    REPLACE = "replace"


class BatchOperationKind(Enum):
    """Operation kinds allowed inside a batch."""

    CREATE = "create"
    UPSERT_MERGE = "upsert_merge"
    UPSERT_REPLACE = "upsert_replace"
    UPDATE_MERGE = "update_merge"
    UPDATE_REPLACE = "update_replace"
    DELETE = "delete"


@dataclass(frozen=True)
class BatchOperation:
    """One operation of a batch."""

    kind: BatchOperationKind
    row: TableRow


class TableStorageBackend(ABC):
    """Abstract base class for table storage backends.

    A backend is bound to a single table and provides point operations on
    (partition key, row key) pairs plus filtered queries and batches.
    """

    @property
    @abstractmethod
    def table_name(self) -> str:
        """Name of the bound table."""
        pass

    @abstractmethod
    def create_table_if_not_exists(self) -> bool:
        """Create the table.

        Returns:
            True if the table was created, False if it already existed
        """
        pass

    @abstractmethod
    def table_exists(self) -> bool:
        """Check if the table exists."""
        pass

    @abstractmethod
    def delete_table(self) -> bool:
        """Delete the table.

        Returns:
            True if the table existed and was deleted
        """
        pass

    @abstractmethod
    def get_entity(
        self, partition_key: str, row_key: str, select: list[str] | None = None
    ) -> TableRow | None:
        """Retrieve a single entity.

        Args:
            partition_key: Partition key
            row_key: Row key
            select: Properties to return (all if None)

        Returns:
            The row, or None if it does not exist
        """
        pass

    @abstractmethod
    def insert_entity(self, row: TableRow) -> None:
        """Insert a new entity.

        Raises:
            EntityAlreadyExistsError: If an entity with the same keys exists
        """
        pass

    @abstractmethod
    def upsert_entity(self, row: TableRow, mode: UpdateMode = UpdateMode.REPLACE) -> None:
        """Insert an entity or update it if it exists."""
        pass

    @abstractmethod
    def update_entity(self, row: TableRow, mode: UpdateMode = UpdateMode.REPLACE) -> None:
        """Update an existing entity.

        Raises:
            EntityNotFoundError: If the entity does not exist
        """
        pass

    @abstractmethod
    def delete_entity(self, partition_key: str, row_key: str) -> bool:
        """Delete an entity.

        Returns:
            True if the entity existed and was deleted, False if it was absent
        """
        pass

    @abstractmethod
    def query_entities(self, query: TableQuery) -> Iterator[TableRow]:
        """Query entities matching a filter.

        Args:
            query: Conditions and projection

        Yields:
            Matching rows
        """
        pass

    @abstractmethod
    def submit_batch(self, operations: list[BatchOperation]) -> None:
        """Submit operations on a single partition as one transaction.

        Raises:
            InvalidArgumentError: If the batch spans partitions or is too large
        """
        pass


def to_table_row(source: Any, partition_key: str, row_key: str) -> TableRow:
    """Store any value as a single-property row.

    An existing TableRow is re-keyed instead of wrapped.
    """
    if isinstance(source, TableRow):
        source.partition_key = partition_key
        source.row_key = row_key
        return source
    return TableRow(partition_key, row_key, {OBJECT_VALUE_PROPERTY: encode(source)})


def row_to_object(row: TableRow | None, value_type: Any = None) -> Any:
    """Read back a value stored with to_table_row()."""
    if row is None or OBJECT_VALUE_PROPERTY not in row.properties:
        return None
    if value_type is None:
        return decode(row[OBJECT_VALUE_PROPERTY])
    return decode_as(row[OBJECT_VALUE_PROPERTY], value_type)


def prepare_row(entity: Any, partition_key: str | None = None, row_key: str | None = None) -> TableRow:
    """Apply optional key overrides to an entity and convert it to a row.

    Raises:
        InvalidArgumentError: If the entity is None or a resulting key is invalid
    """
    validate_not_none(entity, "entity")
    if partition_key is not None:
        validate_key_value(partition_key, "partition_key")
        entity.partition_key = partition_key
    if row_key is not None:
        validate_key_value(row_key, "row_key")
        entity.row_key = row_key
    row = entity.to_row()
    validate_key_value(row.partition_key, "partition_key")
    validate_key_value(row.row_key, "row_key")
    return row


def validate_batch(operations: list[BatchOperation]) -> None:
    """Reject batches the service would refuse: too large or spanning partitions."""
    if len(operations) > BATCH_SIZE:
        raise InvalidArgumentError(f"A batch may contain at most {BATCH_SIZE} operations")
    if len({op.row.partition_key for op in operations}) > 1:
        raise InvalidArgumentError("All operations in a batch must share one partition key")


def iter_batches(rows: Iterable[TableRow], batch_size: int = BATCH_SIZE) -> Iterator[list[TableRow]]:
    """Group rows by partition key and split each group into chunks.

    Chunks of one partition are yielded in order; partitions are yielded in
    order of first appearance.
    """
    by_partition: dict[str, list[TableRow]] = {}
    for row in rows:
        by_partition.setdefault(row.partition_key, []).append(row)

    for partition_rows in by_partition.values():
        for start in range(0, len(partition_rows), batch_size):
            yield partition_rows[start : start + batch_size]


class TableStorage:
    """High-level table storage interface with pluggable backends."""

    def __init__(self, backend: TableStorageBackend, create_if_not_exists: bool = False):
        """Initialize table storage.

        Args:
            backend: Storage backend implementation bound to a table
            create_if_not_exists: Create the table immediately if missing
        """
        validate_not_none(backend, "backend")
        self._backend = backend
        if create_if_not_exists:
            self._backend.create_table_if_not_exists()

    @classmethod
    def from_connection_string(
        cls, table_name: str, connection_string: str, create_if_not_exists: bool = True
    ) -> TableStorage:
        """Create storage for an Azure table from a connection string."""
        from azstore.core.storage.backends.azure_backend import AzureTableBackend

        validate_table_name(table_name)
        validate_not_blank(connection_string, "connection_string")
        backend = AzureTableBackend.from_connection_string(connection_string, table_name)
        return cls(backend, create_if_not_exists=create_if_not_exists)

    @classmethod
    def from_account(
        cls,
        table_name: str,
        account_name: str,
        account_key: str,
        use_https: bool = True,
        endpoint: str | None = None,
        create_if_not_exists: bool = True,
    ) -> TableStorage:
        """Create storage for an Azure table from account credentials."""
        from azstore.core.storage.backends.azure_backend import AzureTableBackend

        validate_table_name(table_name)
        validate_not_blank(account_name, "account_name")
        validate_not_blank(account_key, "account_key")
        backend = AzureTableBackend.from_account(
            account_name, account_key, table_name, use_https=use_https, endpoint=endpoint
        )
        return cls(backend, create_if_not_exists=create_if_not_exists)

    @classmethod
    def from_name(cls, name: str, create_if_not_exists: bool = True) -> TableStorage:
        """Create storage from a registry name such as ``"dev.Settings"``."""
        from azstore.core.storage.registry import get_table_backend

        return cls(get_table_backend(name), create_if_not_exists=create_if_not_exists)

    @property
    def backend(self) -> TableStorageBackend:
        return self._backend

    @property
    def table_name(self) -> str:
        return self._backend.table_name

    # Table lifecycle

    def create_if_not_exists(self) -> TableStorage:
        """Create the table if missing and return self."""
        self._backend.create_table_if_not_exists()
        return self

    def table_exists(self) -> bool:
        return self._backend.table_exists()

    def delete_table_if_exists(self) -> bool:
        return self._backend.delete_table()

    def delete_table_dictionary_if_exists(self, dictionary_name: str) -> bool:
        """Delete every entry of a table dictionary.

        Returns:
            True if at least one entry was deleted
        """
        from azstore.core.storage.keys import DictionaryKeySpace

        validate_dictionary_value(dictionary_name, "dictionary_name")
        query = DictionaryKeySpace(dictionary_name).range_query(select=["RowKey"])
        return self.delete_many(self._backend.query_entities(query)) > 0

    def get_table_dictionary(self, dictionary_name: str, ignore_case: bool = False) -> TableDictionary:
        """Get a dictionary view stored in this table."""
        from azstore.core.storage.dictionary import TableDictionary

        return TableDictionary(dictionary_name, self, ignore_case=ignore_case)

    # Existence checks

    def entity_exists(self, partition_key: str, row_key: str) -> bool:
        validate_key_value(partition_key, "partition_key")
        validate_key_value(row_key, "row_key")
        return self._backend.get_entity(partition_key, row_key, select=[]) is not None

    def partition_key_exists(self, partition_key: str) -> bool:
        validate_key_value(partition_key, "partition_key")
        query = replace(TableQuery.partition(partition_key, select=["PartitionKey"]), top=1)
        return next(iter(self._backend.query_entities(query)), None) is not None

    def row_key_exists(self, row_key: str) -> bool:
        validate_key_value(row_key, "row_key")
        query = replace(TableQuery.row(row_key, select=["RowKey"]), top=1)
        return next(iter(self._backend.query_entities(query)), None) is not None

    # Reads

    def retrieve(self, partition_key: str, row_key: str, entity_type: type | None = None) -> Any:
        """Retrieve one entity.

        Args:
            partition_key: Partition key
            row_key: Row key
            entity_type: Optional class with a ``from_row`` classmethod

        Returns:
            TableRow (or entity_type instance), or None if not found
        """
        validate_key_value(partition_key, "partition_key")
        validate_key_value(row_key, "row_key")
        row = self._backend.get_entity(partition_key, row_key)
        if row is None or entity_type is None:
            return row
        return entity_type.from_row(row)

    def retrieve_by_partition_key(self, partition_key: str, entity_type: type | None = None) -> list:
        validate_key_value(partition_key, "partition_key")
        return self._materialize(TableQuery.partition(partition_key), entity_type)

    def retrieve_by_row_key(self, row_key: str, entity_type: type | None = None) -> list:
        validate_key_value(row_key, "row_key")
        return self._materialize(TableQuery.row(row_key), entity_type)

    def list_entities(self, entity_type: type | None = None) -> list:
        return self._materialize(TableQuery(), entity_type)

    def query(self, query: TableQuery, entity_type: type | None = None) -> list:
        validate_not_none(query, "query")
        return self._materialize(query, entity_type)

    def count_by_partition_key(self, partition_key: str) -> int:
        validate_key_value(partition_key, "partition_key")
        return self._count(TableQuery.partition(partition_key, select=["PartitionKey"]))

    def count_by_row_key(self, row_key: str) -> int:
        validate_key_value(row_key, "row_key")
        return self._count(TableQuery.row(row_key, select=["RowKey"]))

    def entities_count(self) -> int:
        return self._count(TableQuery(select=["RowKey"]))

    def list_partition_keys(self) -> list[str]:
        rows = self._backend.query_entities(TableQuery(select=["PartitionKey"]))
        return _distinct(row.partition_key for row in rows)

    def list_row_keys(self) -> list[str]:
        rows = self._backend.query_entities(TableQuery(select=["RowKey"]))
        return _distinct(row.row_key for row in rows)

    def list_row_keys_by_partition_key(self, partition_key: str) -> list[str]:
        validate_key_value(partition_key, "partition_key")
        rows = self._backend.query_entities(TableQuery.partition(partition_key, select=["RowKey"]))
        return _distinct(row.row_key for row in rows)

    def list_partition_keys_by_row_key(self, row_key: str) -> list[str]:
        validate_key_value(row_key, "row_key")
        rows = self._backend.query_entities(TableQuery.row(row_key, select=["PartitionKey"]))
        return _distinct(row.partition_key for row in rows)

    # Single-entity writes

    def insert(self, entity: Any, partition_key: str | None = None, row_key: str | None = None) -> TableRow:
        """Insert an entity; fails if it already exists."""
        row = prepare_row(entity, partition_key, row_key)
        self._backend.insert_entity(row)
        return row

    def insert_or_merge(
        self, entity: Any, partition_key: str | None = None, row_key: str | None = None
    ) -> TableRow:
        row = prepare_row(entity, partition_key, row_key)
        self._backend.upsert_entity(row, UpdateMode.MERGE)
        return row

    def insert_or_replace(
        self, entity: Any, partition_key: str | None = None, row_key: str | None = None
    ) -> TableRow:
        row = prepare_row(entity, partition_key, row_key)
        self._backend.upsert_entity(row, UpdateMode.REPLACE)
        return row

    def merge(self, entity: Any, partition_key: str | None = None, row_key: str | None = None) -> TableRow:
        row = prepare_row(entity, partition_key, row_key)
        self._backend.update_entity(row, UpdateMode.MERGE)
        return row

    def replace(self, entity: Any, partition_key: str | None = None, row_key: str | None = None) -> TableRow:
        row = prepare_row(entity, partition_key, row_key)
        self._backend.update_entity(row, UpdateMode.REPLACE)
        return row

    def delete(self, entity: Any) -> bool:
        """Delete an entity by its identity."""
        validate_not_none(entity, "entity")
        return self.delete_key(entity.partition_key, entity.row_key)

    def delete_key(self, partition_key: str, row_key: str) -> bool:
        """Delete by keys.

        Returns:
            True if an entity was deleted, False if none existed
        """
        validate_key_value(partition_key, "partition_key")
        validate_key_value(row_key, "row_key")
        return self._backend.delete_entity(partition_key, row_key)

    # Batched writes

    def insert_many(self, entities: Iterable[Any], partition_key: str | None = None) -> int:
        return self._submit(BatchOperationKind.CREATE, entities, partition_key)

    def insert_or_merge_many(self, entities: Iterable[Any], partition_key: str | None = None) -> int:
        return self._submit(BatchOperationKind.UPSERT_MERGE, entities, partition_key)

    def insert_or_replace_many(self, entities: Iterable[Any], partition_key: str | None = None) -> int:
        return self._submit(BatchOperationKind.UPSERT_REPLACE, entities, partition_key)

    def merge_many(self, entities: Iterable[Any], partition_key: str | None = None) -> int:
        return self._submit(BatchOperationKind.UPDATE_MERGE, entities, partition_key)

    def replace_many(self, entities: Iterable[Any], partition_key: str | None = None) -> int:
        return self._submit(BatchOperationKind.UPDATE_REPLACE, entities, partition_key)

    def delete_many(self, entities: Iterable[Any]) -> int:
        """Delete entities in batches.

        Returns:
            Number of entities submitted for deletion
        """
        return self._submit(BatchOperationKind.DELETE, entities, None)

    def delete_by_partition_key(self, partition_key: str) -> int:
        validate_key_value(partition_key, "partition_key")
        rows = self._backend.query_entities(TableQuery.partition(partition_key, select=["RowKey"]))
        return self.delete_many(rows)

    def delete_by_row_key(self, row_key: str) -> int:
        validate_key_value(row_key, "row_key")
        rows = self._backend.query_entities(TableQuery.row(row_key, select=["PartitionKey"]))
        return self.delete_many(rows)

    # Helpers

    def _submit(
        self, kind: BatchOperationKind, entities: Iterable[Any], partition_key: str | None
    ) -> int:
        validate_not_none(entities, "entities")
        rows = [prepare_row(entity, partition_key, None) for entity in entities]
        for chunk in iter_batches(rows):
            self._backend.submit_batch([BatchOperation(kind, row) for row in chunk])
        return len(rows)

    def _materialize(self, query: TableQuery, entity_type: type | None) -> list:
        rows = self._backend.query_entities(query)
        if entity_type is None:
            return list(rows)
        return [entity_type.from_row(row) for row in rows]

    def _count(self, query: TableQuery) -> int:
        return sum(1 for _ in self._backend.query_entities(query))


def _distinct(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(values))


def clone_row(row: TableRow) -> TableRow:
    """Deep copy of a row, for backends that must not share state with callers."""
    return copy.deepcopy(row)
