"""MongoDB backend implementation for table storage.

Each table is a collection. A row is stored as one document whose ``_id`` is
the ``PartitionKey``/``RowKey`` pair, with properties kept as ``{"t": type,
"v": value}`` sub-documents so the type tags survive the round trip.
Property datetimes are kept as microseconds since the epoch with a flag for
naive values.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from pymongo import ASCENDING, DeleteOne, InsertOne, MongoClient, ReplaceOne, UpdateOne
from pymongo.errors import (
    BulkWriteError,
    CollectionInvalid,
    ConnectionFailure,
    PyMongoError,
)
from pymongo.errors import (
    DuplicateKeyError as MongoDuplicateKeyError,
)

from ..codec import PropertyType, TypedValue
from ..errors import (
    EntityAlreadyExistsError,
    EntityNotFoundError,
    TableServiceError,
    TableStorageConnectionError,
)
from ..table import (
    BatchOperation,
    BatchOperationKind,
    ComparisonOperator,
    TableQuery,
    TableRow,
    TableStorageBackend,
    UpdateMode,
    validate_batch,
)

logger = logging.getLogger(__name__)

_OPERATORS = {
    ComparisonOperator.EQ: "$eq",
    ComparisonOperator.NE: "$ne",
    ComparisonOperator.GT: "$gt",
    ComparisonOperator.GE: "$gte",
    ComparisonOperator.LT: "$lt",
    ComparisonOperator.LE: "$lte",
}

_KEY_FIELDS = ("PartitionKey", "RowKey")

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_MICROSECOND = timedelta(microseconds=1)


def _document_id(partition_key: str, row_key: str) -> dict[str, str]:
    return {"PartitionKey": partition_key, "RowKey": row_key}


def _to_microseconds(value: datetime) -> int:
    """Microseconds since the Unix epoch, reading naive values as UTC.

    BSON datetimes keep only milliseconds, so property datetimes are stored
    as integers instead.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return (value - _EPOCH) // _MICROSECOND


def _from_microseconds(microseconds: int, naive: bool) -> datetime:
    value = _EPOCH + timedelta(microseconds=microseconds)
    return value.replace(tzinfo=None) if naive else value


def _encode_value(typed_value: TypedValue) -> dict[str, Any]:
    value = typed_value.value
    if typed_value.type is PropertyType.GUID:
        value = str(value)
    elif typed_value.type is PropertyType.DATETIME and value is not None:
        return {
            "t": typed_value.type.value,
            "v": _to_microseconds(value),
            "naive": value.tzinfo is None,
        }
    return {"t": typed_value.type.value, "v": value}


def _decode_value(stored: dict[str, Any]) -> TypedValue:
    property_type = PropertyType(stored["t"])
    value = stored.get("v")
    if property_type is PropertyType.GUID and value is not None:
        value = UUID(value)
    elif property_type is PropertyType.BINARY and value is not None:
        value = bytes(value)
    elif property_type is PropertyType.DATETIME and value is not None:
        value = _from_microseconds(value, stored.get("naive", False))
    return TypedValue(value, property_type)


def _field_path(name: str) -> str:
    if name in _KEY_FIELDS:
        return name
    if name == "Timestamp":
        return "Timestamp"
    return f"p.{name}.v"


def _filter_value(field_name: str, value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    # Timestamp is a BSON datetime; property datetimes are stored as integers
    if isinstance(value, datetime) and field_name != "Timestamp":
        return _to_microseconds(value)
    return value


def _to_filter(query: TableQuery) -> dict[str, Any]:
    clauses = [
        {_field_path(c.field): {_OPERATORS[c.operator]: _filter_value(c.field, c.value)}}
        for c in query.conditions
    ]
    if not clauses:
        return {}
    return clauses[0] if len(clauses) == 1 else {"$and": clauses}


def _to_projection(select: list[str] | None) -> dict[str, int] | None:
    if select is None:
        return None
    projection = {name: 1 for name in _KEY_FIELDS}
    projection["Timestamp"] = 1
    for name in select:
        if name not in _KEY_FIELDS and name != "Timestamp":
            projection[f"p.{name}"] = 1
    return projection


def _to_document(row: TableRow) -> dict[str, Any]:
    return {
        "_id": _document_id(row.partition_key, row.row_key),
        "PartitionKey": row.partition_key,
        "RowKey": row.row_key,
        "Timestamp": datetime.now(UTC),
        "p": {name: _encode_value(value) for name, value in row.properties.items()},
    }


def _from_document(document: dict[str, Any]) -> TableRow:
    return TableRow(
        partition_key=document["PartitionKey"],
        row_key=document["RowKey"],
        properties={name: _decode_value(value) for name, value in document.get("p", {}).items()},
        timestamp=document.get("Timestamp"),
    )


def _merge_update(row: TableRow) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "PartitionKey": row.partition_key,
        "RowKey": row.row_key,
        "Timestamp": datetime.now(UTC),
    }
    for name, value in row.properties.items():
        fields[f"p.{name}"] = _encode_value(value)
    return {"$set": fields}


class MongoDBTableBackend(TableStorageBackend):
    """MongoDB implementation of table storage backend."""

    def __init__(
        self,
        table_name: str,
        host: str = "localhost",
        port: int = 27017,
        database: str = "azstore",
        username: str | None = None,
        password: str | None = None,
        **kwargs,
    ):
        """Initialize MongoDB backend.

        Args:
            table_name: Name of the table (collection)
            host: MongoDB host
            port: MongoDB port
            database: Database name
            username: Optional username for authentication
            password: Optional password for authentication
            **kwargs: Additional arguments passed to MongoClient
        """
        self._table_name = table_name
        self._database_name = database

        try:
            if username and password:
                uri = f"mongodb://{username}:{password}@{host}:{port}/"
            else:
                uri = f"mongodb://{host}:{port}/"

            kwargs.setdefault("tz_aware", True)
            self._client = MongoClient(uri, **kwargs)
            self._db = self._client[database]

            self._client.admin.command("ping")
            logger.info(f"Connected to MongoDB database: {database}")

        except ConnectionFailure as e:
            raise TableStorageConnectionError(f"Failed to connect to MongoDB: {e}") from e

    @property
    def table_name(self) -> str:
        return self._table_name

    @property
    def _collection(self):
        return self._db[self._table_name]

    def create_table_if_not_exists(self) -> bool:
        try:
            self._db.create_collection(self._table_name)
            self._collection.create_index([("RowKey", ASCENDING)])
            logger.info(f"Created collection: {self._table_name}")
            return True
        except CollectionInvalid:
            return False
        except PyMongoError as e:
            raise TableServiceError(f"Failed to create collection: {e}") from e

    def table_exists(self) -> bool:
        try:
            return self._table_name in self._db.list_collection_names(
                filter={"name": self._table_name}
            )
        except PyMongoError as e:
            raise TableServiceError(f"Failed to check collection existence: {e}") from e

    def delete_table(self) -> bool:
        if not self.table_exists():
            return False
        try:
            self._db.drop_collection(self._table_name)
            logger.info(f"Dropped collection: {self._table_name}")
            return True
        except PyMongoError as e:
            raise TableServiceError(f"Failed to drop collection: {e}") from e

    def get_entity(
        self, partition_key: str, row_key: str, select: list[str] | None = None
    ) -> TableRow | None:
        try:
            document = self._collection.find_one(
                {"_id": _document_id(partition_key, row_key)}, _to_projection(select)
            )
        except PyMongoError as e:
            raise TableServiceError(f"Failed to find entity: {e}") from e
        return _from_document(document) if document else None

    def insert_entity(self, row: TableRow) -> None:
        try:
            self._collection.insert_one(_to_document(row))
            logger.debug(f"Inserted entity into {self._table_name}: {row.partition_key}/{row.row_key}")
        except MongoDuplicateKeyError as e:
            raise EntityAlreadyExistsError(f"Duplicate key error: {e}") from e
        except PyMongoError as e:
            raise TableServiceError(f"Failed to insert entity: {e}") from e

    def _write(self, row: TableRow, mode: UpdateMode, upsert: bool) -> int:
        key = {"_id": _document_id(row.partition_key, row.row_key)}
        if mode is UpdateMode.MERGE:
            result = self._collection.update_one(key, _merge_update(row), upsert=upsert)
        else:
            result = self._collection.replace_one(key, _to_document(row), upsert=upsert)
        return result.matched_count

    def upsert_entity(self, row: TableRow, mode: UpdateMode = UpdateMode.REPLACE) -> None:
        try:
            self._write(row, mode, upsert=True)
        except PyMongoError as e:
            raise TableServiceError(f"Failed to upsert entity: {e}") from e

    def update_entity(self, row: TableRow, mode: UpdateMode = UpdateMode.REPLACE) -> None:
        try:
            matched = self._write(row, mode, upsert=False)
        except PyMongoError as e:
            raise TableServiceError(f"Failed to update entity: {e}") from e
        if matched == 0:
            raise EntityNotFoundError(f"Entity not found: {row.partition_key}/{row.row_key}")

    def delete_entity(self, partition_key: str, row_key: str) -> bool:
        try:
            result = self._collection.delete_one({"_id": _document_id(partition_key, row_key)})
        except PyMongoError as e:
            raise TableServiceError(f"Failed to delete entity: {e}") from e
        logger.debug(f"Deleted entity from {self._table_name}: count={result.deleted_count}")
        return result.deleted_count > 0

    def query_entities(self, query: TableQuery) -> Iterator[TableRow]:
        try:
            cursor = self._collection.find(_to_filter(query), _to_projection(query.select))
            cursor = cursor.sort([("PartitionKey", ASCENDING), ("RowKey", ASCENDING)])
            if query.top:
                cursor = cursor.limit(query.top)
            for document in cursor:
                yield _from_document(document)
        except PyMongoError as e:
            raise TableServiceError(f"Failed to query entities: {e}") from e

    def _check_preconditions(self, operations: list[BatchOperation]) -> None:
        ids = [_document_id(op.row.partition_key, op.row.row_key) for op in operations]
        existing = {
            (doc["PartitionKey"], doc["RowKey"])
            for doc in self._collection.find({"_id": {"$in": ids}}, {"PartitionKey": 1, "RowKey": 1})
        }
        for op in operations:
            key = (op.row.partition_key, op.row.row_key)
            if op.kind is BatchOperationKind.CREATE and key in existing:
                raise EntityAlreadyExistsError(f"Entity already exists: {key[0]}/{key[1]}")
            if op.kind in (
                BatchOperationKind.UPDATE_MERGE,
                BatchOperationKind.UPDATE_REPLACE,
                BatchOperationKind.DELETE,
            ) and key not in existing:
                raise EntityNotFoundError(f"Entity not found: {key[0]}/{key[1]}")

    @staticmethod
    def _request(op: BatchOperation):
        row = op.row
        key = {"_id": _document_id(row.partition_key, row.row_key)}
        if op.kind is BatchOperationKind.CREATE:
            return InsertOne(_to_document(row))
        if op.kind is BatchOperationKind.DELETE:
            return DeleteOne(key)
        upsert = op.kind in (BatchOperationKind.UPSERT_MERGE, BatchOperationKind.UPSERT_REPLACE)
        if op.kind in (BatchOperationKind.UPSERT_MERGE, BatchOperationKind.UPDATE_MERGE):
            return UpdateOne(key, _merge_update(row), upsert=upsert)
        return ReplaceOne(key, _to_document(row), upsert=upsert)

    def submit_batch(self, operations: list[BatchOperation]) -> None:
        """Submit a batch as one ordered bulk write.

        Preconditions are checked before anything is written, so a batch
        that would fail on a missing or duplicate entity writes nothing.
        """
        if not operations:
            return
        validate_batch(operations)

        try:
            self._check_preconditions(operations)
            self._collection.bulk_write([self._request(op) for op in operations], ordered=True)
            logger.debug(f"Committed batch of {len(operations)} operations on {self._table_name}")
        except BulkWriteError as e:
            raise TableServiceError(f"Failed to submit batch: {e.details}") from e
        except PyMongoError as e:
            raise TableServiceError(f"Failed to submit batch: {e}") from e
