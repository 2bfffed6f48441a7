"""Azure Table Storage backend implementation for table storage."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from itertools import islice
from typing import Any

from azure.core.credentials import AzureNamedKeyCredential
from azure.core.exceptions import (
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
    ServiceRequestError,
)
from azure.data.tables import EdmType, EntityProperty, TableServiceClient
from azure.data.tables import UpdateMode as AzureUpdateMode

from ..codec import NULL_VALUE, PropertyType, TypedValue, encode
from ..errors import (
    EntityAlreadyExistsError,
    EntityNotFoundError,
    InvalidArgumentError,
    TableServiceError,
    TableStorageConnectionError,
)
from ..table import (
    SYSTEM_PROPERTIES,
    BatchOperation,
    BatchOperationKind,
    TableQuery,
    TableRow,
    TableStorageBackend,
    UpdateMode,
    validate_batch,
)

logger = logging.getLogger(__name__)

_EDM_TYPES = {
    EdmType.STRING: PropertyType.STRING,
    EdmType.BINARY: PropertyType.BINARY,
    EdmType.BOOLEAN: PropertyType.BOOLEAN,
    EdmType.DATETIME: PropertyType.DATETIME,
    EdmType.DOUBLE: PropertyType.DOUBLE,
    EdmType.GUID: PropertyType.GUID,
    EdmType.INT32: PropertyType.INT32,
    EdmType.INT64: PropertyType.INT64,
}

_BATCH_ACTIONS = {
    BatchOperationKind.CREATE: ("create", None),
    BatchOperationKind.UPSERT_MERGE: ("upsert", AzureUpdateMode.MERGE),
    BatchOperationKind.UPSERT_REPLACE: ("upsert", AzureUpdateMode.REPLACE),
    BatchOperationKind.UPDATE_MERGE: ("update", AzureUpdateMode.MERGE),
    BatchOperationKind.UPDATE_REPLACE: ("update", AzureUpdateMode.REPLACE),
    BatchOperationKind.DELETE: ("delete", None),
}

_KEY_PROPERTIES = ["PartitionKey", "RowKey"]


def account_endpoint(account_name: str, use_https: bool = True) -> str:
    """Default public endpoint of a storage account's table service."""
    scheme = "https" if use_https else "http"
    return f"{scheme}://{account_name}.table.core.windows.net"


def wire_select(select: list[str] | None) -> list[str] | None:
    """Column list sent to the service; keys are always requested so rows stay addressable."""
    if select is None:
        return None
    return list(dict.fromkeys([*select, *_KEY_PROPERTIES]))


def azure_update_mode(mode: UpdateMode) -> AzureUpdateMode:
    return AzureUpdateMode.MERGE if mode is UpdateMode.MERGE else AzureUpdateMode.REPLACE


def to_wire_value(typed_value: TypedValue) -> Any:
    """Convert a typed value to what the Azure SDK serializes."""
    if typed_value.type is PropertyType.INT64:
        return EntityProperty(typed_value.value, EdmType.INT64)
    return typed_value.value


def from_wire_value(value: Any) -> TypedValue:
    """Convert a value returned by the Azure SDK to a typed value."""
    if isinstance(value, EntityProperty):
        property_type = _EDM_TYPES.get(value.edm_type)
        if property_type is None:
            return encode(value.value)
        return TypedValue(value.value, property_type)
    if value is None:
        return NULL_VALUE
    return encode(value)


def to_entity(row: TableRow) -> dict[str, Any]:
    """Build the entity dict the Azure SDK expects; null properties are omitted."""
    entity: dict[str, Any] = {"PartitionKey": row.partition_key, "RowKey": row.row_key}
    for name, typed_value in row.properties.items():
        if typed_value.is_null:
            continue
        entity[name] = to_wire_value(typed_value)
    return entity


def from_entity(entity: Any, partition_key: str = "", row_key: str = "") -> TableRow:
    """Convert an SDK entity to a row.

    Projected entities may lack their keys; the given keys fill the gap.
    """
    metadata = getattr(entity, "metadata", None) or {}
    return TableRow(
        partition_key=entity.get("PartitionKey", partition_key),
        row_key=entity.get("RowKey", row_key),
        properties={
            name: from_wire_value(value)
            for name, value in entity.items()
            if name not in SYSTEM_PROPERTIES
        },
        timestamp=metadata.get("timestamp"),
        etag=metadata.get("etag"),
    )


def translate_error(error: Exception, action: str) -> TableServiceError:
    """Map an Azure SDK exception to the table storage exception hierarchy."""
    if isinstance(error, ResourceExistsError):
        return EntityAlreadyExistsError(f"Failed to {action}: {error}")
    if isinstance(error, ResourceNotFoundError):
        return EntityNotFoundError(f"Failed to {action}: {error}")
    if isinstance(error, ServiceRequestError):
        return TableStorageConnectionError(f"Failed to connect to Azure Table Storage: {error}")
    status_code = getattr(error, "status_code", None)
    if status_code == 409:
        return EntityAlreadyExistsError(f"Failed to {action}: {error}")
    if status_code == 404:
        return EntityNotFoundError(f"Failed to {action}: {error}")
    return TableServiceError(f"Failed to {action}: {error}", status_code=status_code)


def to_transaction(operations: list[BatchOperation]) -> list[tuple]:
    actions = []
    for op in operations:
        verb, mode = _BATCH_ACTIONS[op.kind]
        entity = to_entity(op.row)
        if op.kind is BatchOperationKind.DELETE:
            entity = {"PartitionKey": op.row.partition_key, "RowKey": op.row.row_key}
        actions.append((verb, entity) if mode is None else (verb, entity, {"mode": mode}))
    return actions


class AzureTableBackend(TableStorageBackend):
    """Azure Table Storage implementation of table storage backend."""

    def __init__(self, service_client: TableServiceClient, table_name: str):
        """Initialize Azure backend.

        Args:
            service_client: Table service client of the storage account
            table_name: Name of the table to bind to
        """
        self._service = service_client
        self._table_name = table_name
        self._table = service_client.get_table_client(table_name)

    @classmethod
    def from_connection_string(cls, connection_string: str, table_name: str) -> AzureTableBackend:
        """Create a backend from a storage connection string."""
        try:
            service = TableServiceClient.from_connection_string(connection_string)
        except ValueError as e:
            raise InvalidArgumentError(f"Invalid connection string: {e}") from e
        logger.info(f"Using Azure table {table_name} at {service.url}")
        return cls(service, table_name)

    @classmethod
    def from_account(
        cls,
        account_name: str,
        account_key: str,
        table_name: str,
        use_https: bool = True,
        endpoint: str | None = None,
    ) -> AzureTableBackend:
        """Create a backend from account credentials.

        Args:
            account_name: Storage account name
            account_key: Storage account key
            table_name: Name of the table
            use_https: Use HTTPS for the default endpoint
            endpoint: Explicit table service endpoint (e.g. an emulator)
        """
        credential = AzureNamedKeyCredential(account_name, account_key)
        service = TableServiceClient(
            endpoint=endpoint or account_endpoint(account_name, use_https),
            credential=credential,
        )
        logger.info(f"Using Azure table {table_name} at {service.url}")
        return cls(service, table_name)

    @property
    def table_name(self) -> str:
        return self._table_name

    def create_table_if_not_exists(self) -> bool:
        try:
            self._service.create_table(self._table_name)
            logger.info(f"Created table: {self._table_name}")
            return True
        except ResourceExistsError:
            return False
        except (HttpResponseError, ServiceRequestError) as e:
            raise translate_error(e, f"create table {self._table_name}") from e

    def table_exists(self) -> bool:
        try:
            tables = self._service.query_tables("TableName eq @name", parameters={"name": self._table_name})
            return next(iter(tables), None) is not None
        except (HttpResponseError, ServiceRequestError) as e:
            raise translate_error(e, f"check table {self._table_name}") from e

    def delete_table(self) -> bool:
        # The SDK ignores a missing table on delete
        if not self.table_exists():
            return False
        try:
            self._service.delete_table(self._table_name)
            logger.info(f"Deleted table: {self._table_name}")
            return True
        except ResourceNotFoundError:
            return False
        except (HttpResponseError, ServiceRequestError) as e:
            raise translate_error(e, f"delete table {self._table_name}") from e

    def get_entity(
        self, partition_key: str, row_key: str, select: list[str] | None = None
    ) -> TableRow | None:
        kwargs = {}
        if select is not None:
            kwargs["select"] = wire_select(select)
        try:
            entity = self._table.get_entity(partition_key, row_key, **kwargs)
        except ResourceNotFoundError:
            return None
        except (HttpResponseError, ServiceRequestError) as e:
            raise translate_error(e, f"get entity {partition_key}/{row_key}") from e
        return TableQuery(select=select).project(from_entity(entity, partition_key, row_key))

    def insert_entity(self, row: TableRow) -> None:
        try:
            self._table.create_entity(to_entity(row))
            logger.debug(f"Inserted entity {row.partition_key}/{row.row_key}")
        except (HttpResponseError, ServiceRequestError) as e:
            raise translate_error(e, f"insert entity {row.partition_key}/{row.row_key}") from e

    def upsert_entity(self, row: TableRow, mode: UpdateMode = UpdateMode.REPLACE) -> None:
        try:
            self._table.upsert_entity(to_entity(row), mode=azure_update_mode(mode))
        except (HttpResponseError, ServiceRequestError) as e:
            raise translate_error(e, f"upsert entity {row.partition_key}/{row.row_key}") from e

    def update_entity(self, row: TableRow, mode: UpdateMode = UpdateMode.REPLACE) -> None:
        try:
            self._table.update_entity(to_entity(row), mode=azure_update_mode(mode))
        except (HttpResponseError, ServiceRequestError) as e:
            raise translate_error(e, f"update entity {row.partition_key}/{row.row_key}") from e

    def delete_entity(self, partition_key: str, row_key: str) -> bool:
        # The SDK ignores a missing entity on delete, so check first
        if self.get_entity(partition_key, row_key, select=[]) is None:
            return False
        try:
            self._table.delete_entity(partition_key, row_key)
            logger.debug(f"Deleted entity {partition_key}/{row_key}")
            return True
        except ResourceNotFoundError:
            return False
        except (HttpResponseError, ServiceRequestError) as e:
            raise translate_error(e, f"delete entity {partition_key}/{row_key}") from e

    def query_entities(self, query: TableQuery) -> Iterator[TableRow]:
        select = wire_select(query.select)
        filter_string = query.to_filter()
        try:
            if filter_string is None:
                entities = self._table.list_entities(select=select, results_per_page=query.top)
            else:
                entities = self._table.query_entities(
                    query_filter=filter_string, select=select, results_per_page=query.top
                )
            if query.top is not None:
                entities = islice(entities, query.top)
            for entity in entities:
                yield query.project(from_entity(entity))
        except (HttpResponseError, ServiceRequestError) as e:
            raise translate_error(e, f"query table {self._table_name}") from e

    def submit_batch(self, operations: list[BatchOperation]) -> None:
        if not operations:
            return
        validate_batch(operations)
        try:
            self._table.submit_transaction(to_transaction(operations))
            logger.debug(f"Committed batch of {len(operations)} operations on {self._table_name}")
        except (HttpResponseError, ServiceRequestError) as e:
            raise translate_error(e, f"submit batch on {self._table_name}") from e
