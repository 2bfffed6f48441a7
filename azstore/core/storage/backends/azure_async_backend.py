"""Azure Table Storage backend on the SDK's native async client."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from azure.core.credentials import AzureNamedKeyCredential
from azure.core.exceptions import (
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
    ServiceRequestError,
)
from azure.data.tables.aio import TableServiceClient

from ..dictionary_async import AsyncTableStorageBackend
from ..errors import InvalidArgumentError
from ..table import BatchOperation, TableQuery, TableRow, UpdateMode, validate_batch
from .azure_backend import (
    account_endpoint,
    azure_update_mode,
    from_entity,
    to_entity,
    to_transaction,
    translate_error,
    wire_select,
)

logger = logging.getLogger(__name__)


class AzureAsyncTableBackend(AsyncTableStorageBackend):
    """Azure Table Storage implementation of the async table backend."""

    def __init__(self, service_client: TableServiceClient, table_name: str):
        self._service = service_client
        self._table_name = table_name
        self._table = service_client.get_table_client(table_name)

    @classmethod
    def from_connection_string(cls, connection_string: str, table_name: str) -> AzureAsyncTableBackend:
        try:
            service = TableServiceClient.from_connection_string(connection_string)
        except ValueError as e:
            raise InvalidArgumentError(f"Invalid connection string: {e}") from e
        return cls(service, table_name)

    @classmethod
    def from_account(
        cls,
        account_name: str,
        account_key: str,
        table_name: str,
        use_https: bool = True,
        endpoint: str | None = None,
    ) -> AzureAsyncTableBackend:
        service = TableServiceClient(
            endpoint=endpoint or account_endpoint(account_name, use_https),
            credential=AzureNamedKeyCredential(account_name, account_key),
        )
        return cls(service, table_name)

    @property
    def table_name(self) -> str:
        return self._table_name

    async def close(self) -> None:
        await self._table.close()
        await self._service.close()

    async def create_table_if_not_exists(self) -> bool:
        try:
            await self._service.create_table(self._table_name)
            logger.info(f"Created table: {self._table_name}")
            return True
        except ResourceExistsError:
            return False
        except (HttpResponseError, ServiceRequestError) as e:
            raise translate_error(e, f"create table {self._table_name}") from e

    async def table_exists(self) -> bool:
        try:
            tables = self._service.query_tables("TableName eq @name", parameters={"name": self._table_name})
            async for _ in tables:
                return True
            return False
        except (HttpResponseError, ServiceRequestError) as e:
            raise translate_error(e, f"check table {self._table_name}") from e

    async def delete_table(self) -> bool:
        if not await self.table_exists():
            return False
        try:
            await self._service.delete_table(self._table_name)
            logger.info(f"Deleted table: {self._table_name}")
            return True
        except ResourceNotFoundError:
            return False
        except (HttpResponseError, ServiceRequestError) as e:
            raise translate_error(e, f"delete table {self._table_name}") from e

    async def get_entity(
        self, partition_key: str, row_key: str, select: list[str] | None = None
    ) -> TableRow | None:
        kwargs = {}
        if select is not None:
            kwargs["select"] = wire_select(select)
        try:
            entity = await self._table.get_entity(partition_key, row_key, **kwargs)
        except ResourceNotFoundError:
            return None
        except (HttpResponseError, ServiceRequestError) as e:
            raise translate_error(e, f"get entity {partition_key}/{row_key}") from e
        return TableQuery(select=select).project(from_entity(entity, partition_key, row_key))

    async def insert_entity(self, row: TableRow) -> None:
        try:
            await self._table.create_entity(to_entity(row))
        except (HttpResponseError, ServiceRequestError) as e:
            raise translate_error(e, f"insert entity {row.partition_key}/{row.row_key}") from e

    async def upsert_entity(self, row: TableRow, mode: UpdateMode = UpdateMode.REPLACE) -> None:
        try:
            await self._table.upsert_entity(to_entity(row), mode=azure_update_mode(mode))
        except (HttpResponseError, ServiceRequestError) as e:
            raise translate_error(e, f"upsert entity {row.partition_key}/{row.row_key}") from e

    async def update_entity(self, row: TableRow, mode: UpdateMode = UpdateMode.REPLACE) -> None:
        try:
            await self._table.update_entity(to_entity(row), mode=azure_update_mode(mode))
        except (HttpResponseError, ServiceRequestError) as e:
            raise translate_error(e, f"update entity {row.partition_key}/{row.row_key}") from e

    async def delete_entity(self, partition_key: str, row_key: str) -> bool:
        if await self.get_entity(partition_key, row_key, select=[]) is None:
            return False
        try:
            await self._table.delete_entity(partition_key, row_key)
            return True
        except ResourceNotFoundError:
            return False
        except (HttpResponseError, ServiceRequestError) as e:
            raise translate_error(e, f"delete entity {partition_key}/{row_key}") from e

    async def query_entities(self, query: TableQuery) -> AsyncIterator[TableRow]:
        select = wire_select(query.select)
        filter_string = query.to_filter()
        try:
            if filter_string is None:
                entities = self._table.list_entities(select=select, results_per_page=query.top)
            else:
                entities = self._table.query_entities(
                    query_filter=filter_string, select=select, results_per_page=query.top
                )
            returned = 0
            async for entity in entities:
                if query.top is not None and returned >= query.top:
                    break
                returned += 1
                yield query.project(from_entity(entity))
        except (HttpResponseError, ServiceRequestError) as e:
            raise translate_error(e, f"query table {self._table_name}") from e

    async def submit_batch(self, operations: list[BatchOperation]) -> None:
        if not operations:
            return
        validate_batch(operations)
        try:
            await self._table.submit_transaction(to_transaction(operations))
        except (HttpResponseError, ServiceRequestError) as e:
            raise translate_error(e, f"submit batch on {self._table_name}") from e
