"""In-memory backend implementation for table storage."""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Iterator
from datetime import UTC, datetime

from ..errors import (
    EntityAlreadyExistsError,
    EntityNotFoundError,
    TableServiceError,
)
from ..table import (
    BatchOperation,
    BatchOperationKind,
    TableQuery,
    TableRow,
    TableStorageBackend,
    UpdateMode,
    clone_row,
    validate_batch,
)

logger = logging.getLogger(__name__)


class InMemoryTableBackend(TableStorageBackend):
    """Process-local implementation of table storage backend.

    Rows are kept in a dict keyed by (partition key, row key) and returned
    in key order, like the service does. Several backends may share one
    ``store`` dict to model several handles on the same table.
    """

    def __init__(self, table_name: str, store: dict | None = None, create: bool = False):
        """Initialize in-memory backend.

        Args:
            table_name: Name of the table
            store: Optional shared dict of tables (table name -> rows)
            create: Create the table immediately
        """
        self._table_name = table_name
        self._tables: dict[str, dict[tuple[str, str], TableRow]] = store if store is not None else {}
        self._lock = threading.RLock()
        if create:
            self.create_table_if_not_exists()

    @property
    def table_name(self) -> str:
        return self._table_name

    def _rows(self) -> dict[tuple[str, str], TableRow]:
        rows = self._tables.get(self._table_name)
        if rows is None:
            raise TableServiceError(f"Table not found: {self._table_name}", status_code=404)
        return rows

    @staticmethod
    def _stamp(row: TableRow) -> TableRow:
        stored = clone_row(row)
        stored.timestamp = datetime.now(UTC)
        stored.etag = f'W/"{uuid.uuid4().hex}"'
        return stored

    def create_table_if_not_exists(self) -> bool:
        with self._lock:
            if self._table_name in self._tables:
                return False
            self._tables[self._table_name] = {}
            logger.info(f"Created table: {self._table_name}")
            return True

    def table_exists(self) -> bool:
        with self._lock:
            return self._table_name in self._tables

    def delete_table(self) -> bool:
        with self._lock:
            if self._tables.pop(self._table_name, None) is None:
                return False
            logger.info(f"Deleted table: {self._table_name}")
            return True

    def get_entity(
        self, partition_key: str, row_key: str, select: list[str] | None = None
    ) -> TableRow | None:
        with self._lock:
            row = self._rows().get((partition_key, row_key))
            if row is None:
                return None
            return TableQuery(select=select).project(clone_row(row))

    def _insert(self, rows: dict, row: TableRow) -> None:
        key = (row.partition_key, row.row_key)
        if key in rows:
            raise EntityAlreadyExistsError(
                f"Entity already exists: {row.partition_key}/{row.row_key}"
            )
        rows[key] = self._stamp(row)

    def _upsert(self, rows: dict, row: TableRow, mode: UpdateMode) -> None:
        key = (row.partition_key, row.row_key)
        existing = rows.get(key)
        if existing is not None and mode is UpdateMode.MERGE:
            merged = existing.copy()
            merged.properties.update(row.properties)
            rows[key] = self._stamp(merged)
        else:
            rows[key] = self._stamp(row)

    def _update(self, rows: dict, row: TableRow, mode: UpdateMode) -> None:
        if (row.partition_key, row.row_key) not in rows:
            raise EntityNotFoundError(f"Entity not found: {row.partition_key}/{row.row_key}")
        self._upsert(rows, row, mode)

    def insert_entity(self, row: TableRow) -> None:
        with self._lock:
            self._insert(self._rows(), row)
        logger.debug(f"Inserted entity {row.partition_key}/{row.row_key}")

    def upsert_entity(self, row: TableRow, mode: UpdateMode = UpdateMode.REPLACE) -> None:
        with self._lock:
            self._upsert(self._rows(), row, mode)

    def update_entity(self, row: TableRow, mode: UpdateMode = UpdateMode.REPLACE) -> None:
        with self._lock:
            self._update(self._rows(), row, mode)

    def delete_entity(self, partition_key: str, row_key: str) -> bool:
        with self._lock:
            return self._rows().pop((partition_key, row_key), None) is not None

    def query_entities(self, query: TableQuery) -> Iterator[TableRow]:
        with self._lock:
            matches = [
                query.project(clone_row(row))
                for key, row in sorted(self._rows().items())
                if query.matches(row)
            ]
        if query.top is not None:
            matches = matches[: query.top]
        return iter(matches)

    def submit_batch(self, operations: list[BatchOperation]) -> None:
        """Apply a batch atomically: work on a copy and swap it in on success."""
        if not operations:
            return
        validate_batch(operations)

        with self._lock:
            staged = dict(self._rows())
            for op in operations:
                if op.kind is BatchOperationKind.CREATE:
                    self._insert(staged, op.row)
                elif op.kind is BatchOperationKind.UPSERT_MERGE:
                    self._upsert(staged, op.row, UpdateMode.MERGE)
                elif op.kind is BatchOperationKind.UPSERT_REPLACE:
                    self._upsert(staged, op.row, UpdateMode.REPLACE)
                elif op.kind is BatchOperationKind.UPDATE_MERGE:
                    self._update(staged, op.row, UpdateMode.MERGE)
                elif op.kind is BatchOperationKind.UPDATE_REPLACE:
                    self._update(staged, op.row, UpdateMode.REPLACE)
                elif op.kind is BatchOperationKind.DELETE:
                    if staged.pop((op.row.partition_key, op.row.row_key), None) is None:
                        raise EntityNotFoundError(
                            f"Entity not found: {op.row.partition_key}/{op.row.row_key}"
                        )
            self._tables[self._table_name] = staged
        logger.debug(f"Committed batch of {len(operations)} operations on {self._table_name}")
