"""Logging handler that writes records to a table."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import Any

from azstore.core.storage.codec import is_natively_supported
from azstore.core.storage.errors import TableStorageError
from azstore.core.storage.table import TableStorage
from azstore.logging.entity import LogMessageTableEntity

# Attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRIBUTES = frozenset(
    vars(logging.LogRecord("", logging.NOTSET, "", 0, "", None, None))
) | {"message", "asctime", "event_id"}


def _bag_value(value: Any) -> Any:
    return value if is_natively_supported(value) else repr(value)


class TableLogHandler(logging.Handler):
    """Write each log record as a :class:`LogMessageTableEntity` row.

    A failed insert is retried once under a random row key; if that also
    fails the error goes to :meth:`logging.Handler.handleError`.

    Examples:
        >>> handler = TableLogHandler(TableStorage.from_name("logs"))
        >>> logging.getLogger("app").addHandler(handler)
    """

    def __init__(self, table_storage: TableStorage, level: int = logging.NOTSET):
        super().__init__(level)
        self._storage = table_storage

    @property
    def table_storage(self) -> TableStorage:
        return self._storage

    def to_entity(self, record: logging.LogRecord) -> LogMessageTableEntity:
        """Build the row for a record; ``extra`` fields go into the bag."""
        entity = LogMessageTableEntity(timestamp=datetime.fromtimestamp(record.created, UTC))
        entity.level = record.levelname
        entity.message = self.format(record)
        entity.pid = record.process or entity.pid
        entity.tid = record.thread or 0
        entity.event_id = str(getattr(record, "event_id", ""))
        if record.exc_info:
            entity.stack_trace = logging.Formatter().formatException(record.exc_info)
        elif record.stack_info:
            entity.stack_trace = record.stack_info

        entity["Logger"] = record.name
        entity["Module"] = record.module
        entity["LineNumber"] = record.lineno
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRIBUTES and not key.startswith("_"):
                entity[key] = _bag_value(value)
        return entity

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entity = self.to_entity(record)
            try:
                self._storage.insert(entity)
            except TableStorageError:
                entity.row_key = str(uuid.uuid4())
                self._storage.insert(entity)
        except Exception:
            self.handleError(record)


def get_table_logger(
    name: str, table_storage: TableStorage, level: int = logging.DEBUG
) -> logging.Logger:
    """Get a logger that writes to table_storage.

    Calling it again for the same logger and table does not add a second handler.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    for handler in logger.handlers:
        if isinstance(handler, TableLogHandler) and handler.table_storage is table_storage:
            return logger
    logger.addHandler(TableLogHandler(table_storage, level))
    return logger
