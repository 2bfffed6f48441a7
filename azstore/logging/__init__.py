"""Write log records to table storage."""

from azstore.logging.entity import LogMessageTableEntity
from azstore.logging.handler import TableLogHandler, get_table_logger

__all__ = [
    "LogMessageTableEntity",
    "TableLogHandler",
    "get_table_logger",
]
