"""Tests for the table log entity and handler."""

from __future__ import annotations

import logging
import os
from datetime import UTC, datetime
from unittest.mock import Mock

import pytest

from azstore.core.storage.errors import EntityAlreadyExistsError, TableServiceError
from azstore.logging import LogMessageTableEntity, TableLogHandler, get_table_logger
from azstore.logging.entity import partition_key_for, row_key_for


@pytest.fixture
def logger_name(request):
    """Unique logger name per test, with handlers removed afterwards."""
    name = f"azstore.tests.{request.node.name}"
    yield name
    logging.getLogger(name).handlers.clear()


class TestLogMessageTableEntity:
    """Test suite for the log row layout."""

    def test_keys_from_timestamp(self):
        stamp = datetime(2024, 5, 1, 13, 45, 12, 345000, tzinfo=UTC)
        assert partition_key_for(stamp) == "2024-05-01T13U+0"
        assert row_key_for(stamp, 987) == "13:45:12.345U+0_987"

    def test_default_fields(self):
        stamp = datetime(2024, 5, 1, 13, 45, 12, tzinfo=UTC)
        entity = LogMessageTableEntity(timestamp=stamp)
        assert entity.partition_key == "2024-05-01T13U+0"
        assert entity.row_key.startswith("13:45:12.000U+0_")
        assert entity.row_key.endswith(str(entity.event_tick_count))
        assert entity.pid == os.getpid()
        assert entity.level == "NOTSET"

    def test_explicit_keys_kept(self):
        entity = LogMessageTableEntity("p", "r")
        assert (entity.partition_key, entity.row_key) == ("p", "r")

    def test_declared_properties_written(self):
        entity = LogMessageTableEntity()
        entity.level = "INFO"
        entity.message = "hello"
        entity["RequestId"] = "abc"
        row = entity.to_row()
        assert row["Level"].value == "INFO"
        assert row["Message"].value == "hello"
        assert row["RequestId"].value == "abc"
        assert {"Pid", "Tid", "Machine", "Is64BitProcess"} <= set(row.properties)

    def test_round_trip_through_table(self, table_storage):
        entity = LogMessageTableEntity()
        entity.message = "stored"
        entity["Attempt"] = 2
        table_storage.insert(entity)

        loaded = table_storage.retrieve(entity.partition_key, entity.row_key, LogMessageTableEntity)
        assert loaded.message == "stored"
        assert loaded["Attempt"] == 2
        assert loaded.keys() == ["Attempt"]

    def test_str_is_single_line(self):
        entity = LogMessageTableEntity()
        entity.message = "line one\nline two"
        text = str(entity)
        assert "\n" not in text
        assert "[Message: line one line two]" in text


class TestTableLogHandler:
    """Test suite for TableLogHandler."""

    def test_emit_writes_row(self, table_storage, logger_name):
        logger = get_table_logger(logger_name, table_storage)
        logger.info("user %s logged in", "ada", extra={"request_id": "r-1", "payload": {"a": 1}})

        rows = table_storage.list_entities(LogMessageTableEntity)
        assert len(rows) == 1
        entity = rows[0]
        assert entity.level == "INFO"
        assert entity.message == "user ada logged in"
        assert entity["Logger"] == logger_name
        assert entity["request_id"] == "r-1"
        assert entity["payload"] == "{'a': 1}"
        assert isinstance(entity["LineNumber"], int)

    def test_exception_stack_trace(self, table_storage, logger_name):
        logger = get_table_logger(logger_name, table_storage)
        try:
            raise ValueError("boom")
        except ValueError:
            logger.exception("failed")

        entity = table_storage.list_entities(LogMessageTableEntity)[0]
        assert entity.level == "ERROR"
        assert "ValueError: boom" in entity.stack_trace

    def test_level_filtering(self, table_storage, logger_name):
        logger = get_table_logger(logger_name, table_storage, level=logging.WARNING)
        logger.info("ignored")
        logger.warning("kept")
        assert table_storage.entities_count() == 1

    def test_no_duplicate_handlers(self, table_storage, logger_name):
        get_table_logger(logger_name, table_storage)
        logger = get_table_logger(logger_name, table_storage)
        assert sum(isinstance(h, TableLogHandler) for h in logger.handlers) == 1

    def test_retry_with_random_row_key(self):
        storage = Mock()
        storage.insert.side_effect = [EntityAlreadyExistsError("exists"), None]
        handler = TableLogHandler(storage)

        handler.emit(logging.makeLogRecord({"msg": "hello", "levelname": "INFO"}))

        assert storage.insert.call_count == 2
        retried = storage.insert.call_args_list[1][0][0]
        assert len(retried.row_key) == 36

    def test_second_failure_goes_to_handle_error(self):
        storage = Mock()
        storage.insert.side_effect = TableServiceError("down")
        handler = TableLogHandler(storage)
        handler.handleError = Mock()

        record = logging.makeLogRecord({"msg": "hello"})
        handler.emit(record)

        assert storage.insert.call_count == 2
        handler.handleError.assert_called_once_with(record)
