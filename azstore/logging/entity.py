"""Table entity describing one log event."""

from __future__ import annotations

import getpass
import os
import socket
import sys
import time
from datetime import UTC, datetime

from azstore.core.storage.entity import DeclaredProperty, DictionaryTableEntity

# Partition per UTC hour, e.g. "2024-05-01T13U+0"
PARTITION_KEY_FORMAT = "%Y-%m-%dT%HU+0"
# Row key prefix, completed with the event tick count
ROW_KEY_TIME_FORMAT = "%H:%M:%S.{millis:03d}U+0_"


def partition_key_for(timestamp: datetime) -> str:
    return timestamp.astimezone(UTC).strftime(PARTITION_KEY_FORMAT)


def row_key_for(timestamp: datetime, tick_count: int) -> str:
    utc = timestamp.astimezone(UTC)
    prefix = utc.strftime(ROW_KEY_TIME_FORMAT).format(millis=utc.microsecond // 1000)
    return f"{prefix}{tick_count}"


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return ""


class LogMessageTableEntity(DictionaryTableEntity):
    """One log event.

    Rows are bucketed by UTC hour and ordered by time within the hour. The
    process and host fields are filled from the running process; anything
    else attached to the event goes into the dynamic bag.
    """

    declared_properties = (
        DeclaredProperty("Level", str, "level"),
        DeclaredProperty("Message", str, "message"),
        DeclaredProperty("EventTickCount", int, "event_tick_count"),
        DeclaredProperty("User", str, "user"),
        DeclaredProperty("Domain", str, "domain"),
        DeclaredProperty("Machine", str, "machine"),
        DeclaredProperty("ApplicationName", str, "application_name"),
        DeclaredProperty("EventId", str, "event_id"),
        DeclaredProperty("InstanceId", str, "instance_id"),
        DeclaredProperty("Pid", int, "pid"),
        DeclaredProperty("Tid", int, "tid"),
        DeclaredProperty("CommandLine", str, "command_line"),
        DeclaredProperty("StackTrace", str, "stack_trace"),
        DeclaredProperty("Is64BitProcess", bool, "is_64bit_process"),
    )

    def __init__(
        self,
        partition_key: str | None = None,
        row_key: str | None = None,
        timestamp: datetime | None = None,
    ):
        super().__init__(partition_key, row_key)
        tick_count = time.monotonic_ns()
        event_time = timestamp or datetime.now(UTC)

        if partition_key is None and row_key is None:
            self.partition_key = partition_key_for(event_time)
            self.row_key = row_key_for(event_time, tick_count)
        self.timestamp = event_time

        self.level = "NOTSET"
        self.message = ""
        self.event_tick_count = tick_count
        self.user = _current_user()
        self.domain = os.environ.get("USERDOMAIN", "")
        self.machine = socket.gethostname()
        self.application_name = os.path.basename(sys.argv[0]) if sys.argv and sys.argv[0] else ""
        self.event_id = ""
        self.instance_id = os.environ.get("WEBSITE_INSTANCE_ID", "")
        self.pid = os.getpid()
        self.tid = 0
        self.command_line = " ".join(sys.argv)
        self.stack_trace = ""
        self.is_64bit_process = sys.maxsize > 2**32

    def __str__(self) -> str:
        text = (
            f"[PK: {self.partition_key}] [RK: {self.row_key}] [Level: {self.level}] "
            f"[Message: {self.message}] [Pid: {self.pid}] [Tid: {self.tid}] "
            f"[EventTickCount: {self.event_tick_count}] [User: {self.user}] "
            f"[Machine: {self.machine}] [ApplicationName: {self.application_name}] "
            f"[EventId: {self.event_id}] [StackTrace: {self.stack_trace}]"
        )
        return text.replace("\n", " ")
