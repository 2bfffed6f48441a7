"""Argument validation following the table service naming rules."""

from __future__ import annotations

import re
from typing import Any

from azstore.core.storage.errors import InvalidArgumentError

MAX_KEY_LENGTH = 1024
MAX_DICTIONARY_VALUE_LENGTH = 990

_TABLE_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9]{2,62}$")
_KEY_VALUE_RE = re.compile(r"^[^/\\#?\x00-\x1f\x7f-\x9f]{0,%d}$" % MAX_KEY_LENGTH)
_DICTIONARY_VALUE_RE = re.compile(
    r"^[^/\\#?\x00-\x1f\x7f-\x9f]{0,%d}$" % MAX_DICTIONARY_VALUE_LENGTH
)


def validate_not_none(value: Any, name: str = "value") -> None:
    """Reject None."""
    if value is None:
        raise InvalidArgumentError(f"Parameter '{name}' must not be None.")


def validate_not_blank(value: str | None, name: str = "value") -> None:
    """Reject None, empty and whitespace-only strings."""
    if value is None or not isinstance(value, str) or not value.strip():
        raise InvalidArgumentError(f"Parameter '{name}' must be a non-blank string.")


def validate_table_name(name: str | None) -> None:
    """Validate a table name.

    Table names are 3 to 63 alphanumeric characters and begin with a letter.
    The name "tables" is reserved by the service.
    """
    validate_not_blank(name, "table_name")
    if not _TABLE_NAME_RE.fullmatch(name) or name.lower() == "tables":
        raise InvalidArgumentError(
            f"Invalid table name '{name}': table names must be 3 to 63 alphanumeric "
            "characters, begin with a letter, and must not be 'tables'."
        )


def validate_key_value(value: str | None, name: str = "key") -> None:
    """Validate a partition key or row key."""
    validate_not_blank(value, name)
    if not _KEY_VALUE_RE.fullmatch(value):
        raise InvalidArgumentError(
            f"Invalid {name}: key values must not contain '/', '\\', '#', '?' or control "
            f"characters and must be from 1 to {MAX_KEY_LENGTH} characters long."
        )


def validate_dictionary_value(value: str | None, name: str = "key") -> None:
    """Validate a dictionary name or dictionary key.

    Same character rules as key values, with a shorter limit so the
    namespace prefix still fits in a key.
    """
    validate_not_blank(value, name)
    if not _DICTIONARY_VALUE_RE.fullmatch(value):
        raise InvalidArgumentError(
            f"Invalid {name}: dictionary names and keys must not contain '/', '\\', '#', '?' "
            f"or control characters and must be from 1 to {MAX_DICTIONARY_VALUE_LENGTH} "
            "characters long."
        )
