"""Key namespace used to store dictionaries inside a shared table.

A dictionary named ``D`` owns the partition ``PARTITION_KEY_PREFIX + D``.
Each entry lives in the row ``ROW_KEY_PREFIX + key`` of that partition and
holds its value in the ``DICTIONARY_VALUE_PROPERTY`` property. Entries are
enumerated with the half-open range ``[ROW_KEY_PREFIX, successor(ROW_KEY_PREFIX))``
so other rows sharing the partition are never picked up.

The constants must stay byte-for-byte identical to read existing data.
"""

from __future__ import annotations

from typing import Any

from azstore.core.storage.codec import TypedValue, decode, decode_as, encode, values_equal
from azstore.core.storage.table import ComparisonOperator, TableQuery, TableRow
from azstore.core.storage.validation import validate_dictionary_value

PARTITION_KEY_PREFIX = "[abe0005754444cc5b3dacb28981a28c1]"
ROW_KEY_PREFIX = "[82588a3a96ec412497548831e55a096a]"
PARTITION_KEY_PREFIX_LENGTH = len(PARTITION_KEY_PREFIX)
ROW_KEY_PREFIX_LENGTH = len(ROW_KEY_PREFIX)

DICTIONARY_VALUE_PROPERTY = "Value"


def successor(text: str) -> str:
    """Return the smallest string greater than every string starting with text.

    Increments the last character, e.g. ``"[abc]"`` -> ``"[abc^"``.
    """
    if not text:
        raise ValueError("Cannot compute the successor of an empty string")
    return text[:-1] + chr(ord(text[-1]) + 1)


ROW_KEY_UPPER_BOUND = successor(ROW_KEY_PREFIX)


class DictionaryKeySpace:
    """Maps dictionary keys to the row keys of one dictionary and back."""

    def __init__(self, dictionary_name: str, ignore_case: bool = False):
        validate_dictionary_value(dictionary_name, "dictionary_name")
        self._name = dictionary_name
        self._ignore_case = ignore_case
        self._partition_key = PARTITION_KEY_PREFIX + dictionary_name

    @property
    def dictionary_name(self) -> str:
        return self._name

    @property
    def ignore_case(self) -> bool:
        return self._ignore_case

    @property
    def partition_key(self) -> str:
        return self._partition_key

    def normalize(self, key: str) -> str:
        """Validate a dictionary key and apply case folding if enabled."""
        validate_dictionary_value(key, "key")
        return key.lower() if self._ignore_case else key

    def row_key(self, key: str) -> str:
        return ROW_KEY_PREFIX + self.normalize(key)

    @staticmethod
    def user_key(row_key: str) -> str:
        """Strip the row key prefix."""
        if not row_key.startswith(ROW_KEY_PREFIX):
            raise ValueError(f"Row key is outside the dictionary key range: {row_key!r}")
        return row_key[ROW_KEY_PREFIX_LENGTH:]

    def range_query(self, select: list[str] | None = None) -> TableQuery:
        """Query covering exactly the entries of this dictionary."""
        return (
            TableQuery.partition(self._partition_key, select=select)
            .where("RowKey", ComparisonOperator.GE, ROW_KEY_PREFIX)
            .where("RowKey", ComparisonOperator.LT, ROW_KEY_UPPER_BOUND)
        )

    def entry_row(self, key: str, value: Any) -> TableRow:
        """Build the row storing one entry."""
        return TableRow(
            self._partition_key,
            self.row_key(key),
            {DICTIONARY_VALUE_PROPERTY: encode(value)},
        )

    @staticmethod
    def entry_typed_value(row: TableRow) -> TypedValue | None:
        return row.get(DICTIONARY_VALUE_PROPERTY)

    @classmethod
    def entry_value(cls, row: TableRow, value_type: Any = None) -> Any:
        """Decode the value stored in an entry row."""
        typed_value = cls.entry_typed_value(row)
        if value_type is None:
            return decode(typed_value)
        return decode_as(typed_value, value_type)

    @classmethod
    def holds_value(cls, row: TableRow, value: Any) -> bool:
        """Whether an entry row stores value, compared in encoded form."""
        stored = cls.entry_typed_value(row)
        return stored is not None and values_equal(stored, encode(value))
