"""Entity type exposing a dictionary over a row's dynamic properties.

Subclasses may declare strongly typed properties through the
``declared_properties`` class attribute. Declared properties are bound to
instance attributes on read and always written; every other property lives
in the dynamic bag. A declared name never appears in the bag.

Example:
    >>> class Setting(DictionaryTableEntity):
    ...     declared_properties = (DeclaredProperty("Owner", str, "owner"),)
    ...     def __init__(self, partition_key=None, row_key=None):
    ...         super().__init__(partition_key, row_key)
    ...         self.owner = ""
    >>> setting = Setting("app", "timeouts")
    >>> setting["connect"] = 30
    >>> sorted(setting.write_entity())
    ['Owner', 'connect']
"""

from __future__ import annotations

from collections.abc import Iterator, MutableMapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar

from azstore.core.storage.codec import TypedValue, decode, decode_as, encode, values_equal
from azstore.core.storage.errors import (
    DuplicateKeyError,
    EntryNotFoundError,
    InvalidArgumentError,
    TypeConversionError,
)
from azstore.core.storage.table import TableRow
from azstore.core.storage.validation import validate_not_none


@dataclass(frozen=True)
class DeclaredProperty:
    """A strongly typed property of an entity subclass.

    Attributes:
        name: Property name on the wire
        value_type: Type the stored value is decoded to
        attribute: Instance attribute holding the value (defaults to name)
    """

    name: str
    value_type: Any = object
    attribute: str | None = None

    @property
    def attribute_name(self) -> str:
        return self.attribute or self.name

    def get(self, entity: Any) -> Any:
        return getattr(entity, self.attribute_name)

    def set(self, entity: Any, value: Any) -> None:
        setattr(entity, self.attribute_name, value)


def copy_entries(entries: list[tuple[str, Any]], target: list, start_index: int) -> None:
    """Copy key/value pairs into a pre-sized list starting at start_index.

    Raises:
        InvalidArgumentError: If start_index is out of range or the target
            cannot hold every entry; the target is left untouched
    """
    validate_not_none(target, "target")
    if start_index < 0 or start_index > len(target):
        raise InvalidArgumentError("Array index is out of range")
    if len(target) - start_index < len(entries):
        raise InvalidArgumentError(
            "The number of elements in the source dictionary is greater than the "
            "available space from the index to the end of the destination list"
        )
    for offset, entry in enumerate(entries):
        target[start_index + offset] = entry


class DictionaryTableEntity(MutableMapping[str, Any]):
    """Table entity with dictionary access to its dynamic properties."""

    declared_properties: ClassVar[tuple[DeclaredProperty, ...]] = ()

    def __init__(self, partition_key: str | None = None, row_key: str | None = None):
        self.partition_key = partition_key
        self.row_key = row_key
        self.timestamp: datetime | None = None
        self.etag: str | None = None
        self._properties: dict[str, TypedValue] = {}

    @classmethod
    def declared_names(cls) -> frozenset[str]:
        return frozenset(prop.name for prop in cls.declared_properties)

    @classmethod
    def _declared(cls, key: str) -> DeclaredProperty | None:
        for prop in cls.declared_properties:
            if prop.name == key:
                return prop
        return None

    @classmethod
    def from_row(cls, row: TableRow) -> DictionaryTableEntity:
        entity = cls()
        entity.read_entity(row)
        return entity

    # Mapping protocol

    def __getitem__(self, key: str) -> Any:
        if key in self._properties:
            return decode(self._properties[key])
        prop = self._declared(key)
        if prop is not None:
            return prop.get(self)
        raise EntryNotFoundError(key)

    def __setitem__(self, key: str, value: Any) -> None:
        prop = self._declared(key)
        if prop is not None:
            prop.set(self, value)
            return
        self._properties[key] = encode(value)

    def __delitem__(self, key: str) -> None:
        if key not in self._properties:
            raise EntryNotFoundError(key)
        del self._properties[key]

    def __contains__(self, key: object) -> bool:
        return key in self._properties

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._properties))

    def __len__(self) -> int:
        return len(self._properties)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(partition_key={self.partition_key!r}, "
            f"row_key={self.row_key!r}, properties={self.keys()!r})"
        )

    # Dictionary operations

    def keys(self) -> list[str]:
        return list(self._properties)

    def values(self) -> list[Any]:
        return [decode(value) for value in self._properties.values()]

    def items(self) -> list[tuple[str, Any]]:
        return [(key, decode(value)) for key, value in self._properties.items()]

    def add(self, key: str, value: Any) -> None:
        """Add a new dynamic property.

        Raises:
            DuplicateKeyError: If the key already exists or names a declared property
        """
        if key in self._properties or self._declared(key) is not None:
            raise DuplicateKeyError(f"An element with the same key already exists: {key}")
        self._properties[key] = encode(value)

    def add_or_update(self, key: str, value: Any) -> DictionaryTableEntity:
        self[key] = value
        return self

    def remove(self, key: str) -> bool:
        return self._properties.pop(key, None) is not None

    def contains_key(self, key: str) -> bool:
        return key in self._properties

    def contains_entry(self, key: str, value: Any) -> bool:
        stored = self._properties.get(key)
        return stored is not None and values_equal(stored, encode(value))

    def remove_entry(self, key: str, value: Any) -> bool:
        if not self.contains_entry(key, value):
            return False
        del self._properties[key]
        return True

    def clear(self) -> None:
        self._properties.clear()

    def get_value(
        self,
        key: str,
        value_type: Any = None,
        throw_on_error: bool = True,
        default: Any = None,
    ) -> Any:
        """Get a property converted to value_type.

        Args:
            key: Property name (dynamic or declared)
            value_type: Requested type, None for the stored value
            throw_on_error: Raise on a missing key or failed conversion
            default: Returned instead of raising when throw_on_error is False

        Raises:
            EntryNotFoundError: If the key does not exist
            TypeConversionError: If the value cannot be converted
        """
        try:
            if key in self._properties:
                return decode_as(self._properties[key], value_type)
            prop = self._declared(key)
            if prop is None:
                raise EntryNotFoundError(key)
            return decode_as(encode(prop.get(self)), value_type)
        except (EntryNotFoundError, TypeConversionError):
            if throw_on_error:
                raise
            return default

    def copy_to(self, target: list, start_index: int = 0) -> None:
        copy_entries(self.items(), target, start_index)

    # Row conversion

    def read_entity(self, row: TableRow) -> None:
        """Load identity, declared properties and the dynamic bag from a row."""
        self.partition_key = row.partition_key
        self.row_key = row.row_key
        self.timestamp = row.timestamp
        self.etag = row.etag

        properties = dict(row.properties)
        for prop in self.declared_properties:
            if prop.name in properties:
                prop.set(self, decode_as(properties.pop(prop.name), prop.value_type))
        self._properties = properties

    def write_entity(self) -> dict[str, TypedValue]:
        """Flatten declared properties and the bag; declared values win."""
        result = {prop.name: encode(prop.get(self)) for prop in self.declared_properties}
        for key, value in self._properties.items():
            if key not in result:
                result[key] = value
        return result

    def to_row(self) -> TableRow:
        return TableRow(
            partition_key=self.partition_key,
            row_key=self.row_key,
            properties=self.write_entity(),
            timestamp=self.timestamp,
            etag=self.etag,
        )
