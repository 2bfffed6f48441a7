"""Typed property codec.

Converts Python values to and from the tagged scalar representation that
table rows carry. Values of a natively supported type are stored as-is with
the matching tag; anything else is serialized to JSON and stored as a string.

Reading a value back with a requested type follows two paths: scalars are
returned as stored (and checked against the requested type), while string
values requested as a non-string type are parsed back from JSON.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from functools import lru_cache
from typing import Any
from uuid import UUID

from pydantic import PydanticSchemaGenerationError, TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError

from azstore.core.storage.errors import SerializationError, TypeConversionError

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1


class PropertyType(Enum):
    """Type tag of a stored property."""

    NULL = "Null"
    STRING = "Edm.String"
    BINARY = "Edm.Binary"
    BOOLEAN = "Edm.Boolean"
    DATETIME = "Edm.DateTime"
    DOUBLE = "Edm.Double"
    GUID = "Edm.Guid"
    INT32 = "Edm.Int32"
    INT64 = "Edm.Int64"
    JSON = "Json"

    @property
    def wire_type(self) -> PropertyType:
        """Tag used on the wire; JSON values travel as plain strings."""
        return PropertyType.STRING if self is PropertyType.JSON else self


@dataclass(frozen=True)
class TypedValue:
    """A value paired with its property type tag."""

    value: Any
    type: PropertyType

    @property
    def is_null(self) -> bool:
        return self.type is PropertyType.NULL or self.value is None


NULL_VALUE = TypedValue(None, PropertyType.NULL)

# Comparison families: STRING/JSON share a wire type, INT32/INT64 share a value domain
_FAMILY = {
    PropertyType.JSON: PropertyType.STRING,
    PropertyType.INT64: PropertyType.INT32,
}


def infer_property_type(value: Any) -> PropertyType | None:
    """Return the native property type for a value, or None if it has none."""
    if value is None:
        return PropertyType.NULL
    if isinstance(value, str):
        return PropertyType.STRING
    if isinstance(value, (bytes, bytearray)):
        return PropertyType.BINARY
    # bool is a subclass of int and must be checked first
    if isinstance(value, bool):
        return PropertyType.BOOLEAN
    if isinstance(value, datetime):
        return PropertyType.DATETIME
    if isinstance(value, float):
        return PropertyType.DOUBLE
    if isinstance(value, UUID):
        return PropertyType.GUID
    if isinstance(value, int):
        if INT32_MIN <= value <= INT32_MAX:
            return PropertyType.INT32
        if INT64_MIN <= value <= INT64_MAX:
            return PropertyType.INT64
    return None


def is_natively_supported(value: Any) -> bool:
    """Check whether a value can be stored without JSON serialization."""
    return infer_property_type(value) is not None


@lru_cache(maxsize=256)
def _adapter(value_type: Any) -> TypeAdapter:
    return TypeAdapter(value_type)


def encode(value: Any) -> TypedValue:
    """Convert a value to its typed representation.

    Args:
        value: Any value; an existing TypedValue is returned unchanged

    Returns:
        TypedValue with a native tag, or a JSON tag holding the serialized value

    Raises:
        SerializationError: If the value is not natively supported and cannot
            be serialized to JSON
    """
    if isinstance(value, TypedValue):
        return value

    property_type = infer_property_type(value)
    if property_type is PropertyType.BINARY:
        return TypedValue(bytes(value), property_type)
    if property_type is not None:
        return TypedValue(value, property_type)

    try:
        payload = _adapter(type(value)).dump_json(value)
    except (PydanticSchemaGenerationError, PydanticSerializationError, TypeError, ValueError) as e:
        raise SerializationError(
            f"Value of type {type(value).__name__} is not JSON serializable: {e}"
        ) from e
    return TypedValue(payload.decode("utf-8"), PropertyType.JSON)


def decode(typed_value: TypedValue | None) -> Any:
    """Return the stored value without any conversion."""
    if typed_value is None:
        return None
    return typed_value.value


def _cast(value: Any, value_type: Any) -> Any:
    if isinstance(value_type, type):
        if value_type is int and isinstance(value, bool):
            raise TypeConversionError(f"Cannot convert {value!r} to int")
        if isinstance(value, value_type):
            return value
        raise TypeConversionError(
            f"Cannot convert stored {type(value).__name__} to {value_type.__name__}"
        )

    try:
        return _adapter(value_type).validate_python(value, strict=True)
    except ValidationError as e:
        raise TypeConversionError(f"Cannot convert {value!r} to {value_type}: {e}") from e


def decode_as(typed_value: TypedValue | None, value_type: Any = None) -> Any:
    """Return the stored value as the requested type.

    Non-string values, and any value requested as ``str``, are returned as
    stored after a type check. String values requested as another type were
    written through the JSON path and are parsed back into that type.

    Args:
        typed_value: Stored value
        value_type: Requested type; None, ``object`` or ``Any`` skip conversion

    Returns:
        Value of the requested type (None for a null value)

    Raises:
        TypeConversionError: If the value cannot be interpreted as value_type
    """
    if typed_value is None or typed_value.is_null:
        return None
    if value_type is None or value_type is object or value_type is Any:
        return typed_value.value

    if typed_value.type.wire_type is not PropertyType.STRING or value_type is str:
        return _cast(typed_value.value, value_type)

    try:
        return _adapter(value_type).validate_json(typed_value.value)
    except ValidationError as e:
        raise TypeConversionError(
            f"Cannot deserialize stored string to {getattr(value_type, '__name__', value_type)}: {e}"
        ) from e
    except PydanticSchemaGenerationError as e:
        raise TypeConversionError(f"Unsupported target type {value_type}: {e}") from e


def values_equal(left: TypedValue, right: TypedValue) -> bool:
    """Compare two typed values by wire family and value."""
    if left.is_null or right.is_null:
        return left.is_null and right.is_null
    left_family = _FAMILY.get(left.type, left.type)
    right_family = _FAMILY.get(right.type, right.type)
    return left_family is right_family and left.value == right.value
