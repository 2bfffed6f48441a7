"""Tests for the typed property codec."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta, timezone
from uuid import uuid4

import pytest
from pydantic import BaseModel

from azstore.core.storage.codec import (
    NULL_VALUE,
    PropertyType,
    TypedValue,
    decode,
    decode_as,
    encode,
    infer_property_type,
    is_natively_supported,
    values_equal,
)
from azstore.core.storage.errors import SerializationError, TypeConversionError


class Endpoint(BaseModel):
    host: str
    port: int


@dataclass
class Point:
    x: int
    y: int


class Opaque:
    pass


class TestPropertyTypeInference:
    """Test suite for native type detection."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (None, PropertyType.NULL),
            ("text", PropertyType.STRING),
            (b"\x00\x01", PropertyType.BINARY),
            (True, PropertyType.BOOLEAN),
            (datetime(2024, 1, 1, tzinfo=UTC), PropertyType.DATETIME),
            (1.5, PropertyType.DOUBLE),
            (uuid4(), PropertyType.GUID),
            (42, PropertyType.INT32),
            (2**31, PropertyType.INT64),
            (-(2**63), PropertyType.INT64),
        ],
    )
    def test_native_types(self, value, expected):
        assert infer_property_type(value) is expected
        assert is_natively_supported(value)

    def test_bool_is_not_int(self):
        """bool must not be tagged as an integer."""
        assert infer_property_type(False) is PropertyType.BOOLEAN

    def test_unsupported_types(self):
        assert infer_property_type({"a": 1}) is None
        assert infer_property_type(2**64) is None
        assert not is_natively_supported([1, 2])


class TestEncodeDecode:
    """Test suite for encode/decode round trips."""

    @pytest.mark.parametrize(
        "value",
        [
            "hello",
            b"bytes",
            True,
            3.141592653589793,
            2**62 + 1,
            -7,
            datetime(2024, 5, 1, 13, 45, 12, 123456, tzinfo=UTC),
            datetime(2024, 5, 1, 13, 45, tzinfo=timezone(timedelta(hours=9))),
        ],
    )
    def test_native_round_trip(self, value):
        assert decode(encode(value)) == value

    def test_guid_round_trip(self):
        value = uuid4()
        assert decode(encode(value)) == value

    def test_typed_value_passes_through(self):
        typed_value = TypedValue("x", PropertyType.STRING)
        assert encode(typed_value) is typed_value

    def test_bytearray_stored_as_bytes(self):
        typed_value = encode(bytearray(b"abc"))
        assert typed_value.type is PropertyType.BINARY
        assert typed_value.value == b"abc"

    def test_dict_is_serialized_to_json(self):
        typed_value = encode({"retries": 3, "hosts": ["a", "b"]})
        assert typed_value.type is PropertyType.JSON
        assert typed_value.type.wire_type is PropertyType.STRING
        assert isinstance(typed_value.value, str)

    def test_opaque_round_trip(self):
        value = {"retries": 3, "hosts": ["a", "b"]}
        assert decode_as(encode(value), dict) == value

    def test_model_round_trip(self):
        value = Endpoint(host="localhost", port=8080)
        assert decode_as(encode(value), Endpoint) == value

    def test_dataclass_round_trip(self):
        value = Point(1, 2)
        assert decode_as(encode(value), Point) == value

    def test_big_int_goes_through_json(self):
        value = 2**70
        typed_value = encode(value)
        assert typed_value.type is PropertyType.JSON
        assert decode_as(typed_value, int) == value

    def test_unserializable_value_raises(self):
        with pytest.raises(SerializationError):
            encode(Opaque())

    def test_decode_none(self):
        assert decode(None) is None
        assert decode(NULL_VALUE) is None


class TestDecodeAs:
    """Test suite for typed reads."""

    def test_no_type_returns_stored_value(self):
        assert decode_as(encode(5)) == 5
        assert decode_as(encode(5), object) == 5

    def test_string_requested_as_string(self):
        assert decode_as(encode("[1, 2]"), str) == "[1, 2]"

    def test_scalar_cast(self):
        assert decode_as(encode(5), int) == 5
        assert decode_as(encode(True), bool) is True

    def test_int64_read_as_int(self):
        assert decode_as(TypedValue(2**40, PropertyType.INT64), int) == 2**40

    def test_scalar_type_mismatch(self):
        with pytest.raises(TypeConversionError):
            decode_as(encode(5), str)

    def test_bool_not_read_as_int(self):
        with pytest.raises(TypeConversionError):
            decode_as(encode(True), int)

    def test_invalid_json_raises(self):
        with pytest.raises(TypeConversionError):
            decode_as(encode("not json"), dict)

    def test_null_reads_as_none(self):
        assert decode_as(NULL_VALUE, int) is None


class TestValuesEqual:
    """Test suite for typed value comparison."""

    def test_same_value(self):
        assert values_equal(encode("a"), encode("a"))

    def test_int_widths_compare_equal(self):
        assert values_equal(TypedValue(5, PropertyType.INT32), TypedValue(5, PropertyType.INT64))

    def test_string_and_json_compare_equal(self):
        assert values_equal(TypedValue('{"a":1}', PropertyType.STRING), TypedValue('{"a":1}', PropertyType.JSON))

    def test_different_types(self):
        assert not values_equal(encode(1), encode(True))
        assert not values_equal(encode(1), encode("1"))

    def test_nulls(self):
        assert values_equal(NULL_VALUE, encode(None))
        assert not values_equal(NULL_VALUE, encode(0))
