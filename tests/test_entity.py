"""Tests for DictionaryTableEntity."""

from __future__ import annotations

import pytest

from azstore.core.storage.codec import PropertyType, TypedValue, encode
from azstore.core.storage.entity import DeclaredProperty, DictionaryTableEntity, copy_entries
from azstore.core.storage.errors import (
    DuplicateKeyError,
    EntryNotFoundError,
    InvalidArgumentError,
    TypeConversionError,
)
from azstore.core.storage.table import TableRow


class Customer(DictionaryTableEntity):
    declared_properties = (
        DeclaredProperty("Name", str, "name"),
        DeclaredProperty("Age", int, "age"),
    )

    def __init__(self, partition_key=None, row_key=None):
        super().__init__(partition_key, row_key)
        self.name = ""
        self.age = 0


class TestBag:
    """Test suite for dynamic property access."""

    def test_set_and_get(self):
        entity = DictionaryTableEntity("p", "r")
        entity["color"] = "blue"
        assert entity["color"] == "blue"
        assert "color" in entity
        assert len(entity) == 1

    def test_missing_key(self):
        entity = DictionaryTableEntity()
        with pytest.raises(EntryNotFoundError):
            entity["missing"]
        with pytest.raises(KeyError):
            entity["missing"]

    def test_add_duplicate(self):
        entity = DictionaryTableEntity()
        entity.add("k", 1)
        with pytest.raises(DuplicateKeyError):
            entity.add("k", 2)
        assert entity["k"] == 1

    def test_add_or_update(self):
        entity = DictionaryTableEntity()
        entity.add_or_update("k", 1).add_or_update("k", 2)
        assert entity["k"] == 2

    def test_remove(self):
        entity = DictionaryTableEntity()
        entity["k"] = 1
        assert entity.remove("k") is True
        assert entity.remove("k") is False
        assert not entity.contains_key("k")

    def test_remove_then_readd(self):
        entity = DictionaryTableEntity()
        entity.add("k", 1)
        entity.remove("k")
        entity.add("k", 2)
        assert entity["k"] == 2

    def test_del(self):
        entity = DictionaryTableEntity()
        entity["k"] = 1
        del entity["k"]
        with pytest.raises(EntryNotFoundError):
            del entity["k"]

    def test_entries(self):
        entity = DictionaryTableEntity()
        entity["a"] = 1
        entity["b"] = {"x": [1, 2]}
        assert entity.contains_entry("a", 1)
        assert not entity.contains_entry("a", 2)
        assert not entity.contains_entry("a", True)
        assert entity.contains_entry("b", {"x": [1, 2]})

    def test_remove_entry(self):
        entity = DictionaryTableEntity()
        entity["a"] = 1
        assert entity.remove_entry("a", 2) is False
        assert entity.remove_entry("a", 1) is True
        assert "a" not in entity

    def test_snapshots_allow_mutation_while_iterating(self):
        entity = DictionaryTableEntity()
        entity["a"] = 1
        entity["b"] = 2
        for key in entity:
            del entity[key]
        assert len(entity) == 0

    def test_keys_values_items(self):
        entity = DictionaryTableEntity()
        entity["a"] = 1
        entity["b"] = "two"
        assert sorted(entity.keys()) == ["a", "b"]
        assert sorted(entity.items()) == [("a", 1), ("b", "two")]
        assert set(entity.values()) == {1, "two"}

    def test_clear(self):
        entity = DictionaryTableEntity()
        entity["a"] = 1
        entity.clear()
        assert entity.keys() == []


class TestGetValue:
    """Test suite for typed reads."""

    def test_typed_read(self):
        entity = DictionaryTableEntity()
        entity["n"] = 5
        entity["doc"] = {"a": 1}
        assert entity.get_value("n", int) == 5
        assert entity.get_value("doc", dict) == {"a": 1}

    def test_conversion_error(self):
        entity = DictionaryTableEntity()
        entity["n"] = 5
        with pytest.raises(TypeConversionError):
            entity.get_value("n", str)

    def test_defaults_when_not_throwing(self):
        entity = DictionaryTableEntity()
        entity["n"] = 5
        assert entity.get_value("n", str, throw_on_error=False, default="x") == "x"
        assert entity.get_value("missing", int, throw_on_error=False, default=-1) == -1

    def test_missing_raises(self):
        with pytest.raises(EntryNotFoundError):
            DictionaryTableEntity().get_value("missing")


class TestDeclaredProperties:
    """Test suite for declared property handling."""

    def test_declared_names_route_to_attributes(self):
        customer = Customer()
        customer["Name"] = "Ada"
        assert customer.name == "Ada"
        assert "Name" not in customer.keys()

    def test_getitem_falls_back_to_declared(self):
        customer = Customer()
        customer.age = 36
        assert customer["Age"] == 36
        assert customer.get_value("Age", int) == 36

    def test_add_rejects_declared_names(self):
        with pytest.raises(DuplicateKeyError):
            Customer().add("Name", "x")

    def test_read_entity_keeps_bag_disjoint(self):
        row = TableRow(
            "p",
            "r",
            {
                "Name": encode("Ada"),
                "Age": encode(36),
                "Team": encode("core"),
            },
        )
        customer = Customer.from_row(row)
        assert customer.partition_key == "p"
        assert customer.row_key == "r"
        assert customer.name == "Ada"
        assert customer.age == 36
        assert customer.keys() == ["Team"]

    def test_read_entity_does_not_mutate_row(self):
        row = TableRow("p", "r", {"Name": encode("Ada"), "Team": encode("core")})
        Customer.from_row(row)
        assert "Name" in row

    def test_write_entity_includes_declared(self):
        customer = Customer("p", "r")
        customer.name = "Ada"
        customer["Team"] = "core"
        written = customer.write_entity()
        assert written["Name"] == TypedValue("Ada", PropertyType.STRING)
        assert written["Age"] == TypedValue(0, PropertyType.INT32)
        assert written["Team"] == TypedValue("core", PropertyType.STRING)

    def test_to_row(self):
        customer = Customer("p", "r")
        row = customer.to_row()
        assert (row.partition_key, row.row_key) == ("p", "r")
        assert set(row.properties) == {"Name", "Age"}


class TestCopyTo:
    """Test suite for copying entries into a list."""

    def test_copy(self):
        entity = DictionaryTableEntity()
        entity["a"] = 1
        target = [None, None]
        entity.copy_to(target, 1)
        assert target == [None, ("a", 1)]

    def test_too_small_leaves_target_untouched(self):
        target = ["x"]
        with pytest.raises(InvalidArgumentError):
            copy_entries([("a", 1), ("b", 2)], target, 0)
        assert target == ["x"]

    def test_index_out_of_range(self):
        with pytest.raises(InvalidArgumentError):
            copy_entries([], [None], 2)
        with pytest.raises(InvalidArgumentError):
            copy_entries([], [None], -1)
