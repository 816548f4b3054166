"""Tests for nested value copying."""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import UUID

import pytest

from hydrator.copying import InvalidArgumentError, deep_copy


class TestDeepCopy:
    """Tests for deep_copy."""

    def test_nested_list_mutation_not_visible_on_original(self) -> None:
        original = {"a": {"b": [1, 2, 3]}}
        copied = deep_copy(original)

        copied["a"]["b"][0] = 99

        assert original["a"]["b"][0] == 1

    def test_original_mutation_not_visible_on_copy(self) -> None:
        original = {"a": [{"b": {"c": "x"}}]}
        copied = deep_copy(original)

        original["a"][0]["b"]["c"] = "changed"

        assert copied["a"][0]["b"]["c"] == "x"

    def test_no_container_shared_at_any_depth(self) -> None:
        original = {"rules": [{"actions": [{"type": "block"}]}], "tags": ["0"]}
        copied = deep_copy(original)

        assert copied == original
        assert copied is not original
        assert copied["rules"] is not original["rules"]
        assert copied["rules"][0] is not original["rules"][0]
        assert copied["rules"][0]["actions"] is not original["rules"][0]["actions"]
        assert copied["rules"][0]["actions"][0] is not original["rules"][0]["actions"][0]
        assert copied["tags"] is not original["tags"]

    def test_none_rejected(self) -> None:
        with pytest.raises(InvalidArgumentError):
            deep_copy(None)

    def test_invalid_argument_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            deep_copy(None)

    def test_empty_mapping_copies_to_empty_mapping(self) -> None:
        original: dict = {}
        copied = deep_copy(original)

        assert copied == {}
        assert isinstance(copied, dict)
        assert copied is not original

    def test_empty_list_copies_to_empty_list(self) -> None:
        original: list = []
        copied = deep_copy(original)

        assert copied == []
        assert copied is not original

    def test_nested_empty_containers_preserved(self) -> None:
        assert deep_copy({"a": {}, "b": []}) == {"a": {}, "b": []}

    def test_nested_null_copied(self) -> None:
        assert deep_copy({"notificationTemplateId": None}) == {"notificationTemplateId": None}

    def test_scalars_returned_by_value(self) -> None:
        when = datetime(2024, 1, 1, tzinfo=UTC)
        ident = UUID("12345678-1234-1234-1234-123456789012")
        original = {"when": when, "id": ident, "n": 3, "f": 1.5, "on": True, "s": "x"}

        copied = deep_copy(original)

        assert copied == original
        assert copied["when"] == when
        assert copied["id"] == ident

    def test_key_order_preserved(self) -> None:
        original = {"z": 1, "a": 2, "m": 3}
        assert list(deep_copy(original)) == ["z", "a", "m"]

    def test_tuples_and_sets(self) -> None:
        original = {"pair": (1, [2]), "set": {1, 2}}
        copied = deep_copy(original)

        assert copied == original
        assert copied["pair"][1] is not original["pair"][1]
        assert copied["set"] is not original["set"]

    def test_unsupported_type_rejected(self) -> None:
        with pytest.raises(TypeError):
            deep_copy({"obj": object()})
