"""Tests for the Collection aggregate and its cache serialization."""

from __future__ import annotations

import json

import pytest

from cork.core.collection import Collection, serialize_collection


def _sample() -> Collection:
    return Collection(
        wines=[{"id": "w1", "name": "Rosé", "type": "rosé", "quantity": 2}],
        archive=[{"id": "a1", "name": "Old", "rating": 4}],
    )


class TestCollection:
    def test_lookups(self) -> None:
        collection = _sample()
        assert collection.find_wine("w1")["name"] == "Rosé"
        assert collection.find_wine("a1") is None
        assert collection.find_archived("a1")["rating"] == 4
        assert collection.wine_index("w1") == 0
        assert collection.wine_index("missing") == -1

    def test_snapshot_is_deep(self) -> None:
        collection = _sample()
        copy = collection.snapshot()
        copy.wines[0]["quantity"] = 99
        assert collection.wines[0]["quantity"] == 2
        assert copy != collection

    def test_serialization_round_trip(self) -> None:
        collection = _sample()
        text = serialize_collection(collection)
        assert "rosé" in text  # stored as UTF-8, not escaped
        data = json.loads(text)
        assert data["schema_version"] == 1
        assert Collection.from_dict(data) == collection


class TestFromDict:
    def test_wrong_shape(self) -> None:
        with pytest.raises(ValueError):
            Collection.from_dict([])
        with pytest.raises(ValueError):
            Collection.from_dict({"wines": {}, "archive": []})

    def test_missing_lists_are_empty(self) -> None:
        assert Collection.from_dict({}) == Collection()

    def test_malformed_and_duplicate_entries_dropped(self) -> None:
        data = {
            "wines": [{"id": "w1"}, {"name": "no id"}, "junk", {"id": "w1", "name": "dupe"}],
            "archive": [],
        }
        collection = Collection.from_dict(data)
        assert collection.wines == [{"id": "w1"}]
