"""Tests for cellar commands: add, list, show, edit, qty, delete, stats."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from cork.cli.helpers import resolve_record_id, short_id

# Smallest valid PNG: 1x1 transparent pixel.
_PNG = bytes.fromhex(
    "89504e470d0a1a0a0000000d4948445200000001000000010806000000"
    "1f15c4890000000d49444154789c63000100000500010d0a2db40000000049454e44ae426082"
)


@pytest.fixture()
def label_png(tmp_path: Path) -> Path:
    path = tmp_path / "label.png"
    path.write_bytes(_PNG)
    return path


class TestAdd:
    def test_json(self, invoke_json) -> None:
        parsed, code = invoke_json(
            "add", "Tignanello", "--producer", "Antinori", "--year", "2019",
            "--type", "red", "--boldness", "5", "--price", "80.5", "--quantity", "2",
        )
        assert code == 0
        wine = parsed["data"]
        assert wine["id"].startswith("wine_")
        assert wine["name"] == "Tignanello"
        assert wine["producer"] == "Antinori"
        assert wine["year"] == 2019
        assert wine["boldness"] == 5
        assert wine["tannins"] == 3
        assert wine["price"] == 80.5
        assert wine["quantity"] == 2
        assert wine["has_image"] is False
        assert "image" not in wine

    def test_human(self, invoke) -> None:
        result = invoke("add", "Tignanello", "--producer", "Antinori")
        assert result.exit_code == 0
        assert result.output.startswith("Added Tignanello - Antinori (1 bottle(s)) [")

    def test_quiet_prints_id(self, invoke) -> None:
        result = invoke("add", "Sassicaia", "--quiet")
        assert result.exit_code == 0
        assert result.output.strip().startswith("wine_")

    def test_blank_name_is_rejected(self, invoke_json) -> None:
        parsed, code = invoke_json("add", "   ")
        assert code == 1
        assert parsed["error"]["code"] == "VALIDATION_ERROR"
        assert "name" in parsed["error"]["message"]

    def test_out_of_range_characteristic(self, invoke) -> None:
        result = invoke("add", "Barolo", "--tannins", "7")
        assert result.exit_code == 2

    def test_blank_optional_text_becomes_absent(self, add_wine) -> None:
        wine = add_wine("Barolo", "--region", "  ")
        assert wine["region"] is None

    def test_image_is_embedded(self, add_wine, invoke_json, label_png: Path) -> None:
        wine = add_wine("Barolo", "--image", str(label_png))
        assert wine["has_image"] is True

        parsed, _ = invoke_json("show", wine["id"])
        assert parsed["data"]["image"].startswith("data:image/png;base64,")

    def test_non_image_file(self, invoke_json, tmp_path: Path) -> None:
        notes = tmp_path / "notes.txt"
        notes.write_text("not a photo")
        parsed, code = invoke_json("add", "Barolo", "--image", str(notes))
        assert code == 1
        assert parsed["error"]["code"] == "VALIDATION_ERROR"
        assert "Not an image file" in parsed["error"]["message"]


class TestList:
    def test_empty(self, invoke) -> None:
        result = invoke("list")
        assert result.exit_code == 0
        assert "Your cellar is empty" in result.output

    def test_newest_first(self, add_wine, invoke_json) -> None:
        first = add_wine("Barolo")
        second = add_wine("Chablis", "--type", "white")
        parsed, code = invoke_json("list")
        assert code == 0
        assert [w["id"] for w in parsed["data"]] == [second["id"], first["id"]]

    def test_human_summary(self, add_wine, invoke) -> None:
        add_wine("Barolo", "--quantity", "2")
        add_wine("Chablis", "--type", "white")
        result = invoke("list")
        assert "2 wine(s), 3 bottle(s)" in result.output
        assert "Chablis" in result.output

    def test_search(self, add_wine, invoke_json, invoke) -> None:
        add_wine("Barolo", "--grape", "Nebbiolo")
        add_wine("Chablis", "--grape", "Chardonnay")

        parsed, _ = invoke_json("list", "--search", "nebb")
        assert [w["name"] for w in parsed["data"]] == ["Barolo"]

        result = invoke("list", "--search", "merlot")
        assert "No wines match." in result.output


class TestShow:
    def test_by_full_id_and_suffix(self, add_wine, invoke_json) -> None:
        wine = add_wine("Barolo")
        by_id, _ = invoke_json("show", wine["id"])
        by_suffix, _ = invoke_json("show", short_id(wine["id"]).lower())
        assert by_id["data"] == by_suffix["data"]
        assert by_id["data"]["added_at"].endswith("Z")

    def test_human(self, add_wine, invoke) -> None:
        wine = add_wine("Barolo", "--producer", "Vietti", "--price", "45")
        result = invoke("show", wine["id"])
        assert result.exit_code == 0
        assert "Barolo - Vietti" in result.output
        assert "45.00" in result.output
        assert "boldness 3/5" in result.output

    def test_not_found(self, invoke_json) -> None:
        parsed, code = invoke_json("show", "wine_NOPE")
        assert code == 1
        assert parsed["error"]["code"] == "NOT_FOUND"


class TestResolveRecordId:
    _RECORDS = [
        {"id": "wine_01AAAAAAAAAAAAAAAAAAAA1234"},
        {"id": "wine_01BBBBBBBBBBBBBBBBBBBB1234"},
    ]

    def test_unique_suffix(self) -> None:
        assert resolve_record_id(self._RECORDS, "aaaa1234", False) == self._RECORDS[0]["id"]

    def test_ambiguous_suffix(self, capsys) -> None:
        with pytest.raises(SystemExit):
            resolve_record_id(self._RECORDS, "1234", True)
        assert json.loads(capsys.readouterr().out)["error"]["code"] == "AMBIGUOUS_ID"

    def test_short_suffix_is_not_matched(self, capsys) -> None:
        with pytest.raises(SystemExit):
            resolve_record_id(self._RECORDS, "234", True)
        assert json.loads(capsys.readouterr().out)["error"]["code"] == "NOT_FOUND"


class TestEdit:
    def test_only_given_fields_change(self, add_wine, invoke_json) -> None:
        wine = add_wine("Barolo", "--producer", "Vietti", "--price", "45")
        parsed, code = invoke_json(
            "edit", wine["id"], "--price", "50", "--name", "Barolo Castiglione"
        )
        assert code == 0
        edited = parsed["data"]
        assert edited["id"] == wine["id"]
        assert edited["added_at"] == wine["added_at"]
        assert edited["price"] == 50
        assert edited["name"] == "Barolo Castiglione"
        assert edited["producer"] == "Vietti"

    def test_clear_image(self, add_wine, invoke_json, label_png: Path) -> None:
        wine = add_wine("Barolo", "--image", str(label_png))
        parsed, _ = invoke_json("edit", wine["id"], "--clear-image")
        assert parsed["data"]["has_image"] is False

    def test_nothing_to_change(self, add_wine, invoke_json) -> None:
        wine = add_wine("Barolo")
        parsed, code = invoke_json("edit", wine["id"])
        assert code == 1
        assert parsed["error"]["code"] == "VALIDATION_ERROR"


class TestQty:
    def test_increment_and_decrement(self, add_wine, invoke_json) -> None:
        wine = add_wine("Barolo")
        parsed, _ = invoke_json("qty", wine["id"], "+2")
        assert parsed["data"]["quantity"] == 3
        parsed, _ = invoke_json("qty", wine["id"], "-1")
        assert parsed["data"]["quantity"] == 2

    def test_never_below_one(self, add_wine, invoke_json) -> None:
        wine = add_wine("Barolo", "--quantity", "2")
        parsed, code = invoke_json("qty", wine["id"], "-5")
        assert code == 0
        assert parsed["data"]["quantity"] == 2
        parsed, _ = invoke_json("qty", wine["id"], "-1")
        parsed, _ = invoke_json("qty", wine["id"], "-1")
        assert parsed["data"]["quantity"] == 1

    def test_quiet_prints_count(self, add_wine, invoke) -> None:
        wine = add_wine("Barolo")
        result = invoke("qty", wine["id"], "+1", "--quiet")
        assert result.output.strip() == "2"


class TestDelete:
    def test_delete(self, add_wine, invoke_json, invoke) -> None:
        wine = add_wine("Barolo")
        parsed, code = invoke_json("delete", wine["id"])
        assert code == 0
        assert parsed["data"] == {"id": wine["id"], "remote_confirmed": True}
        assert "Your cellar is empty" in invoke("list").output

    def test_delete_missing(self, invoke_json) -> None:
        parsed, code = invoke_json("delete", "wine_MISSING")
        assert code == 1
        assert parsed["error"]["code"] == "NOT_FOUND"


class TestStats:
    def test_counts(self, add_wine, invoke_json) -> None:
        add_wine("Barolo", "--quantity", "3")
        add_wine("Chablis", "--type", "white")
        finished = add_wine("Brut", "--type", "sparkling")
        invoke_json("archive", finished["id"], "--rating", "4", "--rebuy", "yes")

        parsed, code = invoke_json("stats")
        assert code == 0
        summary = parsed["data"]
        assert summary["wines"] == 2
        assert summary["total_bottles"] == 4
        assert summary["bottles_by_type"]["red"] == 3
        assert summary["bottles_by_type"]["white"] == 1
        assert summary["archived"] == 1
        assert summary["average_rating"] == 4
        assert summary["rebuy"] == {"yes": 1, "maybe": 0, "no": 0}

    def test_human(self, add_wine, invoke) -> None:
        add_wine("Barolo", "--quantity", "3")
        result = invoke("stats")
        assert "Wines: 1 (3 bottles)" in result.output
