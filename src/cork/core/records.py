"""Catalog and archive record construction and validation.

Records are plain JSON-compatible dicts.  The same dict shape is written to
the local cache and to the remote store, so nothing here may hold
non-serializable values.
"""

from __future__ import annotations

import copy
from typing import TypedDict

WINE_TYPES: tuple[str, ...] = ("red", "white", "rosé", "sparkling", "dessert")
REBUY_OPTIONS: tuple[str, ...] = ("yes", "maybe", "no")
CHARACTERISTICS: tuple[str, ...] = ("boldness", "tannins", "acidity")

# Fields a user (or the label recognizer) may set on a catalog record.
DESCRIPTIVE_FIELDS: tuple[str, ...] = (
    "name",
    "producer",
    "type",
    "year",
    "region",
    "grape",
    "boldness",
    "tannins",
    "acidity",
    "price",
    "quantity",
    "store",
    "notes",
    "image",
)

# Fields added when a catalog record moves to the archive.
ARCHIVE_FIELDS: tuple[str, ...] = ("rating", "rebuy", "archive_notes", "archived_at")

_DEFAULTS: dict[str, object] = {
    "producer": None,
    "type": "red",
    "year": None,
    "region": None,
    "grape": None,
    "boldness": 3,
    "tannins": 3,
    "acidity": 3,
    "price": None,
    "quantity": 1,
    "store": None,
    "notes": None,
    "image": None,
}


class WineRecord(TypedDict, total=False):
    id: str
    name: str
    producer: str | None
    type: str
    year: int | None
    region: str | None
    grape: str | None
    boldness: int
    tannins: int
    acidity: int
    price: float | None
    quantity: int
    store: str | None
    notes: str | None
    image: str | None
    added_at: str


class ArchiveRecord(WineRecord, total=False):
    rating: int
    rebuy: str | None
    archive_notes: str | None
    archived_at: str


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_wine(record: dict) -> list[str]:
    """Return a list of problems with *record*'s descriptive fields.

    An empty list means the record is acceptable as a catalog record.
    """
    problems: list[str] = []

    name = record.get("name")
    if not isinstance(name, str) or not name.strip():
        problems.append("name must be a non-empty string")

    if record.get("type") not in WINE_TYPES:
        problems.append(f"type must be one of: {', '.join(WINE_TYPES)}")

    for field in CHARACTERISTICS:
        value = record.get(field)
        if not _is_int(value) or not 1 <= value <= 5:
            problems.append(f"{field} must be an integer from 1 to 5")

    quantity = record.get("quantity")
    if not _is_int(quantity) or quantity < 1:
        problems.append("quantity must be an integer of at least 1")

    year = record.get("year")
    if year is not None and not _is_int(year):
        problems.append("year must be an integer or absent")

    price = record.get("price")
    if price is not None and (
        isinstance(price, bool) or not isinstance(price, (int, float)) or price < 0
    ):
        problems.append("price must be a non-negative number or absent")

    for field in ("producer", "region", "grape", "store", "notes", "image"):
        value = record.get(field)
        if value is not None and not isinstance(value, str):
            problems.append(f"{field} must be a string or absent")

    return problems


def validate_archive_fields(rating: object, rebuy: object) -> list[str]:
    """Return a list of problems with the archive-confirm inputs."""
    problems: list[str] = []
    if not _is_int(rating) or not 0 <= rating <= 5:
        problems.append("rating must be an integer from 0 to 5")
    if rebuy is not None and rebuy not in REBUY_OPTIONS:
        problems.append(f"rebuy must be one of: {', '.join(REBUY_OPTIONS)}")
    return problems


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def _descriptive(fields: dict) -> dict:
    """Pick the descriptive fields out of *fields*, filling defaults."""
    record: dict = {}
    for field in DESCRIPTIVE_FIELDS:
        if field in fields:
            record[field] = copy.deepcopy(fields[field])
        elif field in _DEFAULTS:
            record[field] = _DEFAULTS[field]
    return record


def new_wine(fields: dict, *, wine_id: str, added_at: str) -> WineRecord:
    """Build a brand-new catalog record from user-supplied *fields*.

    Unknown keys in *fields* are ignored; ``id`` and ``added_at`` always
    come from the caller, never from *fields*.
    """
    record = _descriptive(fields)
    record["id"] = wine_id
    record["added_at"] = added_at
    return record  # type: ignore[return-value]


def replace_wine(existing: dict, fields: dict) -> WineRecord:
    """Full-record replace of *existing*, keeping its ``id`` and ``added_at``."""
    record = _descriptive(fields)
    record["id"] = existing["id"]
    record["added_at"] = existing["added_at"]
    return record  # type: ignore[return-value]


def make_archive_record(
    wine: dict,
    *,
    rating: int,
    rebuy: str | None,
    archive_notes: str | None,
    archived_at: str,
) -> ArchiveRecord:
    """Copy *wine* into a new archive record.

    The archive record is a deep copy: later changes to *wine* never leak
    into it.
    """
    record = copy.deepcopy(wine)
    record["rating"] = rating
    record["rebuy"] = rebuy
    record["archive_notes"] = archive_notes or None
    record["archived_at"] = archived_at
    return record  # type: ignore[return-value]


def make_restored_wine(archived: dict, *, wine_id: str, added_at: str) -> WineRecord:
    """Build a fresh catalog record from an archive record.

    The restored wine gets a new ID, a new ``added_at`` and a single bottle;
    archive-only fields are dropped.
    """
    fields = {k: v for k, v in archived.items() if k in DESCRIPTIVE_FIELDS}
    fields["quantity"] = 1
    return new_wine(fields, wine_id=wine_id, added_at=added_at)


def strip_images(records: list[dict]) -> list[dict]:
    """Return copies of *records* with every embedded image removed."""
    stripped = []
    for record in records:
        clone = dict(record)
        if clone.get("image") is not None:
            clone["image"] = None
        stripped.append(clone)
    return stripped


def compact_wine(record: dict) -> dict:
    """Return a list-view copy of *record* without the embedded image."""
    result = {k: v for k, v in record.items() if k != "image"}
    result["has_image"] = bool(record.get("image"))
    return result


def display_name(record: dict) -> str:
    """Return ``"<name> - <producer>"``, or just the name without a producer."""
    name = record.get("name") or "Unknown"
    producer = record.get("producer")
    return f"{name} - {producer}" if producer else name
