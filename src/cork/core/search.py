"""Search, filtering and cellar statistics."""

from __future__ import annotations

from cork.core.collection import Collection
from cork.core.records import REBUY_OPTIONS, WINE_TYPES

_WINE_SEARCH_FIELDS: tuple[str, ...] = ("name", "producer", "region", "grape")
_ARCHIVE_SEARCH_FIELDS: tuple[str, ...] = ("name", "producer", "region", "grape", "store")


def _matches(record: dict, query: str, fields: tuple[str, ...]) -> bool:
    haystack = " ".join(str(record.get(f) or "") for f in fields).lower()
    return query in haystack


def filter_wines(wines: list[dict], query: str | None) -> list[dict]:
    """Case-insensitive substring search over name, producer, region and grape."""
    q = (query or "").strip().lower()
    if not q:
        return list(wines)
    return [w for w in wines if _matches(w, q, _WINE_SEARCH_FIELDS)]


def filter_archive(
    archive: list[dict],
    query: str | None = None,
    wine_type: str | None = None,
    rebuy: str | None = None,
) -> list[dict]:
    """Filter archive records by type, rebuy decision and free-text query."""
    q = (query or "").strip().lower()
    result: list[dict] = []
    for record in archive:
        if wine_type and record.get("type") != wine_type:
            continue
        if rebuy and record.get("rebuy") != rebuy:
            continue
        if q and not _matches(record, q, _ARCHIVE_SEARCH_FIELDS):
            continue
        result.append(record)
    return result


def total_bottles(wines: list[dict]) -> int:
    """Sum of bottle quantities across the active collection."""
    return sum(int(w.get("quantity") or 0) for w in wines)


def collection_stats(collection: Collection) -> dict:
    """Summary numbers for ``cork stats``."""
    by_type = {t: 0 for t in WINE_TYPES}
    for wine in collection.wines:
        wine_type = wine.get("type")
        if wine_type in by_type:
            by_type[wine_type] += int(wine.get("quantity") or 0)

    ratings = [r["rating"] for r in collection.archive if r.get("rating")]
    rebuy = {option: 0 for option in REBUY_OPTIONS}
    for record in collection.archive:
        if record.get("rebuy") in rebuy:
            rebuy[record["rebuy"]] += 1

    return {
        "wines": len(collection.wines),
        "total_bottles": total_bottles(collection.wines),
        "bottles_by_type": by_type,
        "archived": len(collection.archive),
        "average_rating": round(sum(ratings) / len(ratings), 2) if ratings else None,
        "rebuy": rebuy,
    }
