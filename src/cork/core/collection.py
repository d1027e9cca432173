"""The in-memory collection aggregate: active wines plus the archive."""

from __future__ import annotations

import copy
import json
import logging

logger = logging.getLogger(__name__)

COLLECTION_SCHEMA_VERSION = 1


class Collection:
    """Ordered catalog records and ordered archive records.

    Only :class:`cork.manager.CollectionManager` mutates a collection.
    Everything else receives a copy via :meth:`snapshot` or
    :meth:`to_dict`.
    """

    def __init__(
        self,
        wines: list[dict] | None = None,
        archive: list[dict] | None = None,
    ) -> None:
        self.wines: list[dict] = list(wines or [])
        self.archive: list[dict] = list(archive or [])

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Collection):
            return NotImplemented
        return self.wines == other.wines and self.archive == other.archive

    def __repr__(self) -> str:
        return f"Collection(wines={len(self.wines)}, archive={len(self.archive)})"

    # -- lookup --------------------------------------------------------------

    def find_wine(self, wine_id: str) -> dict | None:
        for wine in self.wines:
            if wine.get("id") == wine_id:
                return wine
        return None

    def find_archived(self, archive_id: str) -> dict | None:
        for record in self.archive:
            if record.get("id") == archive_id:
                return record
        return None

    def wine_index(self, wine_id: str) -> int:
        """Return the list index of *wine_id*, or ``-1``."""
        for index, wine in enumerate(self.wines):
            if wine.get("id") == wine_id:
                return index
        return -1

    # -- copies & serialization ---------------------------------------------

    def snapshot(self) -> Collection:
        """Return a deep copy safe to hand to persistence or listeners."""
        return Collection(copy.deepcopy(self.wines), copy.deepcopy(self.archive))

    def to_dict(self) -> dict:
        return {
            "schema_version": COLLECTION_SCHEMA_VERSION,
            "wines": copy.deepcopy(self.wines),
            "archive": copy.deepcopy(self.archive),
        }

    @classmethod
    def from_dict(cls, data: object) -> Collection:
        """Build a collection from a parsed cache blob.

        Raises ``ValueError`` when *data* does not have the collection shape.
        Individual malformed entries are dropped with a warning.
        """
        if not isinstance(data, dict):
            raise ValueError("collection blob must be a JSON object")
        wines = data.get("wines", [])
        archive = data.get("archive", [])
        if not isinstance(wines, list) or not isinstance(archive, list):
            raise ValueError("'wines' and 'archive' must be lists")
        return cls(_clean_records(wines, "wines"), _clean_records(archive, "archive"))


def serialize_collection(collection: Collection) -> str:
    """Pretty-print a collection as sorted JSON with trailing newline."""
    return json.dumps(collection.to_dict(), sort_keys=True, indent=2, ensure_ascii=False) + "\n"


def _clean_records(records: list, label: str) -> list[dict]:
    cleaned: list[dict] = []
    seen: set[str] = set()
    for entry in records:
        if not isinstance(entry, dict) or not isinstance(entry.get("id"), str):
            logger.warning("Dropping malformed %s entry from cache: %r", label, entry)
            continue
        if entry["id"] in seen:
            logger.warning("Dropping duplicate %s entry %s from cache", label, entry["id"])
            continue
        seen.add(entry["id"])
        cleaned.append(entry)
    return cleaned
