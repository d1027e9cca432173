"""Reconcile a local collection list with a remote snapshot.

Two policies exist and a manager is configured with exactly one:

``union``
    Remote wins on id collision; records only present locally survive and
    are scheduled for a push so the remote catches up.  Failure mode: a
    record deleted remotely while this client was offline comes back.

``remote``
    The remote snapshot replaces local state.  Failure mode: records
    created offline and never pushed are lost.
"""

from __future__ import annotations

import copy
from datetime import datetime
from typing import NamedTuple

from cork.core.ids import parse_timestamp

POLICY_UNION = "union"
POLICY_REMOTE = "remote"
VALID_POLICIES: tuple[str, ...] = (POLICY_UNION, POLICY_REMOTE)

KIND_WINES = "wines"
KIND_ARCHIVE = "archive"



class MergeResult(NamedTuple):
    records: list[dict]
    to_push: list[dict]


def sort_by_recency(records: list[dict], field: str) -> list[dict]:
    """Return *records* sorted newest first by *field*.

    The sort is stable, so records with equal timestamps keep their input
    order.  Records with a missing or unparseable timestamp go last.
    """

    dated: list[tuple[datetime, dict]] = []
    undated: list[dict] = []
    for record in records:
        ts = parse_timestamp(record.get(field))
        if ts is None:
            undated.append(record)
        else:
            dated.append((ts, record))
    # sorted(reverse=True) stays stable for equal keys.
    dated.sort(key=lambda pair: pair[0], reverse=True)
    return [record for _, record in dated] + undated


def sort_wines(records: list[dict]) -> list[dict]:
    return sort_by_recency(records, "added_at")


def sort_archive(records: list[dict]) -> list[dict]:
    return sort_by_recency(records, "archived_at")


_SORTERS = {KIND_WINES: sort_wines, KIND_ARCHIVE: sort_archive}


def snapshot_records(snapshot: dict | None) -> list[dict]:
    """Turn a remote ``{id: record}`` map into a list of records.

    The map key is the record's id; an ``id`` field that is missing or
    disagrees with it is overwritten.  Non-dict values are skipped.
    """
    if not snapshot:
        return []
    records: list[dict] = []
    for key, value in snapshot.items():
        if not isinstance(value, dict):
            continue
        record = copy.deepcopy(value)
        record["id"] = str(key)
        records.append(record)
    return records


def union_merge(local: list[dict], remote: list[dict], kind: str = KIND_WINES) -> MergeResult:
    """Union of *remote* and the local-only part of *local*.

    Remote wins on id collision.  Local records whose id is absent remotely
    are kept and returned in ``to_push``.
    """
    merged: dict[str, dict] = {}
    for record in remote:
        merged[record["id"]] = copy.deepcopy(record)

    to_push: list[dict] = []
    for record in local:
        if record["id"] not in merged:
            merged[record["id"]] = copy.deepcopy(record)
            to_push.append(copy.deepcopy(record))

    ordered = _SORTERS[kind](list(merged.values()))
    return MergeResult(ordered, to_push)


def remote_authoritative(remote: list[dict], kind: str = KIND_WINES) -> MergeResult:
    """The remote snapshot, sorted, with nothing to push."""
    ordered = _SORTERS[kind](copy.deepcopy(remote))
    return MergeResult(ordered, [])


def reconcile(policy: str, local: list[dict], remote: list[dict], kind: str) -> MergeResult:
    """Apply the configured reconciliation *policy*."""
    if policy == POLICY_UNION:
        return union_merge(local, remote, kind)
    if policy == POLICY_REMOTE:
        return remote_authoritative(remote, kind)
    raise ValueError(f"Unknown reconciliation policy: {policy!r}")
