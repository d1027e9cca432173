"""The collection manager: sole owner and mutator of the cellar.

Every local mutation follows the same path::

    mutate in-memory collection -> save local cache -> push to remote (gated)

and every inbound remote snapshot is funnelled through
:meth:`CollectionManager._on_snapshot`, which ignores echoes while the
gate is engaged.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Callable

from cork.core.collection import Collection
from cork.core.config import DEFAULT_GRACE_SECONDS
from cork.core.errors import (
    ArchiveRecordNotFoundError,
    RemoteError,
    ValidationError,
    WineNotFoundError,
)
from cork.core.ids import generate_wine_id, utc_now
from cork.core.merge import (
    KIND_ARCHIVE,
    KIND_WINES,
    POLICY_UNION,
    VALID_POLICIES,
    reconcile,
    remote_authoritative,
    snapshot_records,
)
from cork.core.records import (
    make_archive_record,
    make_restored_wine,
    new_wine,
    replace_wine,
    validate_archive_fields,
    validate_wine,
)
from cork.storage.cache import LocalCacheStore
from cork.sync.channel import RemoteChannel, Subscription, collection_path
from cork.sync.gate import EchoSuppressionGate

logger = logging.getLogger(__name__)

STATUS_LOCAL = "local"
STATUS_CONNECTING = "connecting"
STATUS_SYNCED = "synced"
STATUS_SYNCING = "syncing"
STATUS_ERROR = "error"
STATUS_DISCONNECTED = "disconnected"

STATUS_LABELS: dict[str, str] = {
    STATUS_LOCAL: "Local storage only",
    STATUS_CONNECTING: "Connecting...",
    STATUS_SYNCED: "Cloud sync",
    STATUS_SYNCING: "Syncing...",
    STATUS_ERROR: "Sync error - changes saved locally",
    STATUS_DISCONNECTED: "Offline - changes saved locally",
}

CollectionListener = Callable[[Collection], None]


class CollectionManager:
    """Owns the :class:`Collection` and funnels every change through it."""

    def __init__(
        self,
        cache: LocalCacheStore,
        *,
        policy: str = POLICY_UNION,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        clock: Callable[[], str] = utc_now,
        id_factory: Callable[[], str] = generate_wine_id,
    ) -> None:
        if policy not in VALID_POLICIES:
            raise ValueError(f"Unknown reconciliation policy: {policy!r}")
        self.cache = cache
        self.policy = policy
        self.gate = EchoSuppressionGate(grace_seconds)
        self.collection = Collection()
        self.status = STATUS_LOCAL
        self.last_save_result: str | None = None
        self.channel: RemoteChannel | None = None
        self.identity: str | None = None
        self._clock = clock
        self._new_id = id_factory
        self._subscriptions: list[Subscription] = []
        self._reconciled: set[str] = set()
        self._settled: set[str] = set()
        self._synced: asyncio.Event | None = None
        self._attach_token = 0
        self._listeners: list[CollectionListener] = []

    # ------------------------------------------------------------------
    # Local cache
    # ------------------------------------------------------------------

    def load(self) -> Collection:
        """Replace in-memory state with the cached collection."""
        self.collection = self.cache.load()
        self._notify()
        return self.collection.snapshot()

    def use_cache(self, cache: LocalCacheStore) -> None:
        """Switch to another identity's cache and load it."""
        self.cache = cache
        self.load()

    def clear(self) -> None:
        """Drop all in-memory records without touching any cache."""
        self.collection = Collection()
        self._notify()

    def _persist(self) -> None:
        self.last_save_result = self.cache.save(self.collection)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def wines(self) -> list[dict]:
        return copy.deepcopy(self.collection.wines)

    @property
    def archive(self) -> list[dict]:
        return copy.deepcopy(self.collection.archive)

    @property
    def remote_enabled(self) -> bool:
        return self.channel is not None and self.identity is not None

    def snapshot(self) -> Collection:
        return self.collection.snapshot()

    def get_wine(self, wine_id: str) -> dict:
        wine = self.collection.find_wine(wine_id)
        if wine is None:
            raise WineNotFoundError(wine_id)
        return copy.deepcopy(wine)

    def get_archived(self, archive_id: str) -> dict:
        record = self.collection.find_archived(archive_id)
        if record is None:
            raise ArchiveRecordNotFoundError(archive_id)
        return copy.deepcopy(record)

    def add_listener(self, fn: CollectionListener) -> None:
        """Register *fn* to receive a collection copy after every change."""
        self._listeners.append(fn)

    def remove_listener(self, fn: CollectionListener) -> None:
        try:
            self._listeners.remove(fn)
        except ValueError:
            pass

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.collection.snapshot()
        for fn in list(self._listeners):
            try:
                fn(snapshot)
            except Exception:
                logger.exception("Collection listener failed")

    # ------------------------------------------------------------------
    # Mutations: active collection
    # ------------------------------------------------------------------

    async def add_wine(self, fields: dict) -> dict:
        """Create a catalog record from *fields* and put it at the front."""
        record = new_wine(fields, wine_id=self._new_id(), added_at=self._clock())
        problems = validate_wine(record)
        if problems:
            raise ValidationError(problems)

        self.collection.wines.insert(0, record)
        self._persist()
        self._notify()
        await self._push(KIND_WINES, [record])
        return copy.deepcopy(record)

    async def update_wine(self, wine_id: str, fields: dict) -> dict:
        """Replace the record *wine_id* with *fields*, keeping id and added_at."""
        index = self.collection.wine_index(wine_id)
        if index < 0:
            raise WineNotFoundError(wine_id)
        record = replace_wine(self.collection.wines[index], fields)
        problems = validate_wine(record)
        if problems:
            raise ValidationError(problems)

        self.collection.wines[index] = record
        self._persist()
        self._notify()
        await self._push(KIND_WINES, [record])
        return copy.deepcopy(record)

    async def adjust_quantity(self, wine_id: str, delta: int) -> dict:
        """Add *delta* bottles.  A result below one bottle is a no-op."""
        wine = self.collection.find_wine(wine_id)
        if wine is None:
            raise WineNotFoundError(wine_id)
        new_quantity = wine["quantity"] + delta
        if new_quantity < 1 or delta == 0:
            return copy.deepcopy(wine)

        wine["quantity"] = new_quantity
        self._persist()
        self._notify()
        await self._push(KIND_WINES, [wine])
        return copy.deepcopy(wine)

    async def delete_wine(self, wine_id: str) -> bool:
        """Remove *wine_id* without archiving it.

        Returns whether the remote delete was confirmed (``True`` when no
        remote is attached).
        """
        if self.collection.find_wine(wine_id) is None:
            raise WineNotFoundError(wine_id)

        async with self.gate.hold():
            self.collection.wines = [w for w in self.collection.wines if w["id"] != wine_id]
            self._persist()
            self._notify()
            return await self._remote_delete(KIND_WINES, wine_id)

    # ------------------------------------------------------------------
    # Mutations: archive
    # ------------------------------------------------------------------

    async def archive_wine(
        self,
        wine_id: str,
        *,
        rating: int = 0,
        rebuy: str | None = None,
        archive_notes: str | None = None,
    ) -> dict:
        """Move *wine_id* to the archive with a rating and rebuy decision."""
        wine = self.collection.find_wine(wine_id)
        if wine is None:
            raise WineNotFoundError(wine_id)
        problems = validate_archive_fields(rating, rebuy)
        if problems:
            raise ValidationError(problems)

        record = make_archive_record(
            wine,
            rating=rating,
            rebuy=rebuy,
            archive_notes=(archive_notes or "").strip() or None,
            archived_at=self._clock(),
        )

        async with self.gate.hold():
            self.collection.archive = [
                r for r in self.collection.archive if r["id"] != record["id"]
            ]
            self.collection.archive.insert(0, record)
            self.collection.wines = [w for w in self.collection.wines if w["id"] != wine_id]
            self._persist()
            self._notify()
            await self._push(KIND_ARCHIVE, [record])
            await self._remote_delete(KIND_WINES, wine_id)
        return copy.deepcopy(record)

    async def restore_wine(self, archive_id: str) -> dict:
        """Put an archived wine back in the cellar under a new id."""
        archived = self.collection.find_archived(archive_id)
        if archived is None:
            raise ArchiveRecordNotFoundError(archive_id)

        restored = make_restored_wine(archived, wine_id=self._new_id(), added_at=self._clock())

        async with self.gate.hold():
            self.collection.wines.insert(0, restored)
            self.collection.archive = [
                r for r in self.collection.archive if r["id"] != archive_id
            ]
            self._persist()
            self._notify()
            await self._push(KIND_WINES, [restored])
            await self._remote_delete(KIND_ARCHIVE, archive_id)
        return copy.deepcopy(restored)

    async def delete_archived(self, archive_id: str) -> bool:
        """Permanently delete an archive record."""
        if self.collection.find_archived(archive_id) is None:
            raise ArchiveRecordNotFoundError(archive_id)

        async with self.gate.hold():
            self.collection.archive = [
                r for r in self.collection.archive if r["id"] != archive_id
            ]
            self._persist()
            self._notify()
            return await self._remote_delete(KIND_ARCHIVE, archive_id)

    # ------------------------------------------------------------------
    # Remote attachment
    # ------------------------------------------------------------------

    async def attach_remote(self, channel: RemoteChannel, identity: str) -> bool:
        """Subscribe to *identity*'s remote collections.

        The first snapshot of each collection is reconciled with local state
        using the configured policy; later snapshots replace it.  Returns
        ``False`` (and stays local-only) when the remote cannot be reached.
        """
        if self.channel is not None:
            await self.detach_remote()

        self.channel = channel
        self.identity = identity
        self._reconciled = set()
        self._settled = set()
        self._synced = asyncio.Event()
        self._attach_token += 1
        token = self._attach_token
        self.status = STATUS_CONNECTING

        try:
            for kind in (KIND_WINES, KIND_ARCHIVE):
                sub = await channel.subscribe(
                    collection_path(identity, kind),
                    self._make_listener(kind, token),
                )
                self._subscriptions.append(sub)
        except RemoteError as exc:
            logger.error("Remote sync unavailable, staying local: %s", exc)
            await self.detach_remote(status=STATUS_ERROR)
            return False
        return True

    async def detach_remote(self, status: str = STATUS_DISCONNECTED) -> None:
        """Cancel subscriptions and return to local-only mode."""
        channel = self.channel
        self._attach_token += 1
        paths = {sub.path for sub in self._subscriptions}
        self._subscriptions = []
        self.channel = None
        self.identity = None
        self._reconciled = set()
        self._settled = set()
        self.gate.release_now()
        self.status = status
        if channel is not None:
            for path in sorted(paths):
                try:
                    await channel.unsubscribe(path)
                except RemoteError as exc:
                    logger.warning("Unsubscribe from %s failed: %s", path, exc)

    async def wait_until_synced(self, timeout: float) -> bool:
        """Wait for the connect-time reconciliation of both collections."""
        if self._synced is None:
            return False
        try:
            await asyncio.wait_for(self._synced.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def _make_listener(self, kind: str, token: int):  # noqa: ANN202
        async def _listener(snapshot: dict) -> None:
            if token != self._attach_token:
                return
            await self._on_snapshot(kind, snapshot)

        return _listener

    async def _on_snapshot(self, kind: str, snapshot: dict) -> None:
        """Apply an inbound remote snapshot of the *kind* collection.

        The first snapshot per collection is the subscription's initial
        value, not a fan-out of our own write, so it is always reconciled.
        """
        if kind in self._reconciled and self.gate.should_suppress():
            return

        remote = snapshot_records(snapshot)
        local = self._records(kind)

        first = kind not in self._reconciled
        if first:
            result = reconcile(self.policy, local, remote, kind)
            self._reconciled.add(kind)
        else:
            result = remote_authoritative(remote, kind)

        self._set_records(kind, result.records)
        self._persist()
        self._notify()
        if self.status == STATUS_CONNECTING:
            self.status = STATUS_SYNCED

        if result.to_push:
            logger.info("Pushing %d local-only %s record(s)", len(result.to_push), kind)
            await self._push(kind, result.to_push)

        if first:
            self._settled.add(kind)
            if self._synced is not None and self._settled >= {KIND_WINES, KIND_ARCHIVE}:
                self._synced.set()

    def _records(self, kind: str) -> list[dict]:
        return self.collection.wines if kind == KIND_WINES else self.collection.archive

    def _set_records(self, kind: str, records: list[dict]) -> None:
        if kind == KIND_WINES:
            self.collection.wines = records
        else:
            self.collection.archive = records

    # ------------------------------------------------------------------
    # Remote writes (always under the gate)
    # ------------------------------------------------------------------

    async def _push(self, kind: str, records: list[dict]) -> bool:
        if not self.remote_enabled:
            return True
        path = collection_path(self.identity, kind)
        async with self.gate.hold():
            self.status = STATUS_SYNCING
            try:
                for record in records:
                    await self.channel.set_one(path, copy.deepcopy(record))
            except RemoteError as exc:
                logger.error("Remote write to %s failed, kept locally: %s", path, exc)
                self.status = STATUS_ERROR
                return False
            self.status = STATUS_SYNCED
        return True

    async def _remote_delete(self, kind: str, record_id: str) -> bool:
        if not self.remote_enabled:
            return True
        path = collection_path(self.identity, kind)
        async with self.gate.hold():
            self.status = STATUS_SYNCING
            confirmed = await self.channel.delete_one(path, record_id)
            self.status = STATUS_SYNCED if confirmed else STATUS_ERROR
        return confirmed

    async def close(self) -> None:
        await self.detach_remote(
            status=STATUS_LOCAL if self.status == STATUS_LOCAL else STATUS_DISCONNECTED
        )
