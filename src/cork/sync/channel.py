"""Remote sync channel contract and an in-process remote store.

A remote store holds, per identity, two collections (``wines`` and
``archive``), each a map from record id to the full record.  Subscribers
receive the whole map after every change, including changes they wrote
themselves.  That echo is what :mod:`cork.sync.gate` exists to ignore.
"""

from __future__ import annotations

import abc
import asyncio
import copy
import inspect
import logging
import re
from collections.abc import Awaitable, Callable

from cork.core.errors import RemoteError
from cork.core.ids import validate_identity
from cork.core.merge import KIND_ARCHIVE, KIND_WINES

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[dict], "Awaitable[None] | None"]

COLLECTION_KINDS: tuple[str, ...] = (KIND_WINES, KIND_ARCHIVE)

PATH_RE = re.compile(r"^users/[A-Za-z0-9][A-Za-z0-9_.@-]{0,127}/(wines|archive)$")

# Coroutine listeners run as tasks; keep references so they are not
# garbage-collected mid-flight.
_background_tasks: set[asyncio.Task] = set()


def collection_path(identity: str, kind: str) -> str:
    """Return the remote path of *identity*'s *kind* collection."""
    if not validate_identity(identity):
        raise ValueError(f"Invalid identity: {identity!r}")
    if kind not in COLLECTION_KINDS:
        raise ValueError(f"Unknown collection kind: {kind!r}")
    return f"users/{identity}/{kind}"


def validate_path(path: str) -> bool:
    return isinstance(path, str) and bool(PATH_RE.match(path))


def dispatch_snapshot(listener: SnapshotListener, snapshot: dict) -> None:
    """Invoke *listener* with *snapshot*.  Never raises.

    Coroutine listeners are scheduled as tasks on the running loop.
    """
    try:
        result = listener(snapshot)
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            _background_tasks.add(task)
            task.add_done_callback(_finish_listener_task)
    except Exception:
        logger.exception("Snapshot listener failed")


def _finish_listener_task(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.error("Snapshot listener failed", exc_info=task.exception())


class Subscription:
    """Handle returned by :meth:`RemoteChannel.subscribe`.

    ``cancel()`` detaches this one listener and is idempotent.
    """

    def __init__(self, channel: RemoteChannel, path: str, listener: SnapshotListener) -> None:
        self.channel = channel
        self.path = path
        self.listener = listener
        self.active = True

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        self.channel._detach(self)

    def __repr__(self) -> str:
        state = "active" if self.active else "cancelled"
        return f"Subscription({self.path!r}, {state})"


class RemoteChannel(abc.ABC):
    """Subscription-based connection to a per-identity remote collection.

    All operations are coroutines; callers must await them before taking a
    dependent step.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[Subscription]] = {}

    async def subscribe(self, path: str, on_snapshot: SnapshotListener) -> Subscription:
        """Register *on_snapshot* for every change of the collection at *path*.

        The current value is delivered once shortly after subscribing.
        """
        if not validate_path(path):
            raise ValueError(f"Invalid collection path: {path!r}")
        sub = Subscription(self, path, on_snapshot)
        first = not self._subscriptions.get(path)
        self._subscriptions.setdefault(path, []).append(sub)
        try:
            await self._open_subscription(path, sub, first)
        except BaseException:
            self._subscriptions[path].remove(sub)
            sub.active = False
            raise
        return sub

    async def unsubscribe(self, path: str) -> None:
        """Detach every listener this channel holds for *path*.  Idempotent."""
        subs = self._subscriptions.pop(path, [])
        for sub in subs:
            sub.active = False
        if subs:
            await self._close_subscription(path)

    async def close(self) -> None:
        """Detach all listeners and release the transport."""
        for path in list(self._subscriptions):
            await self.unsubscribe(path)

    def listeners(self, path: str) -> list[SnapshotListener]:
        return [sub.listener for sub in self._subscriptions.get(path, []) if sub.active]

    def _detach(self, sub: Subscription) -> None:
        subs = self._subscriptions.get(sub.path, [])
        if sub in subs:
            subs.remove(sub)
        if not subs:
            self._subscriptions.pop(sub.path, None)
            self._on_last_listener_gone(sub.path)

    def _deliver(self, path: str, snapshot: dict) -> None:
        for listener in self.listeners(path):
            dispatch_snapshot(listener, copy.deepcopy(snapshot))

    async def delete_one(self, path: str, record_id: str) -> bool:
        """Delete ``path/record_id`` and confirm by re-reading.

        Returns ``True`` once the record is confirmed absent (also when it
        was already gone), ``False`` when the delete or the check failed.
        """
        try:
            await self._delete(path, record_id)
            remaining = await self.get(path)
        except RemoteError as exc:
            logger.error("Remote delete of %s/%s failed: %s", path, record_id, exc)
            return False
        if record_id in remaining:
            logger.warning("Remote still holds %s/%s after delete", path, record_id)
            return False
        return True

    # -- transport hooks ----------------------------------------------------

    @abc.abstractmethod
    async def _open_subscription(self, path: str, sub: Subscription, first: bool) -> None:
        """Start receiving snapshots for *path* and deliver the current one to *sub*."""

    @abc.abstractmethod
    async def _close_subscription(self, path: str) -> None:
        """Stop receiving snapshots for *path*."""

    def _on_last_listener_gone(self, path: str) -> None:  # noqa: B027
        """Called when ``Subscription.cancel()`` removes the last listener."""

    @abc.abstractmethod
    async def get(self, path: str) -> dict:
        """Return the current ``{id: record}`` map at *path*."""

    @abc.abstractmethod
    async def set_all(self, path: str, records: dict) -> None:
        """Replace the whole collection at *path*."""

    @abc.abstractmethod
    async def set_one(self, path: str, record: dict) -> None:
        """Write *record* at ``path/<record id>``."""

    @abc.abstractmethod
    async def _delete(self, path: str, record_id: str) -> None:
        """Remove ``path/record_id`` (no confirmation)."""


# ---------------------------------------------------------------------------
# In-process remote store
# ---------------------------------------------------------------------------


class RemoteState:
    """Shared backing store for any number of :class:`MemoryRemote` clients.

    Fan-out is asynchronous: listeners run on a later loop iteration (after
    *fanout_delay* seconds when set), never inside the write call.
    """

    def __init__(self, fanout_delay: float = 0.0) -> None:
        self.collections: dict[str, dict[str, dict]] = {}
        self.clients: list[MemoryRemote] = []
        self.fanout_delay = fanout_delay
        self.available = True
        self.writes = 0

    def read(self, path: str) -> dict:
        return copy.deepcopy(self.collections.get(path, {}))

    def write(self, path: str, records: dict) -> None:
        self.collections[path] = copy.deepcopy(records)
        self.writes += 1
        self.fan_out(path)

    def fan_out(self, path: str) -> None:
        snapshot = self.read(path)
        loop = asyncio.get_running_loop()
        for client in list(self.clients):
            if client.listeners(path):
                if self.fanout_delay > 0:
                    loop.call_later(self.fanout_delay, client._deliver, path, snapshot)
                else:
                    loop.call_soon(client._deliver, path, snapshot)


class MemoryRemote(RemoteChannel):
    """A remote channel backed by an in-process :class:`RemoteState`."""

    def __init__(self, state: RemoteState | None = None) -> None:
        super().__init__()
        self.state = state or RemoteState()
        self.state.clients.append(self)

    def _check(self) -> None:
        if not self.state.available:
            raise RemoteError("remote store unavailable")

    async def _open_subscription(self, path: str, sub: Subscription, first: bool) -> None:
        self._check()
        snapshot = self.state.read(path)
        asyncio.get_running_loop().call_soon(self._deliver_one, sub, snapshot)

    def _deliver_one(self, sub: Subscription, snapshot: dict) -> None:
        if sub.active:
            dispatch_snapshot(sub.listener, snapshot)

    async def _close_subscription(self, path: str) -> None:
        return None

    async def get(self, path: str) -> dict:
        self._check()
        await asyncio.sleep(0)
        return self.state.read(path)

    async def set_all(self, path: str, records: dict) -> None:
        self._check()
        await asyncio.sleep(0)
        self.state.write(path, records)

    async def set_one(self, path: str, record: dict) -> None:
        self._check()
        await asyncio.sleep(0)
        current = self.state.read(path)
        current[record["id"]] = copy.deepcopy(record)
        self.state.write(path, current)

    async def _delete(self, path: str, record_id: str) -> None:
        self._check()
        await asyncio.sleep(0)
        current = self.state.read(path)
        if current.pop(record_id, None) is not None:
            self.state.write(path, current)

    async def close(self) -> None:
        await super().close()
        if self in self.state.clients:
            self.state.clients.remove(self)
