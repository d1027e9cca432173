"""Identity lifecycle: who is signed in, and what that means for sync.

``IdentityProvider`` emits sign-in and sign-out events.  ``CellarSession``
listens and reacts: on sign-in it loads that identity's cache and attaches
the remote channel; on sign-out it detaches, closes the channel and clears
everything the previous identity left in memory.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path

from cork.core.config import DEFAULT_GRACE_SECONDS, DEFAULT_QUOTA_BYTES
from cork.core.errors import RemoteError
from cork.core.ids import validate_identity
from cork.core.merge import POLICY_UNION
from cork.manager import STATUS_ERROR, CollectionManager
from cork.storage.cache import LocalCacheStore
from cork.storage.fs import atomic_write
from cork.sync.channel import RemoteChannel

logger = logging.getLogger(__name__)

SIGNED_IN = "signed_in"
SIGNED_OUT = "signed_out"

IdentityListener = Callable[[str, str], "Awaitable[None] | None"]
ChannelFactory = Callable[[], "Awaitable[RemoteChannel] | RemoteChannel"]


class IdentityProvider:
    """In-memory identity state that notifies listeners on change."""

    def __init__(self) -> None:
        self.current: str | None = None
        self._listeners: list[IdentityListener] = []

    def add_listener(self, fn: IdentityListener) -> None:
        """Register ``fn(event, identity)``; coroutine listeners are awaited."""
        self._listeners.append(fn)

    async def sign_in(self, identity: str) -> None:
        if not validate_identity(identity):
            raise ValueError(f"Invalid identity: {identity!r}")
        if identity == self.current:
            return
        if self.current is not None:
            await self.sign_out()
        self.current = identity
        await self._emit(SIGNED_IN, identity)

    async def sign_out(self) -> None:
        previous = self.current
        if previous is None:
            return
        self.current = None
        await self._emit(SIGNED_OUT, previous)

    async def _emit(self, event: str, identity: str) -> None:
        for fn in list(self._listeners):
            result = fn(event, identity)
            if inspect.isawaitable(result):
                await result


class FileIdentityProvider(IdentityProvider):
    """Identity persisted in ``.cork/session.json`` across CLI invocations."""

    def __init__(self, cork_dir: Path) -> None:
        super().__init__()
        self.path = cork_dir / "session.json"
        self.current = read_identity(cork_dir)

    async def sign_in(self, identity: str) -> None:
        await super().sign_in(identity)
        atomic_write(self.path, json.dumps({"identity": identity}, sort_keys=True, indent=2) + "\n")

    async def sign_out(self) -> None:
        await super().sign_out()
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


def read_identity(cork_dir: Path) -> str | None:
    """Return the identity stored in ``.cork/session.json``, if any."""
    path = cork_dir / "session.json"
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable session file %s: %s", path, exc)
        return None
    identity = data.get("identity") if isinstance(data, dict) else None
    return identity if validate_identity(identity) else None


class CellarSession:
    """Binds a :class:`CollectionManager` to an identity provider."""

    def __init__(
        self,
        cache_dir: Path,
        provider: IdentityProvider,
        *,
        channel_factory: ChannelFactory | None = None,
        quota_bytes: int = DEFAULT_QUOTA_BYTES,
        policy: str = POLICY_UNION,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        manager_factory: Callable[..., CollectionManager] = CollectionManager,
    ) -> None:
        self.cache_dir = cache_dir
        self.provider = provider
        self.channel_factory = channel_factory
        self.quota_bytes = quota_bytes
        self.channel: RemoteChannel | None = None
        self.manager = manager_factory(
            self.cache_for(None), policy=policy, grace_seconds=grace_seconds
        )
        provider.add_listener(self._on_identity_event)

    def cache_for(self, identity: str | None) -> LocalCacheStore:
        return LocalCacheStore(self.cache_dir, identity, quota_bytes=self.quota_bytes)

    @property
    def identity(self) -> str | None:
        return self.provider.current

    async def start(self) -> None:
        """Load the current identity's cache, then connect if signed in."""
        identity = self.provider.current
        self.manager.use_cache(self.cache_for(identity))
        if identity is not None:
            await self._connect(identity)

    async def close(self) -> None:
        await self.manager.close()
        await self._close_channel()

    async def _on_identity_event(self, event: str, identity: str) -> None:
        if event == SIGNED_IN:
            logger.info("Signed in as %s", identity)
            self.manager.use_cache(self.cache_for(identity))
            await self._connect(identity)
        elif event == SIGNED_OUT:
            logger.info("Signed out %s", identity)
            await self.manager.detach_remote()
            await self._close_channel()
            self.manager.clear()
            self.manager.use_cache(self.cache_for(None))

    async def _connect(self, identity: str) -> bool:
        if self.channel_factory is None:
            return False
        try:
            channel = self.channel_factory()
            if inspect.isawaitable(channel):
                channel = await channel
        except RemoteError as exc:
            logger.error("Remote sync unavailable, staying local: %s", exc)
            self.manager.status = STATUS_ERROR
            return False
        self.channel = channel
        attached = await self.manager.attach_remote(channel, identity)
        if not attached:
            await self._close_channel()
        return attached

    async def _close_channel(self) -> None:
        channel, self.channel = self.channel, None
        if channel is not None:
            await channel.close()
