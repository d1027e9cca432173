"""Echo suppression for snapshots caused by this client's own writes.

The remote store fans every write back to all subscribers, the writer
included, and it does so asynchronously: the echo can land after the write
call has already resolved.  While the gate is engaged the manager's
snapshot callback returns early.  The gate is raised before a remote write
starts and lowered only after a grace window following the write's
completion.

This is a timing heuristic.  A snapshot from another client that arrives
inside the window is dropped as well; the next change delivers a fresh
full snapshot.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator

from cork.core.config import DEFAULT_GRACE_SECONDS

logger = logging.getLogger(__name__)


class EchoSuppressionGate:
    """Single shared flag with a trailing grace window."""

    def __init__(self, grace_seconds: float = DEFAULT_GRACE_SECONDS) -> None:
        self.grace_seconds = grace_seconds
        self.suppressed_count = 0
        self._engaged = False
        self._depth = 0
        self._generation = 0
        self._release_handle: asyncio.TimerHandle | None = None

    @property
    def engaged(self) -> bool:
        return self._engaged

    def engage(self) -> None:
        """Raise the flag, cancelling any pending release."""
        self._cancel_pending_release()
        self._generation += 1
        self._depth += 1
        self._engaged = True

    def disengage_later(self) -> None:
        """Schedule the flag to drop after the grace window.

        Nested holds only schedule the release when the outermost one ends.
        """
        self._depth = max(0, self._depth - 1)
        if self._depth:
            return
        generation = self._generation
        loop = asyncio.get_running_loop()
        self._release_handle = loop.call_later(self.grace_seconds, self._release, generation)

    def release_now(self) -> None:
        """Drop the flag immediately (sign-out, shutdown)."""
        self._cancel_pending_release()
        self._depth = 0
        self._engaged = False

    def should_suppress(self) -> bool:
        """Return ``True`` (and count it) when an inbound snapshot must be ignored."""
        if self._engaged:
            self.suppressed_count += 1
            logger.debug("Suppressed inbound snapshot (%d so far)", self.suppressed_count)
            return True
        return False

    @contextlib.asynccontextmanager
    async def hold(self) -> AsyncIterator[None]:
        """Keep the gate engaged for the body plus the grace window."""
        self.engage()
        try:
            yield
        finally:
            self.disengage_later()

    def _release(self, generation: int) -> None:
        # A newer hold started after this release was scheduled.
        if generation != self._generation or self._depth:
            return
        self._release_handle = None
        self._engaged = False

    def _cancel_pending_release(self) -> None:
        if self._release_handle is not None:
            self._release_handle.cancel()
            self._release_handle = None
