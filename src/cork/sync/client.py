"""WebSocket client for a cork sync server."""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from typing import Any

from cork.core.errors import RemoteError
from cork.sync.channel import RemoteChannel, Subscription, dispatch_snapshot

logger = logging.getLogger(__name__)


class WebSocketRemote(RemoteChannel):
    """Remote channel speaking the cork sync protocol over one WebSocket."""

    def __init__(self, url: str, timeout: float = 10.0) -> None:
        super().__init__()
        self.url = url
        self.timeout = timeout
        self._ws: Any = None
        self._reader: asyncio.Task | None = None
        self._pending: dict[int, asyncio.Future] = {}
        self._req_ids = itertools.count(1)
        self._last_snapshot: dict[str, dict] = {}
        self._tasks: set[asyncio.Task] = set()

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def connect(self) -> None:
        """Open the connection and start the reader task.

        Raises:
            RemoteError: If the server cannot be reached within the timeout.
        """
        import websockets

        try:
            self._ws = await asyncio.wait_for(websockets.connect(self.url), self.timeout)
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as exc:
            raise RemoteError(f"cannot connect to {self.url}: {exc}") from exc
        self._reader = asyncio.create_task(self._read_loop())
        logger.info("cork sync: connected to %s", self.url)

    async def close(self) -> None:
        await super().close()
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except (asyncio.CancelledError, Exception):
                pass
            self._reader = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        self._fail_pending(RemoteError("connection closed"))

    # -- RemoteChannel ------------------------------------------------------

    async def _open_subscription(self, path: str, sub: Subscription, first: bool) -> None:
        if first:
            # The server answers with an ack followed by the current snapshot.
            await self._request("subscribe", path)
        elif path in self._last_snapshot:
            snapshot = self._last_snapshot[path]
            asyncio.get_running_loop().call_soon(self._deliver_one, sub, snapshot)

    def _deliver_one(self, sub: Subscription, snapshot: dict) -> None:
        if sub.active:
            dispatch_snapshot(sub.listener, snapshot)

    async def _close_subscription(self, path: str) -> None:
        self._last_snapshot.pop(path, None)
        if self._ws is None:
            return
        try:
            await self._request("unsubscribe", path)
        except RemoteError as exc:
            logger.warning("cork sync: unsubscribe %s failed: %s", path, exc)

    def _on_last_listener_gone(self, path: str) -> None:
        task = asyncio.ensure_future(self._close_subscription(path))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def get(self, path: str) -> dict:
        data = await self._request("get", path)
        return data if isinstance(data, dict) else {}

    async def set_all(self, path: str, records: dict) -> None:
        await self._request("set_all", path, data=records)

    async def set_one(self, path: str, record: dict) -> None:
        await self._request("set_one", path, record=record)

    async def _delete(self, path: str, record_id: str) -> None:
        await self._request("delete", path, id=record_id)

    # -- transport ----------------------------------------------------------

    async def _request(self, op: str, path: str, **payload: object) -> object:
        if self._ws is None:
            raise RemoteError("not connected")
        if self._reader is not None and self._reader.done():
            raise RemoteError("connection lost")
        req = next(self._req_ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[req] = future
        message = json.dumps({"req": req, "op": op, "path": path, **payload})
        try:
            await self._ws.send(message)
            return await asyncio.wait_for(future, self.timeout)
        except asyncio.TimeoutError:
            raise RemoteError(f"{op} {path} timed out after {self.timeout}s") from None
        except RemoteError:
            raise
        except Exception as exc:
            raise RemoteError(f"{op} {path} failed: {exc}") from exc
        finally:
            self._pending.pop(req, None)

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                self._handle_message(raw)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("cork sync: connection to %s lost: %s", self.url, exc)
        self._fail_pending(RemoteError("connection lost"))

    def _handle_message(self, raw: str | bytes) -> None:
        try:
            msg = json.loads(raw)
            kind = msg["type"]
        except (json.JSONDecodeError, KeyError, TypeError) as exc:
            logger.warning("cork sync: bad message: %s", exc)
            return

        if kind == "ack":
            future = self._pending.get(msg.get("req"))
            if future is None or future.done():
                return
            if msg.get("ok"):
                future.set_result(msg.get("data"))
            else:
                future.set_exception(RemoteError(msg.get("error") or "request rejected"))
        elif kind == "snapshot":
            path = msg.get("path")
            data = msg.get("data")
            if not isinstance(path, str) or not isinstance(data, dict):
                return
            self._last_snapshot[path] = data
            self._deliver(path, data)

    def _fail_pending(self, error: RemoteError) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()
