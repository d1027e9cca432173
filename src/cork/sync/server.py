"""WebSocket remote store for cork clients.

Holds every identity's ``wines`` and ``archive`` collections, persists each
one as a JSON file under ``.cork/remote/`` and pushes the full collection to
every subscriber of a path after each write, the writer included.

Messages are JSON objects, one per WebSocket frame::

    client → server  {"req": 7, "op": "set_one", "path": "users/ana/wines", "record": {...}}
    server → client  {"type": "ack", "req": 7, "ok": true}
    server → client  {"type": "snapshot", "path": "users/ana/wines", "data": {...}}
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from pathlib import Path
from typing import Any

from cork.storage.fs import atomic_write
from cork.sync.channel import validate_path
from cork.sync.config import load_sync_config

logger = logging.getLogger(__name__)


class CorkSyncServer:
    """WebSocket server that stores collections and fans out snapshots."""

    def __init__(
        self,
        cork_dir: Path,
        host: str | None = None,
        port: int | None = None,
    ) -> None:
        self.cork_dir = cork_dir
        sync_config = load_sync_config(cork_dir)
        self.host = host or sync_config["listen"]["host"]
        self.port = port if port is not None else sync_config["listen"]["port"]
        self.data_dir = cork_dir / "remote"
        self._collections: dict[str, dict[str, dict]] = {}
        self._subscribers: dict[str, set[Any]] = {}
        self._server: Any = None

    async def start(self) -> None:
        """Bind the listening socket.  Port 0 picks a free port."""
        import websockets

        self._server = await websockets.serve(self._handle_client, self.host, self.port)
        sockets = getattr(self._server, "sockets", None) or []
        if sockets:
            self.port = sockets[0].getsockname()[1]
        logger.info("cork sync: listening on ws://%s:%s", self.host, self.port)

    async def serve_forever(self) -> None:
        """Start and run until cancelled."""
        await self.start()
        await asyncio.Future()  # Run forever

    async def stop(self) -> None:
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    # -- storage ------------------------------------------------------------

    def _file_for(self, path: str) -> Path:
        return self.data_dir / f"{path}.json"

    def read(self, path: str) -> dict:
        """Return a copy of the collection at *path*, loading it from disk once."""
        if path not in self._collections:
            file_path = self._file_for(path)
            records: dict = {}
            if file_path.exists():
                try:
                    loaded = json.loads(file_path.read_text(encoding="utf-8"))
                    if isinstance(loaded, dict):
                        records = loaded
                except (OSError, ValueError) as exc:
                    logger.error("cork sync: unreadable collection %s: %s", file_path, exc)
            self._collections[path] = records
        return copy.deepcopy(self._collections[path])

    def _write(self, path: str, records: dict) -> None:
        self._collections[path] = copy.deepcopy(records)
        file_path = self._file_for(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        atomic_write(
            file_path,
            json.dumps(records, sort_keys=True, indent=2, ensure_ascii=False) + "\n",
        )

    # -- connection handling -----------------------------------------------

    async def _handle_client(self, websocket: Any, path: Any = None) -> None:  # noqa: ARG002
        client_id = id(websocket)
        logger.info("cork sync: client connected: %s", client_id)
        try:
            async for message in websocket:
                await self._handle_message(websocket, message)
        except Exception as exc:
            logger.warning("cork sync: client %s error: %s", client_id, exc)
        finally:
            for subscribers in self._subscribers.values():
                subscribers.discard(websocket)
            logger.info("cork sync: client disconnected: %s", client_id)

    async def _handle_message(self, websocket: Any, raw_message: str | bytes) -> None:
        try:
            msg = json.loads(raw_message)
            req = msg["req"]
            op = msg["op"]
            path = msg["path"]
        except (json.JSONDecodeError, KeyError, TypeError) as exc:
            logger.warning("cork sync: bad message: %s", exc)
            return

        if not validate_path(path):
            await self._ack(websocket, req, ok=False, error=f"invalid path: {path!r}")
            return

        try:
            if op == "subscribe":
                self._subscribers.setdefault(path, set()).add(websocket)
                await self._ack(websocket, req)
                await self._send_snapshot(websocket, path)
            elif op == "unsubscribe":
                self._subscribers.get(path, set()).discard(websocket)
                await self._ack(websocket, req)
            elif op == "get":
                await self._ack(websocket, req, data=self.read(path))
            elif op == "set_all":
                records = msg["data"]
                if not isinstance(records, dict):
                    raise ValueError("'data' must be an object")
                self._write(path, records)
                await self._ack(websocket, req)
                await self._broadcast(path)
            elif op == "set_one":
                record = msg["record"]
                if not isinstance(record, dict) or not isinstance(record.get("id"), str):
                    raise ValueError("'record' must be an object with an 'id'")
                current = self.read(path)
                current[record["id"]] = record
                self._write(path, current)
                await self._ack(websocket, req)
                await self._broadcast(path)
            elif op == "delete":
                current = self.read(path)
                removed = current.pop(msg["id"], None)
                if removed is not None:
                    self._write(path, current)
                await self._ack(websocket, req)
                if removed is not None:
                    await self._broadcast(path)
            else:
                await self._ack(websocket, req, ok=False, error=f"unknown op: {op!r}")
        except (KeyError, ValueError, OSError) as exc:
            await self._ack(websocket, req, ok=False, error=str(exc))

    async def _ack(
        self,
        websocket: Any,
        req: Any,
        *,
        ok: bool = True,
        data: object = None,
        error: str | None = None,
    ) -> None:
        payload: dict = {"type": "ack", "req": req, "ok": ok}
        if data is not None:
            payload["data"] = data
        if error is not None:
            payload["error"] = error
        await websocket.send(json.dumps(payload))

    async def _send_snapshot(self, websocket: Any, path: str) -> None:
        payload = json.dumps({"type": "snapshot", "path": path, "data": self.read(path)})
        await websocket.send(payload)

    async def _broadcast(self, path: str) -> None:
        subscribers = list(self._subscribers.get(path, ()))
        if not subscribers:
            return
        payload = json.dumps({"type": "snapshot", "path": path, "data": self.read(path)})
        await asyncio.gather(
            *(ws.send(payload) for ws in subscribers),
            return_exceptions=True,
        )
