"""Remote sync layer: channel contract, echo gate, WebSocket transport."""

from __future__ import annotations

from cork.sync.channel import MemoryRemote, RemoteChannel, RemoteState, Subscription, collection_path
from cork.sync.gate import EchoSuppressionGate

__all__ = [
    "EchoSuppressionGate",
    "MemoryRemote",
    "RemoteChannel",
    "RemoteState",
    "Subscription",
    "collection_path",
]
