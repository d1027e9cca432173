"""Tests for the remote channel contract using the in-process remote."""

from __future__ import annotations

import asyncio

import pytest

from cork.core.errors import RemoteError
from cork.sync.channel import MemoryRemote, RemoteState, collection_path, validate_path

PATH = "users/ana/wines"


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


class TestPaths:
    def test_collection_path(self) -> None:
        assert collection_path("ana", "wines") == PATH
        assert collection_path("ana", "archive") == "users/ana/archive"

    def test_rejects_bad_identity_or_kind(self) -> None:
        with pytest.raises(ValueError):
            collection_path("../etc", "wines")
        with pytest.raises(ValueError):
            collection_path("ana", "cellar")

    def test_validate_path(self) -> None:
        assert validate_path(PATH)
        assert not validate_path("users/ana")
        assert not validate_path("users/ana/wines/extra")


class TestSubscribe:
    def test_initial_snapshot_is_delivered_asynchronously(self) -> None:
        async def scenario() -> None:
            state = RemoteState()
            state.collections[PATH] = {"w1": {"id": "w1", "name": "A"}}
            remote = MemoryRemote(state)
            received: list[dict] = []

            await remote.subscribe(PATH, received.append)
            assert received == []
            await _settle()
            assert received == [{"w1": {"id": "w1", "name": "A"}}]

        asyncio.run(scenario())

    def test_writes_fan_out_to_every_subscriber_including_writer(self) -> None:
        async def scenario() -> None:
            state = RemoteState()
            writer, reader = MemoryRemote(state), MemoryRemote(state)
            seen_by_writer: list[dict] = []
            seen_by_reader: list[dict] = []
            await writer.subscribe(PATH, seen_by_writer.append)
            await reader.subscribe(PATH, seen_by_reader.append)
            await _settle()

            await writer.set_one(PATH, {"id": "w1", "name": "A"})
            await _settle()

            assert seen_by_writer[-1] == {"w1": {"id": "w1", "name": "A"}}
            assert seen_by_reader[-1] == {"w1": {"id": "w1", "name": "A"}}

        asyncio.run(scenario())

    def test_coroutine_listeners_are_scheduled(self) -> None:
        async def scenario() -> None:
            remote = MemoryRemote()
            received: list[dict] = []

            async def listener(snapshot: dict) -> None:
                await asyncio.sleep(0)
                received.append(snapshot)

            await remote.subscribe(PATH, listener)
            await _settle()
            assert received == [{}]

        asyncio.run(scenario())

    def test_failing_listener_does_not_break_fan_out(self) -> None:
        async def scenario() -> None:
            remote = MemoryRemote()
            received: list[dict] = []

            def broken(snapshot: dict) -> None:
                raise RuntimeError("listener bug")

            await remote.subscribe(PATH, broken)
            await remote.subscribe(PATH, received.append)
            await _settle()
            assert received == [{}]

        asyncio.run(scenario())


class TestUnsubscribe:
    def test_cancel_is_idempotent_and_stops_delivery(self) -> None:
        async def scenario() -> None:
            state = RemoteState()
            remote = MemoryRemote(state)
            received: list[dict] = []
            sub = await remote.subscribe(PATH, received.append)
            await _settle()

            sub.cancel()
            sub.cancel()
            await remote.set_one(PATH, {"id": "w1"})
            await _settle()

            assert received == [{}]
            assert remote.listeners(PATH) == []

        asyncio.run(scenario())

    def test_cancel_before_initial_delivery(self) -> None:
        async def scenario() -> None:
            remote = MemoryRemote()
            received: list[dict] = []
            sub = await remote.subscribe(PATH, received.append)
            sub.cancel()
            await _settle()
            assert received == []

        asyncio.run(scenario())

    def test_unsubscribe_unknown_path_is_noop(self) -> None:
        asyncio.run(MemoryRemote().unsubscribe(PATH))


class TestWrites:
    def test_set_all_and_get(self) -> None:
        async def scenario() -> None:
            remote = MemoryRemote()
            await remote.set_all(PATH, {"a": {"id": "a"}, "b": {"id": "b"}})
            assert set(await remote.get(PATH)) == {"a", "b"}

        asyncio.run(scenario())

    def test_delete_one_confirms(self) -> None:
        async def scenario() -> None:
            remote = MemoryRemote()
            await remote.set_one(PATH, {"id": "a"})
            assert await remote.delete_one(PATH, "a") is True
            # Already gone still counts as confirmed
            assert await remote.delete_one(PATH, "a") is True
            assert await remote.get(PATH) == {}

        asyncio.run(scenario())

    def test_delete_one_reports_failure(self) -> None:
        async def scenario() -> None:
            state = RemoteState()
            remote = MemoryRemote(state)
            state.available = False
            assert await remote.delete_one(PATH, "a") is False

        asyncio.run(scenario())

    def test_unavailable_remote_raises(self) -> None:
        async def scenario() -> None:
            state = RemoteState()
            state.available = False
            with pytest.raises(RemoteError):
                await MemoryRemote(state).subscribe(PATH, lambda s: None)

        asyncio.run(scenario())
