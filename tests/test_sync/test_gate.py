"""Tests for the echo suppression gate."""

from __future__ import annotations

import asyncio

from cork.sync.gate import EchoSuppressionGate


def test_starts_disengaged() -> None:
    gate = EchoSuppressionGate(0.05)
    assert gate.engaged is False
    assert gate.should_suppress() is False
    assert gate.suppressed_count == 0


def test_stays_engaged_for_grace_window() -> None:
    async def scenario() -> None:
        gate = EchoSuppressionGate(0.1)
        async with gate.hold():
            assert gate.engaged
        # Write finished, grace window still running
        assert gate.engaged
        await asyncio.sleep(0.02)
        assert gate.should_suppress() is True
        await asyncio.sleep(0.15)
        assert gate.engaged is False
        assert gate.suppressed_count == 1

    asyncio.run(scenario())


def test_nested_holds_release_after_outermost() -> None:
    async def scenario() -> None:
        gate = EchoSuppressionGate(0.02)
        async with gate.hold():
            async with gate.hold():
                pass
            await asyncio.sleep(0.06)
            assert gate.engaged, "inner hold must not release the outer one"
        await asyncio.sleep(0.06)
        assert gate.engaged is False

    asyncio.run(scenario())


def test_new_hold_extends_pending_release() -> None:
    async def scenario() -> None:
        gate = EchoSuppressionGate(0.08)
        async with gate.hold():
            pass
        await asyncio.sleep(0.05)
        async with gate.hold():
            pass
        # The first release would have fired by now
        await asyncio.sleep(0.05)
        assert gate.engaged
        await asyncio.sleep(0.1)
        assert gate.engaged is False

    asyncio.run(scenario())


def test_release_now() -> None:
    async def scenario() -> None:
        gate = EchoSuppressionGate(10.0)
        async with gate.hold():
            pass
        assert gate.engaged
        gate.release_now()
        assert gate.engaged is False

    asyncio.run(scenario())


def test_release_after_exception_in_body() -> None:
    async def scenario() -> None:
        gate = EchoSuppressionGate(0.01)
        try:
            async with gate.hold():
                raise RuntimeError("write failed")
        except RuntimeError:
            pass
        assert gate.engaged
        await asyncio.sleep(0.05)
        assert gate.engaged is False

    asyncio.run(scenario())
