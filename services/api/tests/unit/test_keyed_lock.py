"""Per-user lock bookkeeping."""

import asyncio

import pytest

from streetxp.progression.locks import KeyedLock


class TestKeyedLock:

    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self):
        locks = KeyedLock()
        order = []

        async def worker(name: str):
            async with locks.hold(1):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])

    @pytest.mark.asyncio
    async def test_locks_are_dropped_when_idle(self):
        locks = KeyedLock()
        async with locks.hold(1):
            async with locks.hold(2):
                assert len(locks) == 2
        assert len(locks) == 0
