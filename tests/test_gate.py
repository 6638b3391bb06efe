from __future__ import annotations

import asyncio

import pytest

from mediagate.core.gate import ConcurrencyGate


def test_rejects_non_positive_limit():
    with pytest.raises(ValueError):
        ConcurrencyGate(0)


def test_release_without_acquire_raises():
    gate = ConcurrencyGate(1)
    with pytest.raises(RuntimeError):
        gate.release()


def test_never_exceeds_limit_and_serves_fifo():
    limit = 3
    total = limit * 2

    async def scenario():
        gate = ConcurrencyGate(limit)
        peak = 0
        order: list[int] = []

        async def worker(index: int) -> None:
            nonlocal peak
            async with gate.slot():
                order.append(index)
                peak = max(peak, gate.active)
                await asyncio.sleep(0.01)

        tasks = []
        for index in range(total):
            tasks.append(asyncio.create_task(worker(index)))
            # Let each task reach acquire() before the next one is created.
            await asyncio.sleep(0)
        await asyncio.gather(*tasks)
        return gate, peak, order

    gate, peak, order = asyncio.run(scenario())
    assert peak == limit
    assert order == list(range(total))
    assert gate.active == 0
    assert gate.waiting == 0


def test_late_arrival_does_not_overtake_queued_waiter():
    async def scenario():
        gate = ConcurrencyGate(1)
        await gate.acquire()
        order: list[str] = []

        async def waiter(name: str) -> None:
            await gate.acquire()
            order.append(name)
            gate.release()

        first = asyncio.create_task(waiter("queued"))
        await asyncio.sleep(0)
        gate.release()
        late = asyncio.create_task(waiter("late"))
        await asyncio.gather(first, late)
        return order

    assert asyncio.run(scenario()) == ["queued", "late"]


def test_cancelled_waiter_leaves_queue():
    async def scenario():
        gate = ConcurrencyGate(1)
        await gate.acquire()
        pending = asyncio.create_task(gate.acquire())
        await asyncio.sleep(0)
        assert gate.waiting == 1
        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending
        assert gate.waiting == 0
        gate.release()
        return gate.active

    assert asyncio.run(scenario()) == 0


def test_slot_released_on_exception():
    async def scenario():
        gate = ConcurrencyGate(1)
        with pytest.raises(KeyError):
            async with gate.slot():
                raise KeyError("boom")
        return gate.active

    assert asyncio.run(scenario()) == 0


def test_waiter_cancelled_after_hand_off_passes_slot_on():
    async def scenario():
        gate = ConcurrencyGate(1)
        await gate.acquire()
        first = asyncio.create_task(gate.acquire())
        second = asyncio.create_task(gate.acquire())
        await asyncio.sleep(0)
        assert gate.waiting == 2

        gate.release()
        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first

        await asyncio.wait_for(second, timeout=1)
        assert gate.active == 1
        gate.release()
        return gate.active, gate.waiting

    assert asyncio.run(scenario()) == (0, 0)
