import asyncio

import pytest

from app.services.concurrency import ConcurrencyGate


class TestConcurrencyGate:
    def test_limit_must_be_positive(self):
        with pytest.raises(ValueError):
            ConcurrencyGate(0)

    @pytest.mark.asyncio
    async def test_bounds_concurrent_holders(self):
        gate = ConcurrencyGate(2)
        running = 0
        peak = 0

        async def work():
            nonlocal running, peak
            async with gate:
                running += 1
                peak = max(peak, running)
                await asyncio.sleep(0.01)
                running -= 1

        await asyncio.gather(*(work() for _ in range(6)))

        assert peak == 2
        assert gate.active == 0
        assert gate.waiting == 0

    @pytest.mark.asyncio
    async def test_waiters_are_served_in_order(self):
        gate = ConcurrencyGate(1)
        order = []
        await gate.acquire()

        async def waiter(name):
            async with gate:
                order.append(name)

        tasks = [asyncio.create_task(waiter(n)) for n in ("a", "b", "c")]
        await asyncio.sleep(0)
        assert gate.waiting == 3

        gate.release()
        await asyncio.gather(*tasks)

        assert order == ["a", "b", "c"]
        assert gate.active == 0

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_leak_slot(self):
        gate = ConcurrencyGate(1)
        await gate.acquire()

        task = asyncio.create_task(gate.acquire())
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        gate.release()
        assert gate.active == 0
        await asyncio.wait_for(gate.acquire(), timeout=1)
        assert gate.active == 1
