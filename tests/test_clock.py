"""
Unit tests for workguard/clock.py
"""

import asyncio

import pytest

from workguard.clock import AsyncioClock, ManualClock


class TestManualClock:
    """Test deterministic virtual time"""

    @pytest.mark.asyncio
    async def test_fires_in_due_order(self):
        clock = ManualClock()
        fired = []
        clock.after(2, lambda: fired.append("b"))
        clock.after(1, lambda: fired.append("a"))
        clock.after(5, lambda: fired.append("c"))

        await clock.advance(2)
        assert fired == ["a", "b"]
        assert clock.now() == 2
        assert clock.pending == 1

        await clock.advance(3)
        assert fired == ["a", "b", "c"]
        assert clock.pending == 0

    @pytest.mark.asyncio
    async def test_cancelled_handle_never_fires(self):
        clock = ManualClock()
        fired = []
        handle = clock.after(1, lambda: fired.append(1))
        clock.cancel(handle)
        handle.cancel()
        await clock.advance(10)
        assert fired == []
        assert not handle.active

    @pytest.mark.asyncio
    async def test_coroutine_callback_runs(self):
        clock = ManualClock()
        done = []

        async def callback():
            done.append(True)

        clock.after(1, callback)
        await clock.advance(1)
        assert done == [True]

    @pytest.mark.asyncio
    async def test_callback_failure_is_contained(self):
        clock = ManualClock()
        fired = []

        def boom():
            raise RuntimeError("timer failed")

        clock.after(1, boom)
        clock.after(2, lambda: fired.append(2))
        await clock.advance(3)
        assert fired == [2]

    @pytest.mark.asyncio
    async def test_sleep_resolves_on_advance(self):
        clock = ManualClock()
        woke = []

        async def sleeper():
            await clock.sleep(5)
            woke.append(clock.now())

        task = asyncio.ensure_future(sleeper())
        await clock.advance(4)
        assert woke == []
        await clock.advance(1)
        await task
        assert woke == [5]


class TestAsyncioClock:
    """Test the event-loop backed clock"""

    @pytest.mark.asyncio
    async def test_after_and_cancel(self):
        clock = AsyncioClock()
        fired = []
        clock.after(0.01, lambda: fired.append("kept"))
        cancelled = clock.after(0.01, lambda: fired.append("cancelled"))
        cancelled.cancel()
        await asyncio.sleep(0.05)
        assert fired == ["kept"]

    @pytest.mark.asyncio
    async def test_sleep(self):
        clock = AsyncioClock()
        start = clock.now()
        await clock.sleep(0.01)
        assert clock.now() >= start
