"""
Clock abstraction for timer-driven control flow.

All debounce, recovery and degraded-mode timers go through a ``Clock`` so
that production code runs on the asyncio event loop while tests drive a
virtual clock deterministically.

- AsyncioClock: ``loop.call_later`` backed, wall-clock time
- ManualClock: virtual time, advanced explicitly with ``await clock.advance(s)``
"""

import asyncio
import heapq
import inspect
import itertools
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Any]


class TimerHandle:
    """Handle for a scheduled callback. Cancelling twice is harmless."""

    def __init__(self, when: float, callback: TimerCallback):
        self.when = when
        self.callback = callback
        self.cancelled = False
        self.fired = False
        self._native: Optional[asyncio.TimerHandle] = None

    @property
    def active(self) -> bool:
        return not (self.cancelled or self.fired)

    def cancel(self) -> None:
        self.cancelled = True
        if self._native is not None:
            self._native.cancel()

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "fired" if self.fired else "pending"
        return f"<TimerHandle when={self.when:.3f} {state}>"


class Clock(ABC):
    """Schedules callbacks after a delay and cancels them."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    @abstractmethod
    def now(self) -> float:
        """Current time in seconds."""

    @abstractmethod
    def after(self, delay: float, callback: TimerCallback) -> TimerHandle:
        """Run ``callback`` once ``delay`` seconds from now."""

    @abstractmethod
    async def sleep(self, delay: float) -> None:
        """Suspend the caller for ``delay`` seconds of this clock's time."""

    def cancel(self, handle: Optional[TimerHandle]) -> None:
        if handle is not None:
            handle.cancel()

    def _fire(self, handle: TimerHandle) -> None:
        """Invoke a due handle; coroutine results run as tracked tasks."""
        if not handle.active:
            return
        handle.fired = True
        try:
            result = handle.callback()
        except Exception:
            logger.exception("Timer callback failed")
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Timer task failed: {exc}", exc_info=exc)


class AsyncioClock(Clock):
    """Clock backed by the running asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        super().__init__()
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is not None:
            return self._loop
        return asyncio.get_running_loop()

    def now(self) -> float:
        return time.monotonic()

    def after(self, delay: float, callback: TimerCallback) -> TimerHandle:
        delay = max(0.0, delay)
        handle = TimerHandle(self.now() + delay, callback)
        handle._native = self._get_loop().call_later(delay, self._fire, handle)
        return handle

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(max(0.0, delay))


class ManualClock(Clock):
    """
    Virtual clock for deterministic tests.

    Nothing fires until ``advance()`` is awaited; timers due within the
    advanced window fire in order of due time, and coroutine callbacks are
    given a chance to run to completion before the next timer fires.
    """

    settle_iterations = 50

    def __init__(self, start: float = 0.0):
        super().__init__()
        self._now = start
        self._heap: List[Tuple[float, int, TimerHandle]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def after(self, delay: float, callback: TimerCallback) -> TimerHandle:
        handle = TimerHandle(self._now + max(0.0, delay), callback)
        heapq.heappush(self._heap, (handle.when, next(self._seq), handle))
        return handle

    async def sleep(self, delay: float) -> None:
        if delay <= 0:
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()

        def wake():
            if not future.done():
                future.set_result(None)

        self.after(delay, wake)
        await future

    @property
    def pending(self) -> int:
        """Number of timers still waiting to fire."""
        return sum(1 for _, _, handle in self._heap if handle.active)

    async def advance(self, seconds: float) -> None:
        """Move virtual time forward, firing every timer that falls due."""
        target = self._now + seconds
        await self._settle()
        while True:
            handle = self._pop_due(target)
            if handle is None:
                break
            self._now = max(self._now, handle.when)
            self._fire(handle)
            await self._settle()
        self._now = target

    def _pop_due(self, target: float) -> Optional[TimerHandle]:
        while self._heap:
            when, _, handle = self._heap[0]
            if not handle.active:
                heapq.heappop(self._heap)
                continue
            if when > target:
                return None
            heapq.heappop(self._heap)
            return handle
        return None

    async def _settle(self) -> None:
        for _ in range(self.settle_iterations):
            await asyncio.sleep(0)
            if not self._tasks:
                break
