"""
Timer Scheduling

Polling and debouncing never call asyncio.sleep directly; they go through a
Scheduler so the clock can be replaced.

- AsyncioScheduler: real timers on the running event loop
- ManualScheduler: virtual clock advanced explicitly (tests, simulations)

Callbacks are zero-argument coroutine functions.
"""

import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List, Optional

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class TimerHandle:
    """Handle to a scheduled callback. Cancelling is idempotent."""

    def __init__(self, delay: float, due: float, callback: TimerCallback):
        self.delay = delay
        self.due = due
        self.callback = callback
        self.cancelled = False
        self.fired = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None

    def cancel(self):
        self.cancelled = True
        if self._timer is not None:
            self._timer.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    @property
    def pending(self) -> bool:
        return not self.cancelled and not self.fired


class Scheduler(ABC):
    """Clock plus delayed-callback facility."""

    @abstractmethod
    def now(self) -> float:
        ...

    @abstractmethod
    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle:
        ...


class AsyncioScheduler(Scheduler):
    """
    Scheduler backed by the running event loop.

    Cancelling a handle after it fired cancels the task running the callback,
    which aborts any request it is awaiting.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def now(self) -> float:
        return self.loop.time()

    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle:
        loop = self.loop
        handle = TimerHandle(delay, loop.time() + delay, callback)
        handle._timer = loop.call_later(delay, self._fire, handle)
        return handle

    def _fire(self, handle: TimerHandle):
        if handle.cancelled:
            return
        handle.fired = True
        handle._task = self.loop.create_task(handle.callback())
        handle._task.add_done_callback(self._log_failure)

    @staticmethod
    def _log_failure(task: asyncio.Task):
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Scheduled callback failed: {exc!r}")


class ManualScheduler(Scheduler):
    """
    Deterministic virtual-time scheduler.

    Nothing fires until advance() or run_next() is awaited; due callbacks are
    then awaited in due-time order, including ones scheduled while advancing.
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._seq = itertools.count()
        self._timers: List[tuple] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle:
        handle = TimerHandle(delay, self._now + delay, callback)
        self._timers.append((handle.due, next(self._seq), handle))
        return handle

    @property
    def pending(self) -> List[TimerHandle]:
        return [h for _, _, h in sorted(self._timers, key=lambda t: (t[0], t[1])) if h.pending]

    @property
    def pending_delays(self) -> List[float]:
        return [h.delay for h in self.pending]

    def _pop_next(self, until: Optional[float]) -> Optional[TimerHandle]:
        self._timers = [t for t in self._timers if t[2].pending]
        if not self._timers:
            return None
        self._timers.sort(key=lambda t: (t[0], t[1]))
        due, _, handle = self._timers[0]
        if until is not None and due > until:
            return None
        self._timers.pop(0)
        return handle

    async def _run(self, handle: TimerHandle):
        self._now = max(self._now, handle.due)
        handle.fired = True
        await handle.callback()

    async def advance(self, seconds: float):
        """Move the clock forward, running every callback that falls due."""
        target = self._now + seconds
        while True:
            handle = self._pop_next(target)
            if handle is None:
                break
            await self._run(handle)
        self._now = target

    async def run_next(self) -> bool:
        """Jump to the next pending timer and run it. Returns False when idle."""
        handle = self._pop_next(None)
        if handle is None:
            return False
        await self._run(handle)
        return True
