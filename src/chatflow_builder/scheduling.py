"""
Cancellable delayed callbacks used to pace the simulated conversation.

Two schedulers share the same small interface:
- AsyncioScheduler: real delays on an asyncio event loop
- ManualScheduler: virtual clock advanced explicitly (tests, headless runs)
"""

import asyncio
import heapq
import itertools
import logging
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger(__name__)


class ScheduledHandle(Protocol):
    """Handle of a scheduled callback."""

    def cancel(self) -> None: ...

    def cancelled(self) -> bool: ...


class Scheduler(Protocol):
    """Runs a callback once after a delay (in seconds)."""

    def schedule(self, delay: float, callback: Callable[[], None]) -> ScheduledHandle: ...


class AsyncioScheduler:
    """
    Scheduler backed by loop.call_later.

    The loop is resolved when schedule() is called, so the scheduler can be
    created outside of a running event loop.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """
        Initialize the scheduler.

        Args:
            loop: Event loop to schedule on (default: the running loop)
        """
        self._loop = loop

    def schedule(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        """
        Schedule callback after delay seconds.

        Raises:
            RuntimeError: If no loop was given and none is running
        """
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)


class ManualTask:
    """Handle returned by ManualScheduler."""

    def __init__(self, due: float, callback: Callable[[], None]) -> None:
        self.due = due
        self.callback = callback
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "pending"
        return f"ManualTask(due={self.due}, {state})"


class ManualScheduler:
    """
    Deterministic scheduler with a virtual clock.

    Nothing runs until advance() or run_until_idle() is called. Callbacks
    scheduled while advancing run in the same call if they fall due.
    """

    def __init__(self) -> None:
        self._now = 0.0
        self._queue: list[tuple[float, int, ManualTask]] = []
        self._counter = itertools.count()

    @property
    def now(self) -> float:
        """Current virtual time in seconds."""
        return self._now

    @property
    def pending(self) -> int:
        """Number of scheduled callbacks that have not run or been cancelled."""
        return sum(1 for _, _, task in self._queue if not task.cancelled())

    def schedule(self, delay: float, callback: Callable[[], None]) -> ManualTask:
        task = ManualTask(self._now + max(delay, 0.0), callback)
        heapq.heappush(self._queue, (task.due, next(self._counter), task))
        return task

    def advance(self, seconds: float) -> int:
        """
        Move the clock forward and run every callback that falls due.

        Args:
            seconds: How far to move the clock

        Returns:
            Number of callbacks that ran
        """
        deadline = self._now + seconds
        ran = 0
        while self._queue and self._queue[0][0] <= deadline:
            due, _, task = heapq.heappop(self._queue)
            self._now = max(self._now, due)
            if task.cancelled():
                continue
            task.callback()
            ran += 1
        self._now = deadline
        return ran

    def run_until_idle(self, max_steps: int = 1000) -> int:
        """
        Run callbacks in due order until nothing is pending.

        Args:
            max_steps: Upper bound on callbacks run, guards against flows
                that loop forever without waiting for input

        Returns:
            Number of callbacks that ran

        Raises:
            RuntimeError: If max_steps callbacks ran and more are pending
        """
        ran = 0
        while self._queue:
            due, _, task = heapq.heappop(self._queue)
            self._now = max(self._now, due)
            if task.cancelled():
                continue
            if ran >= max_steps:
                heapq.heappush(self._queue, (due, next(self._counter), task))
                raise RuntimeError(f"Scheduler still busy after {max_steps} callbacks")
            task.callback()
            ran += 1
        return ran
