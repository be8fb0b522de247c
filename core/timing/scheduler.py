"""
Timer Scheduler
Injectable clock + timer abstraction for countdowns, price polling and reconnect backoff.

Two implementations:
- AsyncioScheduler: real time, backed by the running event loop
- VirtualScheduler: deterministic virtual time for tests, driven by advance()
"""
import asyncio
import heapq
import itertools
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Tuple

from loguru import logger


class TimerHandle:
    """Handle to a scheduled one-shot or periodic callback."""

    def __init__(self, name: str = ""):
        self.name = name
        self._cancelled = False
        self._on_cancel: Optional[Callable[[], None]] = None

    def cancel(self) -> None:
        """Cancel the timer. Safe to call more than once."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._on_cancel:
            self._on_cancel()
            self._on_cancel = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class Scheduler(ABC):
    """Clock and timer factory injected into the feed and the trade engine."""

    @abstractmethod
    def now(self) -> float:
        """Monotonic time in seconds."""

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[[], None], name: str = "") -> TimerHandle:
        """Run callback once after delay seconds."""

    @abstractmethod
    def call_every(self, interval: float, callback: Callable[[], None], name: str = "") -> TimerHandle:
        """Run callback every interval seconds until the handle is cancelled."""

    @staticmethod
    def _invoke(handle: TimerHandle, callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception:
            logger.exception(f"Timer callback '{handle.name}' raised")


class AsyncioScheduler(Scheduler):
    """Real-time scheduler on top of the asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback: Callable[[], None], name: str = "") -> TimerHandle:
        handle = TimerHandle(name)

        def _fire():
            if not handle.cancelled:
                handle._cancelled = True
                self._invoke(handle, callback)

        loop_handle = self.loop.call_later(max(delay, 0.0), _fire)
        handle._on_cancel = loop_handle.cancel
        return handle

    def call_every(self, interval: float, callback: Callable[[], None], name: str = "") -> TimerHandle:
        if interval <= 0:
            raise ValueError("interval must be positive")

        handle = TimerHandle(name)
        state = {"loop_handle": None}

        def _fire():
            if handle.cancelled:
                return
            self._invoke(handle, callback)
            if not handle.cancelled:
                state["loop_handle"] = self.loop.call_later(interval, _fire)

        def _cancel():
            if state["loop_handle"] is not None:
                state["loop_handle"].cancel()

        state["loop_handle"] = self.loop.call_later(interval, _fire)
        handle._on_cancel = _cancel
        return handle


class VirtualScheduler(Scheduler):
    """
    Deterministic scheduler for tests and replays.

    Time only moves when advance() is called; due callbacks fire in
    (due time, scheduling order) order.
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._queue: List[Tuple[float, int, TimerHandle, Callable[[], None], Optional[float]]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None], name: str = "") -> TimerHandle:
        handle = TimerHandle(name)
        self._push(self._now + max(delay, 0.0), handle, callback, None)
        return handle

    def call_every(self, interval: float, callback: Callable[[], None], name: str = "") -> TimerHandle:
        if interval <= 0:
            raise ValueError("interval must be positive")
        handle = TimerHandle(name)
        self._push(self._now + interval, handle, callback, interval)
        return handle

    def advance(self, seconds: float) -> None:
        """Move virtual time forward, firing everything that falls due."""
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target:
            due, _, handle, callback, interval = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = due
            if interval is None:
                handle._cancelled = True
            self._invoke(handle, callback)
            if interval is not None and not handle.cancelled:
                self._push(due + interval, handle, callback, interval)
        self._now = target

    @property
    def pending(self) -> List[TimerHandle]:
        """Handles still waiting to fire."""
        return [entry[2] for entry in self._queue if not entry[2].cancelled]

    def _push(self, due, handle, callback, interval) -> None:
        heapq.heappush(self._queue, (due, next(self._seq), handle, callback, interval))
