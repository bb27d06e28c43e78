"""
Timers for cooperative, single-threaded playback.

Playback advances through a periodic timer whose callbacks run on the same
thread as every other engine operation. Two schedulers are provided:

- AsyncioScheduler: real time, on an asyncio event loop
- ManualScheduler: virtual time advanced explicitly (headless stepping, tests)
"""

import asyncio
import heapq
import itertools
import logging
from typing import Callable, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None:
        """Prevent the callback from running."""


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run ``callback`` once after ``delay`` seconds."""


class AsyncioScheduler:
    """Schedule callbacks on an asyncio loop (the running loop by default)."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self.loop.call_later(delay, callback)


class _ManualHandle:
    def __init__(self):
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """
    Deterministic scheduler driven by `advance`.

    Callbacks due within the advanced window run in due-time order (ties in
    scheduling order); callbacks scheduled while advancing run in the same
    call if they fall inside the window.
    """

    def __init__(self):
        self.now = 0.0
        self._queue: List[Tuple[float, int, _ManualHandle, Callable[[], None]]] = []
        self._counter = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], None]) -> _ManualHandle:
        handle = _ManualHandle()
        heapq.heappush(self._queue, (self.now + max(delay, 0.0), next(self._counter), handle, callback))
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for _, _, handle, _ in self._queue if not handle.cancelled)

    def advance(self, seconds: float) -> int:
        """Move virtual time forward and run due callbacks. Returns how many ran."""
        target = self.now + seconds
        ran = 0
        while self._queue and self._queue[0][0] <= target:
            due, _, handle, callback = heapq.heappop(self._queue)
            self.now = due
            if handle.cancelled:
                continue
            callback()
            ran += 1
        self.now = target
        return ran


class PeriodicTimer:
    """
    Repeating timer built from one-shot callbacks.

    Each `start` opens a new session; a callback from an older session is
    ignored, so after `cancel` no further tick can fire even if a stale
    callback was already queued.
    """

    def __init__(self, scheduler: Scheduler, period_ms: float, callback: Callable[[], None]):
        if period_ms <= 0:
            raise ValueError(f"Timer period must be > 0 ms, got {period_ms}")
        self.scheduler = scheduler
        self.period_ms = period_ms
        self.callback = callback
        self.session_id = 0
        self._handle: Optional[TimerHandle] = None
        self.running = False

    def start(self) -> None:
        self.cancel()
        self.running = True
        self.session_id += 1
        self._schedule(self.session_id)

    def cancel(self) -> None:
        self.running = False
        self.session_id += 1
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _schedule(self, session_id: int) -> None:
        self._handle = self.scheduler.call_later(
            self.period_ms / 1000.0, lambda: self._tick(session_id)
        )

    def _tick(self, session_id: int) -> None:
        if session_id != self.session_id or not self.running:
            logger.debug(f"Dropping stale timer tick (session {session_id})")
            return
        try:
            self.callback()
        finally:
            # The callback may have cancelled or restarted the timer
            if session_id == self.session_id and self.running:
                self._schedule(session_id)
