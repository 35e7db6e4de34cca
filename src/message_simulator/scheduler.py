"""Coalescing save scheduling.

The repository writes its whole payload at most once per frame. A
:class:`Debouncer` owns a single slot: scheduling while a call is
pending cancels it and schedules a new one, so a burst of keystrokes
ends in exactly one write. The callback reads state when it fires, not
when it was scheduled.

The clock is pluggable:

- :class:`AsyncioScheduler` uses the running event loop's ``call_later``
  (the server).
- :class:`ManualScheduler` queues calls until :meth:`run_pending` is
  called (tests and the CLI, which flushes before exiting).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger(__name__)


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> Cancellable: ...


class AsyncioScheduler:
    """Schedule on an asyncio event loop.

    With no explicit *loop* the running loop is looked up on every call,
    so one instance can be created before the server's loop starts.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> Cancellable:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)


class _ManualHandle:
    def __init__(self, callback: Callable[[], None]) -> None:
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Deterministic scheduler: nothing runs until :meth:`run_pending`."""

    def __init__(self) -> None:
        self._queue: list[_ManualHandle] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> Cancellable:
        handle = _ManualHandle(callback)
        self._queue.append(handle)
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for h in self._queue if not h.cancelled)

    def run_pending(self) -> int:
        """Run every live queued call in order. Returns how many ran."""
        queue, self._queue = self._queue, []
        ran = 0
        for handle in queue:
            if handle.cancelled:
                continue
            handle.callback()
            ran += 1
        return ran


class Debouncer:
    """Single-slot, cancel-and-reschedule wrapper around *callback*."""

    def __init__(
        self,
        scheduler: Scheduler,
        callback: Callable[[], None],
        delay: float,
    ) -> None:
        self._scheduler = scheduler
        self._callback = callback
        self._delay = delay
        self._handle: Cancellable | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = self._scheduler.call_later(self._delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def flush(self) -> bool:
        """Run a pending call now. Returns False if nothing was pending."""
        if self._handle is None:
            return False
        self.cancel()
        self._callback()
        return True

    def _fire(self) -> None:
        self._handle = None
        self._callback()
