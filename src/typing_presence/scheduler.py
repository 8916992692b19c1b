from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from typing import Callable, List, Optional, Protocol, Tuple


def _now_ms() -> int:
    return int(time.monotonic() * 1000)


class TimerHandle:
    """Cancellable reference to a callback scheduled for ``when_ms``."""

    __slots__ = ("when_ms", "_callback", "_cancelled", "_loop_handle")

    def __init__(self, when_ms: int, callback: Callable[[], None]) -> None:
        self.when_ms = when_ms
        self._callback = callback
        self._cancelled = False
        self._loop_handle: Optional[asyncio.TimerHandle] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._loop_handle is not None:
            self._loop_handle.cancel()
            self._loop_handle = None

    def _run(self) -> None:
        if self._cancelled:
            return
        # A fired handle counts as spent so late cancel() calls are harmless.
        self._cancelled = True
        self._loop_handle = None
        self._callback()


class Scheduler(Protocol):
    def now_ms(self) -> int: ...

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle: ...


class LoopScheduler:
    """Schedules timers on the running asyncio event loop."""

    def __init__(self, *, now_func: Callable[[], int] = _now_ms, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._now = now_func
        self._loop = loop

    def now_ms(self) -> int:
        return self._now()

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        handle = TimerHandle(self._now() + delay_ms, callback)
        handle._loop_handle = loop.call_later(max(delay_ms, 0) / 1000, handle._run)
        return handle


class VirtualScheduler:
    """Deterministic scheduler driven by explicit ``advance`` calls.

    Timers live in a min-heap keyed by ``(when_ms, seq)`` so callbacks with the
    same deadline run in the order they were scheduled. While a callback runs,
    ``now_ms()`` reports that callback's deadline.
    """

    def __init__(self, start_ms: int = 0) -> None:
        self._now = start_ms
        self._heap: List[Tuple[int, int, TimerHandle]] = []
        self._seq = itertools.count()

    def now_ms(self) -> int:
        return self._now

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(self._now + max(delay_ms, 0), callback)
        heapq.heappush(self._heap, (handle.when_ms, next(self._seq), handle))
        return handle

    def pending(self) -> int:
        return sum(1 for _, _, handle in self._heap if not handle.cancelled)

    def next_deadline(self) -> int | None:
        self._drop_cancelled()
        if not self._heap:
            return None
        return self._heap[0][0]

    def advance(self, delta_ms: int) -> int:
        if delta_ms < 0:
            raise ValueError("cannot move virtual time backwards")
        return self.advance_to(self._now + delta_ms)

    def advance_to(self, target_ms: int) -> int:
        """Run every timer due at or before ``target_ms``; return how many fired."""

        if target_ms < self._now:
            raise ValueError("cannot move virtual time backwards")
        fired = 0
        while True:
            self._drop_cancelled()
            if not self._heap or self._heap[0][0] > target_ms:
                break
            when_ms, _, handle = heapq.heappop(self._heap)
            self._now = when_ms
            handle._run()
            fired += 1
        self._now = target_ms
        return fired

    def _drop_cancelled(self) -> None:
        while self._heap and self._heap[0][2].cancelled:
            heapq.heappop(self._heap)
