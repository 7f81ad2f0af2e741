"""Deterministic timer queue driven by fix timestamps."""

import heapq
from typing import Callable, Optional


class Timer:
    """Handle for a scheduled callback"""

    def __init__(self, when: float, callback: Callable[[], None]):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class TimerQueue:
    """Single-threaded scheduler.

    Nothing runs on its own: callers move time forward with advance(), and
    due callbacks fire in (time, scheduling order).
    """

    def __init__(self, start: float = 0.0):
        self._t = start
        self._q: list[tuple[float, int, Timer]] = []
        self._seq = 0

    @property
    def now(self) -> float:
        return self._t

    def call_later(self, delay: float, callback: Callable[[], None]) -> Timer:
        return self.call_at(self._t + max(delay, 0.0), callback)

    def call_at(self, when: float, callback: Callable[[], None]) -> Timer:
        timer = Timer(when, callback)
        self._seq += 1
        heapq.heappush(self._q, (when, self._seq, timer))
        return timer

    def advance(self, to: Optional[float] = None) -> int:
        """Run every timer due at or before `to`; returns how many fired"""
        if to is None:
            to = self._t
        fired = 0
        while self._q and self._q[0][0] <= to:
            when, _, timer = heapq.heappop(self._q)
            if timer.cancelled:
                continue
            self._t = max(self._t, when)
            timer.callback()
            fired += 1
        self._t = max(self._t, to)
        return fired

    def cancel_all(self):
        for _, _, timer in self._q:
            timer.cancel()
        self._q.clear()

    def pending(self) -> int:
        return sum(1 for _, _, timer in self._q if not timer.cancelled)
