"""Ambient clocks.

Time is read lazily at the moment an operation runs; nothing fires on a timer.
"""

from __future__ import annotations

import time


class SystemClock:
    def now(self) -> int:
        return int(time.time())


class ManualClock:
    """Monotonic, hand-advanced clock for tests and dry runs."""

    def __init__(self, start: int = 0) -> None:
        self._now = int(start)

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("clock cannot move backwards")
        self._now += int(seconds)
        return self._now

    def set(self, timestamp: int) -> int:
        if timestamp < self._now:
            raise ValueError("clock cannot move backwards")
        self._now = int(timestamp)
        return self._now
