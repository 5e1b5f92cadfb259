"""
Time sources for lease expiration.

All times are integer milliseconds on a monotonic scale.
"""

import time
from typing import Protocol


class Clock(Protocol):
    """Anything that can report the current monotonic instant in milliseconds."""

    def elapsed_ms(self) -> int:
        ...


class MonotonicClock:
    """Clock backed by time.monotonic()."""

    def elapsed_ms(self) -> int:
        return time.monotonic_ns() // 1_000_000


class ManualClock:
    """Clock that only moves when told to. Used for replays and tests."""

    def __init__(self, now_ms: int = 0):
        self.now_ms = now_ms

    def elapsed_ms(self) -> int:
        return self.now_ms

    def advance(self, delta_ms: int) -> int:
        if delta_ms < 0:
            raise ValueError("Clock cannot move backwards")
        self.now_ms += delta_ms
        return self.now_ms

    def set(self, now_ms: int) -> None:
        if now_ms < self.now_ms:
            raise ValueError("Clock cannot move backwards")
        self.now_ms = now_ms
