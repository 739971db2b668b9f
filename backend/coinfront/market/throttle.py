"""Self-imposed request throttling state."""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from typing import Any


class ThrottleWindow:
    """Fixed-window request counter for one logical resource.

    The count resets once ``now - window_start`` exceeds the window length.
    This is a simple reset rather than a sliding log, so a burst straddling
    a window boundary can briefly reach twice the nominal rate.
    """

    def __init__(
        self,
        max_requests: int = 20,
        window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests < 1:
            raise ValueError(f"max_requests must be >= 1, got {max_requests}")
        if window <= 0:
            raise ValueError(f"window must be > 0, got {window}")
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self.window_start = clock()
        self.request_count = 0

    def roll(self) -> None:
        """Start a new window if the current one has elapsed."""
        now = self._clock()
        if now - self.window_start > self.window:
            self.request_count = 0
            self.window_start = now

    def exhausted(self) -> bool:
        self.roll()
        return self.request_count >= self.max_requests

    def acquire(self) -> int:
        """Count one upstream request. Returns the new count."""
        self.roll()
        self.request_count += 1
        return self.request_count

    def retry_after(self) -> int:
        """Whole seconds until the current window ends."""
        remaining = self.window - (self._clock() - self.window_start)
        return max(1, math.ceil(remaining))


class MinIntervalGate:
    """Reuse the last result instead of calling upstream more often than `min_interval`.

    Held independently of the cache so the streaming path can skip an
    upstream call even while nothing else would have prevented one.
    """

    def __init__(self, min_interval: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.min_interval = min_interval
        self._clock = clock
        self.last_fetch_time: float | None = None
        self.last_result: Any | None = None

    def reusable(self) -> Any | None:
        """The last result if still inside the interval, else None."""
        if self.last_result is None or self.last_fetch_time is None:
            return None
        if self._clock() - self.last_fetch_time < self.min_interval:
            return self.last_result
        return None

    def mark_attempt(self) -> None:
        self.last_fetch_time = self._clock()

    def record(self, result: Any) -> None:
        self.last_result = result
