"""Soft, UI-level rate limiting: sliding window plus cooldown.

This is a UX guard, not abuse prevention. Queries never mutate anything
observable: expired timestamps are pruned lazily on read.
"""

from __future__ import annotations

import time
from typing import Callable

from models import RateLimitConfig

Clock = Callable[[], int]


def now_ms() -> int:
    return int(time.monotonic() * 1000)


class RateLimiter:
    def __init__(self, config: RateLimitConfig | None = None, clock: Clock = now_ms) -> None:
        self._config = config or RateLimitConfig()
        self._clock = clock
        self._timestamps: list[int] = []
        self._cooldown_deadline: int | None = None

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    def can_request(self) -> bool:
        return self.cooldown_remaining() == 0 and self.requests_remaining() > 0

    def requests_remaining(self) -> int:
        return max(0, self._config.max_requests - len(self._prune(self._clock())))

    def cooldown_remaining(self) -> int:
        if self._cooldown_deadline is None:
            return 0
        return max(0, self._cooldown_deadline - self._clock())

    def retry_after(self) -> int:
        """Milliseconds until ``can_request`` becomes true (0 if it already is)."""
        now = self._clock()
        wait = self.cooldown_remaining()
        in_window = self._prune(now)
        if len(in_window) >= self._config.max_requests:
            # The slot frees once the oldest counted request leaves the window.
            oldest = in_window[len(in_window) - self._config.max_requests]
            wait = max(wait, oldest + self._config.window_ms - now)
        return wait

    def record_request(self) -> None:
        now = self._clock()
        self._timestamps = self._prune(now)
        self._timestamps.append(now)
        self._cooldown_deadline = now + self._config.cooldown_ms

    def reset(self) -> None:
        self._timestamps = []
        self._cooldown_deadline = None

    def _prune(self, now: int) -> list[int]:
        window_start = now - self._config.window_ms
        kept = [ts for ts in self._timestamps if ts > window_start]
        if len(kept) != len(self._timestamps):
            self._timestamps = kept
        return kept
