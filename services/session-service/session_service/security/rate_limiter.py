"""In-memory fixed window rate limiter implementation."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    """Result of counting one request against a key's current window."""

    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: int


@dataclass(slots=True)
class _Window:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    """Thread-safe fixed window rate limiter.

    Each key gets a counter that starts on its first request and resets once
    ``window_seconds`` have elapsed. The state lives in this instance only, so
    several processes each enforce their own budget.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialise limiter parameters and per-key storage."""
        self._max_requests = max_requests
        self._window = window_seconds
        self._clock = clock
        self._windows: Dict[str, _Window] = {}
        self._next_sweep = clock() + window_seconds
        self._lock = Lock()

    @property
    def max_requests(self) -> int:
        return self._max_requests

    @property
    def window_seconds(self) -> int:
        return self._window

    def hit(self, key: str) -> RateLimitDecision:
        """Count a request for ``key`` and report whether it is within the limit."""
        now = self._clock()
        with self._lock:
            if now >= self._next_sweep:
                self._drop_elapsed(now)
            window = self._windows.get(key)
            if window is None or window.reset_at <= now:
                window = _Window(count=0, reset_at=now + self._window)
                self._windows[key] = window
            window.count += 1
            count, reset_at = window.count, window.reset_at

        allowed = count <= self._max_requests
        return RateLimitDecision(
            allowed=allowed,
            limit=self._max_requests,
            remaining=max(0, self._max_requests - count),
            reset_at=reset_at,
            retry_after=0 if allowed else max(1, math.ceil(reset_at - now)),
        )

    def allow(self, key: str) -> bool:
        """Return ``True`` when the request is within the configured rate limit."""
        return self.hit(key).allowed

    def prune(self) -> int:
        """Drop windows that have already reset; returns how many were removed."""
        now = self._clock()
        with self._lock:
            return self._drop_elapsed(now)

    def _drop_elapsed(self, now: float) -> int:
        # caller holds the lock; hit() sweeps at most once per window
        expired = [key for key, window in self._windows.items() if window.reset_at <= now]
        for key in expired:
            del self._windows[key]
        self._next_sweep = now + self._window
        return len(expired)
