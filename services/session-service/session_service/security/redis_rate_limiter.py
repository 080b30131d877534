"""Redis-backed fixed window rate limiter."""

from __future__ import annotations

import math
import time
from typing import Callable, Final

from redis import Redis
from redis.exceptions import ResponseError

from .rate_limiter import RateLimitDecision


class RedisFixedWindowRateLimiter:
    """Distributed fixed window limiter sharing one counter per key across processes."""

    _LUA_SCRIPT: Final[str] = """
    local key = KEYS[1]
    local window_ms = tonumber(ARGV[1])

    local count = redis.call('INCR', key)
    if count == 1 then
        redis.call('PEXPIRE', key, window_ms)
    end
    local ttl = redis.call('PTTL', key)
    if ttl < 0 then
        redis.call('PEXPIRE', key, window_ms)
        ttl = window_ms
    end
    return {count, ttl}
    """

    def __init__(
        self,
        client: Redis,
        *,
        max_requests: int,
        window_seconds: int,
        key_prefix: str = "rate",
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialise the Redis client, window configuration, and Lua script cache."""
        self._client = client
        self._max_requests = max_requests
        self._window_ms = window_seconds * 1000
        self._key_prefix = key_prefix
        self._clock = clock
        self._script = client.register_script(self._LUA_SCRIPT)

    @property
    def max_requests(self) -> int:
        return self._max_requests

    @property
    def window_seconds(self) -> int:
        return self._window_ms // 1000

    def hit(self, key: str) -> RateLimitDecision:
        """Count a request for ``key`` against the shared window."""
        redis_key = f"{self._key_prefix}:{key}"
        try:
            count, ttl_ms = self._script(keys=[redis_key], args=[self._window_ms])
        except ResponseError as exc:
            message = str(exc).lower()
            if "unknown command `evalsha`" in message or "unknown command `eval`" in message:
                count, ttl_ms = self._hit_fallback(redis_key)
            else:
                raise
        return self._decision(int(count), int(ttl_ms))

    def allow(self, key: str) -> bool:
        """Return ``True`` when the key is still within the distributed rate limit."""
        return self.hit(key).allowed

    def _decision(self, count: int, ttl_ms: int) -> RateLimitDecision:
        now = self._clock()
        remaining_s = max(ttl_ms, 0) / 1000
        allowed = count <= self._max_requests
        return RateLimitDecision(
            allowed=allowed,
            limit=self._max_requests,
            remaining=max(0, self._max_requests - count),
            reset_at=now + remaining_s,
            retry_after=0 if allowed else max(1, math.ceil(remaining_s)),
        )

    def _hit_fallback(self, redis_key: str) -> tuple[int, int]:
        """Fallback pure-Python implementation used when Lua is unavailable."""
        pipe = self._client.pipeline()
        pipe.incr(redis_key)
        pipe.pttl(redis_key)
        count, ttl_ms = pipe.execute()
        if ttl_ms is None or int(ttl_ms) < 0:
            self._client.pexpire(redis_key, self._window_ms)
            ttl_ms = self._window_ms
        return int(count), int(ttl_ms)
