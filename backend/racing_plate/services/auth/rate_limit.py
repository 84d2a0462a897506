"""Sliding-window-log limiter for authentication attempts.

Every attempt inside the window is recorded with its timestamp; an attempt
is refused once ``limit`` attempts already fall inside the trailing window.
"""

import math
import threading
import time
import uuid
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, Optional

from racing_plate.errors import RateLimited


class MemoryRateLimiter:
    """Process-local limiter. Each server instance counts separately."""

    def __init__(self, limit: int = 5, window_seconds: int = 900, clock: Callable[[], float] = time.time):
        self.limit = limit
        self.window_seconds = window_seconds
        self.clock = clock
        self._attempts: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def hit(self, key: str) -> None:
        """Record an attempt for ``key`` or raise ``RateLimited``."""
        now = self.clock()
        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(now)
            log = self._attempts[key]
            while log and now - log[0] >= self.window_seconds:
                log.popleft()
            if len(log) >= self.limit:
                retry_after = max(1, math.ceil(self.window_seconds - (now - log[0])))
                raise RateLimited(retry_after=retry_after)
            log.append(now)

    def reset(self, key: str) -> None:
        with self._lock:
            self._attempts.pop(key, None)

    def _sweep(self, now: float) -> None:
        # Drop keys whose newest attempt has left the window. Caller holds the lock.
        stale = [k for k, log in self._attempts.items() if not log or now - log[-1] >= self.window_seconds]
        for k in stale:
            del self._attempts[k]
        self._last_sweep = now


# Returns {allowed, retry_after_ms}
_HIT_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
redis.call('zremrangebyscore', key, '-inf', now - window)
local count = redis.call('zcard', key)
if count >= limit then
    local oldest = redis.call('zrange', key, 0, 0, 'WITHSCORES')
    return {0, math.ceil(window - (now - tonumber(oldest[2])))}
end
redis.call('zadd', key, now, ARGV[4])
redis.call('pexpire', key, window)
return {1, 0}
"""


class RedisRateLimiter:
    """Shared limiter backed by a sorted set per key."""

    def __init__(self, client, limit: int = 5, window_seconds: int = 900, prefix: str = 'ratelimit:auth',
                 clock: Callable[[], float] = time.time):
        self.client = client
        self.limit = limit
        self.window_seconds = window_seconds
        self.prefix = prefix
        self.clock = clock
        self._hit = client.register_script(_HIT_SCRIPT)

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def hit(self, key: str) -> None:
        now_ms = int(self.clock() * 1000)
        allowed, retry_after_ms = self._hit(
            keys=[self._key(key)],
            args=[now_ms, self.window_seconds * 1000, self.limit, f"{now_ms}-{uuid.uuid4().hex}"],
        )
        if not int(allowed):
            raise RateLimited(retry_after=max(1, math.ceil(int(retry_after_ms) / 1000)))

    def reset(self, key: str) -> None:
        self.client.delete(self._key(key))


def rate_limit_key(email: Optional[str]) -> Optional[str]:
    if not email or not isinstance(email, str):
        return None
    return email.strip().lower() or None
