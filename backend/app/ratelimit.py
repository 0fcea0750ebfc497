"""Gateway rate limiting utilities (fixed-window request counters).

This limits raw request rate per user and route bucket. It is separate from the
claim quota enforced by ClaimLifecycleManager, which counts stored claims.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

import redis.asyncio as redis

from backend.app.db.context import RequestContext


@dataclass
class RetryAfter:
    """Rate limit retry-after information."""

    seconds: int


class RateLimiter(Protocol):
    """Rate limiter interface."""

    async def check_quota(self, key: str, now: datetime) -> RetryAfter | None:
        """Check if quota is available.

        Args:
            key: Rate limit key
            now: Current timestamp

        Returns:
            RetryAfter if over quota, None if allowed
        """
        ...


def make_rate_limit_key(ctx: RequestContext, bucket: str) -> str:
    """Create rate limit key from context and bucket.

    Args:
        ctx: Request context
        bucket: Bucket name (e.g., "claim_create", "claim_verify")

    Returns:
        Rate limit key
    """
    return f"{ctx.user_id}:{bucket}"


class RedisRateLimiter:
    """Redis-based rate limiter using INCR + EXPIRE pattern."""

    def __init__(self, redis_client: redis.Redis, max_requests: int, window_seconds: int = 60) -> None:
        """Initialize rate limiter.

        Args:
            redis_client: Async Redis client
            max_requests: Maximum requests per window
            window_seconds: Window size in seconds (default 60)
        """
        self._redis = redis_client
        self._max_requests = max_requests
        self._window_seconds = window_seconds

    async def check_quota(self, key: str, now: datetime) -> RetryAfter | None:
        """Check if quota is available, counting this request."""
        window_start = int(now.timestamp() / self._window_seconds) * self._window_seconds
        redis_key = f"ratelimit:{key}:{window_start}"

        count = await self._redis.incr(redis_key)

        if count == 1:
            await self._redis.expire(redis_key, self._window_seconds)

        if count > self._max_requests:
            ttl = await self._redis.ttl(redis_key)
            return RetryAfter(seconds=max(1, ttl))

        return None


class InMemoryRateLimiter:
    """In-memory fixed-window rate limiter (tests and single-process runs).

    Expired windows are swept at most once per window length, so idle keys do
    not accumulate.
    """

    def __init__(self, max_requests: int, window_seconds: int = 60) -> None:
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._windows: dict[str, tuple[datetime, int]] = {}
        self._next_sweep: datetime | None = None

    def _evict_expired(self, now: datetime) -> None:
        if self._next_sweep is not None and now < self._next_sweep:
            return
        window = timedelta(seconds=self._window_seconds)
        for key, (window_start, _) in list(self._windows.items()):
            if now >= window_start + window:
                del self._windows[key]
        self._next_sweep = now + window

    async def check_quota(self, key: str, now: datetime) -> RetryAfter | None:
        """Check if quota is available, counting this request."""
        self._evict_expired(now)
        window = self._windows.get(key)
        if window is None or now >= window[0] + timedelta(seconds=self._window_seconds):
            self._windows[key] = (now, 1)
            return None

        window_start, count = window
        if count >= self._max_requests:
            seconds_remaining = int(
                (window_start + timedelta(seconds=self._window_seconds) - now).total_seconds()
            )
            return RetryAfter(seconds=max(1, seconds_remaining))

        self._windows[key] = (window_start, count + 1)
        return None
