"""Rate limiting middleware."""

import re
from datetime import UTC, datetime

import redis.asyncio as redis

from backend.app.config import Settings
from backend.app.db.context import RequestContext
from backend.app.ratelimit import (
    InMemoryRateLimiter,
    RateLimiter,
    RedisRateLimiter,
    make_rate_limit_key,
)

_UUID = "[0-9a-fA-F-]{36}"


class RateLimitMiddleware:
    """Maps requests to buckets and enforces each bucket's limiter."""

    def __init__(
        self,
        limiters: dict[str, RateLimiter],
        bucket_map: list[tuple[str, str, str]],
    ) -> None:
        """Initialize rate limit middleware.

        Args:
            limiters: Limiter per bucket name
            bucket_map: (HTTP method, path regex, bucket) rules, first match wins
        """
        self._limiters = limiters
        self._rules = [(method, re.compile(pattern), bucket) for method, pattern, bucket in bucket_map]

    async def check_rate_limit(
        self, method: str, path: str, ctx: RequestContext, now: datetime | None = None
    ) -> tuple[bool, int]:
        """Check if request is allowed under rate limit.

        Args:
            method: HTTP method
            path: Request path
            ctx: Request context
            now: Current time (for testing)

        Returns:
            Tuple of (allowed, retry_after_seconds)
        """
        if now is None:
            now = datetime.now(UTC)

        bucket = self._get_bucket(method, path)
        if bucket is None or bucket not in self._limiters:
            return (True, 0)

        key = make_rate_limit_key(ctx, bucket)
        retry_after = await self._limiters[bucket].check_quota(key, now)

        if retry_after is None:
            return (True, 0)

        return (False, retry_after.seconds)

    def _get_bucket(self, method: str, path: str) -> str | None:
        for rule_method, pattern, bucket in self._rules:
            if rule_method == method and pattern.fullmatch(path):
                return bucket
        return None


def create_default_bucket_map() -> list[tuple[str, str, str]]:
    """Create default bucket mapping.

    Returns:
        (method, path regex, bucket) rules
    """
    return [
        ("POST", r"/claims/create", "claim_create"),
        ("POST", rf"/claims/{_UUID}", "claim_create"),
        ("POST", r"/claims/verify", "claim_verify"),
        ("GET", r"/items/search", "item_search"),
    ]


def build_rate_limit_middleware(settings: Settings) -> RateLimitMiddleware:
    """Build limiters from settings: Redis when configured, in-memory otherwise."""
    limits = {
        "claim_create": (settings.claim_create_per_hour, 3600),
        "claim_verify": (settings.claim_verify_per_15min, 900),
        "item_search": (settings.item_search_per_minute, 60),
    }

    limiters: dict[str, RateLimiter] = {}
    if settings.redis_url:
        client = redis.from_url(settings.redis_url, decode_responses=True)
        for bucket, (max_requests, window) in limits.items():
            limiters[bucket] = RedisRateLimiter(client, max_requests, window)
    else:
        for bucket, (max_requests, window) in limits.items():
            limiters[bucket] = InMemoryRateLimiter(max_requests, window)

    return RateLimitMiddleware(limiters, create_default_bucket_map())
