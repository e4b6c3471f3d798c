"""
Tier-based rate limiter for the Gateway service.

Each plan tier gets a request ceiling over a fixed 15 minute window. Windows
are aligned to multiples of the window length since the epoch, so a request
belongs to the window its arrival time falls into and ties at the boundary
resolve by window start. Counting is delegated to a window counter whose
increment-and-read is atomic per key.
"""

import math
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Protocol, Tuple

import redis.asyncio as redis

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..domain.plans import PlanTier, RATE_LIMITS, RateLimitBudget, TierLike, UPGRADE_URLS


class WindowCounter(Protocol):
    """Atomically increments a per-key counter that expires with its window."""

    async def increment(self, key: str, ttl_seconds: int) -> int:
        ...


class InMemoryWindowCounter:
    """Process-local counter, used in development and tests."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._counts: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()

    async def increment(self, key: str, ttl_seconds: int) -> int:
        now = self._clock()
        with self._lock:
            count, expires_at = self._counts.get(key, (0, 0.0))
            if expires_at <= now:
                count, expires_at = 0, now + ttl_seconds
            count += 1
            self._counts[key] = (count, expires_at)
            if len(self._counts) > 10_000:
                self._purge(now)
            return count

    def _purge(self, now: float) -> None:
        expired = [key for key, (_, expires_at) in self._counts.items() if expires_at <= now]
        for key in expired:
            del self._counts[key]


class RedisWindowCounter:
    """Distributed counter using INCR and EXPIRE in one MULTI transaction."""

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
        return self._redis

    async def increment(self, key: str, ttl_seconds: int) -> int:
        redis_client = await self._get_redis()
        async with redis_client.pipeline(transaction=True) as pipeline:
            pipeline.incr(key)
            pipeline.expire(key, ttl_seconds)
            count, _ = await pipeline.execute()
        return int(count)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a rate limit check."""

    allowed: bool
    tier: PlanTier
    limit: int
    current_count: int
    remaining: int
    reset_in_seconds: int
    upgrade_url: str
    window_start: int = field(default=0)

    @property
    def retry_after(self) -> int:
        return self.reset_in_seconds

    def headers(self) -> Dict[str, str]:
        """Standard RateLimit-* response headers."""
        return {
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(self.remaining),
            "RateLimit-Reset": str(self.reset_in_seconds),
        }


def limiter_for(tier: TierLike) -> RateLimitBudget:
    """Budget for a tier; unrecognized tiers get the developer budget."""
    resolved = PlanTier.lookup(tier)
    if resolved is None:
        return RATE_LIMITS[PlanTier.DEVELOPER]
    return RATE_LIMITS[resolved]


class TierRateLimiter:
    """Enforces per-tier request ceilings per caller."""

    def __init__(
        self,
        counter: WindowCounter,
        *,
        clock: Callable[[], float] = time.time,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.counter = counter
        self._clock = clock
        self.metrics = metrics
        self.logger = get_logger("gateway.rate_limiter")

    def _make_key(self, tier: PlanTier, caller_key: str, window_start: int) -> str:
        """Generate rate limit key."""
        return f"rate_limit:{tier.value}:{caller_key}:{window_start}"

    async def check(self, tier: TierLike, caller_key: str) -> RateLimitDecision:
        """Count one request for the caller and decide whether it is admitted."""
        resolved = PlanTier.parse(tier)
        budget = limiter_for(tier)
        now = self._clock()
        window = budget.window_seconds
        window_start = int(now // window) * window
        reset_in = max(1, math.ceil(window_start + window - now))

        key = self._make_key(resolved, caller_key, window_start)
        count = await self.counter.increment(key, window)

        allowed = count <= budget.max_requests
        decision = RateLimitDecision(
            allowed=allowed,
            tier=resolved,
            limit=budget.max_requests,
            current_count=count,
            remaining=max(0, budget.max_requests - count),
            reset_in_seconds=reset_in,
            upgrade_url=UPGRADE_URLS[resolved],
            window_start=window_start,
        )

        if not allowed:
            self.logger.warning(
                "Rate limit exceeded",
                caller=caller_key,
                tier=resolved.value,
                limit=budget.max_requests,
                retry_after=reset_in,
            )
            if self.metrics is not None:
                self.metrics.increment_counter("rate_limit_hits_total", tier=resolved.value)

        return decision
