"""
Unit tests for the tier rate limiter.
"""

import asyncio

import pytest
from unittest.mock import MagicMock, AsyncMock, patch

from service_gateway.app.domain.plans import PlanTier, RATE_LIMITS, RateLimitBudget
from service_gateway.app.ratelimit.tier_limiter import (
    InMemoryWindowCounter,
    RateLimitDecision,
    RedisWindowCounter,
    TierRateLimiter,
    limiter_for,
)
from shared.metrics import MetricsCollector


WINDOW = 15 * 60


class FakeClock:
    def __init__(self, now: float):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestLimiterFor:
    """Test cases for tier budgets."""

    @pytest.mark.parametrize("tier,max_requests", [
        (PlanTier.DEVELOPER, 1_000),
        (PlanTier.COMPLIANCE, 10_000),
        (PlanTier.ENTERPRISE, 100_000),
        ("enterprise", 100_000),
    ])
    def test_budget_per_tier(self, tier, max_requests):
        budget = limiter_for(tier)
        assert budget.window_seconds == WINDOW
        assert budget.max_requests == max_requests

    @pytest.mark.parametrize("tier", ["platinum", "", None])
    def test_unknown_tier_gets_developer_budget(self, tier):
        assert limiter_for(tier) == RATE_LIMITS[PlanTier.DEVELOPER]


class TestTierRateLimiter:
    """Test cases for TierRateLimiter."""

    @pytest.fixture
    def clock(self):
        # 10 seconds into a window.
        return FakeClock(WINDOW * 2000 + 10.0)

    @pytest.fixture
    def rate_limiter(self, clock):
        return TierRateLimiter(InMemoryWindowCounter(clock=clock), clock=clock)

    @pytest.mark.asyncio
    async def test_first_request_allowed(self, rate_limiter):
        decision = await rate_limiter.check(PlanTier.DEVELOPER, "user-1")

        assert decision.allowed is True
        assert decision.current_count == 1
        assert decision.limit == 1_000
        assert decision.remaining == 999
        assert decision.reset_in_seconds == WINDOW - 10
        assert decision.window_start == WINDOW * 2000

    @pytest.mark.asyncio
    async def test_concurrent_requests_admit_exactly_the_ceiling(self, rate_limiter):
        decisions = await asyncio.gather(*(
            rate_limiter.check(PlanTier.DEVELOPER, "user-1") for _ in range(1_001)
        ))

        allowed = [d for d in decisions if d.allowed]
        denied = [d for d in decisions if not d.allowed]
        assert len(allowed) == 1_000
        assert len(denied) == 1
        assert denied[0].remaining == 0
        assert denied[0].retry_after == WINDOW - 10
        assert denied[0].upgrade_url == "/pricing"

    @pytest.mark.asyncio
    async def test_callers_are_counted_separately(self, rate_limiter):
        with patch.dict(RATE_LIMITS, {PlanTier.DEVELOPER: RateLimitBudget(WINDOW, 1)}):
            assert (await rate_limiter.check(PlanTier.DEVELOPER, "user-1")).allowed
            assert (await rate_limiter.check(PlanTier.DEVELOPER, "user-2")).allowed
            assert not (await rate_limiter.check(PlanTier.DEVELOPER, "user-1")).allowed

    @pytest.mark.asyncio
    async def test_new_window_resets_count(self, rate_limiter, clock):
        with patch.dict(RATE_LIMITS, {PlanTier.DEVELOPER: RateLimitBudget(WINDOW, 2)}):
            for _ in range(3):
                decision = await rate_limiter.check(PlanTier.DEVELOPER, "user-1")
            assert not decision.allowed

            # Exactly on the next boundary belongs to the next window.
            clock.now = WINDOW * 2001
            decision = await rate_limiter.check(PlanTier.DEVELOPER, "user-1")
            assert decision.allowed
            assert decision.current_count == 1
            assert decision.reset_in_seconds == WINDOW

    @pytest.mark.asyncio
    async def test_higher_tier_upgrade_url(self, rate_limiter):
        with patch.dict(RATE_LIMITS, {PlanTier.COMPLIANCE: RateLimitBudget(WINDOW, 1)}):
            await rate_limiter.check(PlanTier.COMPLIANCE, "user-1")
            decision = await rate_limiter.check(PlanTier.COMPLIANCE, "user-1")

        assert not decision.allowed
        assert decision.upgrade_url == "/contact"

    @pytest.mark.asyncio
    async def test_unknown_tier_limited_as_developer(self, rate_limiter):
        decision = await rate_limiter.check("platinum", "user-1")

        assert decision.tier == PlanTier.DEVELOPER
        assert decision.limit == 1_000

    def test_key_layout(self, rate_limiter):
        key = rate_limiter._make_key(PlanTier.COMPLIANCE, "user-1", 1800)
        assert key == "rate_limit:compliance:user-1:1800"

    def test_decision_headers(self):
        decision = RateLimitDecision(
            allowed=True,
            tier=PlanTier.DEVELOPER,
            limit=1000,
            current_count=3,
            remaining=997,
            reset_in_seconds=120,
            upgrade_url="/pricing",
        )
        assert decision.headers() == {
            "RateLimit-Limit": "1000",
            "RateLimit-Remaining": "997",
            "RateLimit-Reset": "120",
        }

    @pytest.mark.asyncio
    async def test_denial_recorded_in_metrics(self, clock):
        metrics = MetricsCollector("gateway")
        rate_limiter = TierRateLimiter(InMemoryWindowCounter(clock=clock), clock=clock, metrics=metrics)

        with patch.dict(RATE_LIMITS, {PlanTier.DEVELOPER: RateLimitBudget(WINDOW, 1)}):
            await rate_limiter.check(PlanTier.DEVELOPER, "user-1")
            await rate_limiter.check(PlanTier.DEVELOPER, "user-1")

        assert 'rate_limit_hits_total{tier="developer"} 1.0' in metrics.export().decode()


class TestRedisWindowCounter:
    """Test cases for the Redis counter backend."""

    @pytest.fixture
    def counter(self):
        return RedisWindowCounter("redis://localhost:6379/0")

    @pytest.mark.asyncio
    async def test_increment_uses_transaction(self, counter):
        mock_redis = MagicMock()
        mock_pipeline = MagicMock()
        mock_pipeline.execute = AsyncMock(return_value=[3, True])
        mock_redis.pipeline.return_value.__aenter__.return_value = mock_pipeline

        with patch.object(counter, "_get_redis", new_callable=AsyncMock) as mock_get_redis:
            mock_get_redis.return_value = mock_redis
            count = await counter.increment("rate_limit:developer:user-1:1800", WINDOW)

        assert count == 3
        mock_redis.pipeline.assert_called_once_with(transaction=True)
        mock_pipeline.incr.assert_called_once_with("rate_limit:developer:user-1:1800")
        mock_pipeline.expire.assert_called_once_with("rate_limit:developer:user-1:1800", WINDOW)

    @pytest.mark.asyncio
    async def test_limiter_over_redis_counter(self, counter):
        clock = FakeClock(WINDOW * 4 + 100.0)
        rate_limiter = TierRateLimiter(counter, clock=clock)

        with patch.object(counter, "increment", new_callable=AsyncMock) as mock_increment:
            mock_increment.return_value = 1_001
            decision = await rate_limiter.check(PlanTier.DEVELOPER, "user-1")

        mock_increment.assert_called_once_with(f"rate_limit:developer:user-1:{WINDOW * 4}", WINDOW)
        assert not decision.allowed
        assert decision.retry_after == WINDOW - 100
