"""
Rate limiting package for the Gateway.

Holds the tier-based fixed-window limiter and its counter backends that
enforce per-caller request budgets.
"""

from .tier_limiter import (
    InMemoryWindowCounter,
    RateLimitDecision,
    RedisWindowCounter,
    TierRateLimiter,
    limiter_for,
)

__all__ = [
    "InMemoryWindowCounter",
    "RateLimitDecision",
    "RedisWindowCounter",
    "TierRateLimiter",
    "limiter_for",
]
