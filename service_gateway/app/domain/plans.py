"""
Plan tiers, features and the static tables keyed by them.

Every table keyed by ``PlanTier`` is checked at import time so that adding a
tier without filling in each table fails when the module loads.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Union


class PlanTier(str, Enum):
    """Subscription plan tiers, lowest first."""
    DEVELOPER = "developer"
    COMPLIANCE = "compliance"
    ENTERPRISE = "enterprise"

    @classmethod
    def parse(cls, value: Any) -> "PlanTier":
        """Resolve a claim value to a tier, failing closed to the lowest tier."""
        resolved = cls.lookup(value)
        return resolved if resolved is not None else cls.DEVELOPER

    @classmethod
    def lookup(cls, value: Any) -> Optional["PlanTier"]:
        """Resolve a claim value to a tier, or None when it is not a known tier."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                return None
        return None


class Feature(str, Enum):
    """Feature flags gated by plan tier."""
    URL_SCAN = "url_scan"
    BASIC_REPORTS = "basic_reports"
    VERTICAL_DISCOVERY = "vertical_discovery"
    AI_FIXES = "ai_fixes"
    LEGAL_RISK = "legal_risk"
    API_ACCESS = "api_access"
    WHITE_LABEL = "white_label"


TierLike = Union[PlanTier, str]


@dataclass(frozen=True)
class RateLimitBudget:
    """Request ceiling over a fixed window."""
    window_seconds: int
    max_requests: int


@dataclass(frozen=True)
class CreditPackage:
    """Purchasable bundle of AI fix credits."""
    name: str
    credits: int
    amount_cents: int

    @property
    def price(self) -> int:
        return self.amount_cents // 100


@dataclass(frozen=True)
class SubscriptionPlan:
    """Recurring plan sold through the payment provider."""
    tier: PlanTier
    price_id: str
    amount_cents: int
    name: str
    features: tuple


RATE_LIMIT_WINDOW_SECONDS = 15 * 60

RATE_LIMITS: Dict[PlanTier, RateLimitBudget] = {
    PlanTier.DEVELOPER: RateLimitBudget(RATE_LIMIT_WINDOW_SECONDS, 1_000),
    PlanTier.COMPLIANCE: RateLimitBudget(RATE_LIMIT_WINDOW_SECONDS, 10_000),
    PlanTier.ENTERPRISE: RateLimitBudget(RATE_LIMIT_WINDOW_SECONDS, 100_000),
}

# Enumerated per tier; higher tiers are not derived from lower ones.
TIER_FEATURES: Dict[PlanTier, FrozenSet[Feature]] = {
    PlanTier.DEVELOPER: frozenset({
        Feature.URL_SCAN,
        Feature.BASIC_REPORTS,
    }),
    PlanTier.COMPLIANCE: frozenset({
        Feature.URL_SCAN,
        Feature.VERTICAL_DISCOVERY,
        Feature.AI_FIXES,
        Feature.LEGAL_RISK,
    }),
    PlanTier.ENTERPRISE: frozenset({
        Feature.URL_SCAN,
        Feature.VERTICAL_DISCOVERY,
        Feature.AI_FIXES,
        Feature.LEGAL_RISK,
        Feature.API_ACCESS,
        Feature.WHITE_LABEL,
    }),
}

# Upgrade hints for rate-limited callers.
UPGRADE_URLS: Dict[PlanTier, str] = {
    PlanTier.DEVELOPER: "/pricing",
    PlanTier.COMPLIANCE: "/contact",
    PlanTier.ENTERPRISE: "/contact",
}

SUBSCRIPTION_PLANS: Dict[PlanTier, SubscriptionPlan] = {
    PlanTier.DEVELOPER: SubscriptionPlan(
        tier=PlanTier.DEVELOPER,
        price_id="price_developer_monthly",
        amount_cents=4900,
        name="Developer Plan",
        features=("1,000 scans/month", "Basic reports", "CI/CD integration"),
    ),
    PlanTier.COMPLIANCE: SubscriptionPlan(
        tier=PlanTier.COMPLIANCE,
        price_id="price_compliance_monthly",
        amount_cents=29900,
        name="Compliance Plan",
        features=("10,000 scans/month", "Vertical discovery", "500 AI fixes", "Legal risk scoring"),
    ),
    PlanTier.ENTERPRISE: SubscriptionPlan(
        tier=PlanTier.ENTERPRISE,
        price_id="price_enterprise_monthly",
        amount_cents=99900,
        name="Enterprise Plan",
        features=("Unlimited scans", "All verticals", "Unlimited AI fixes", "API access", "White-label"),
    ),
}

# Features without an entry cost the enterprise plan price to unlock.
FEATURE_UPGRADE_PRICES: Dict[Feature, int] = {
    Feature.VERTICAL_DISCOVERY: SUBSCRIPTION_PLANS[PlanTier.COMPLIANCE].amount_cents // 100,
    Feature.AI_FIXES: SUBSCRIPTION_PLANS[PlanTier.COMPLIANCE].amount_cents // 100,
}
DEFAULT_UPGRADE_PRICE = SUBSCRIPTION_PLANS[PlanTier.ENTERPRISE].amount_cents // 100

CREDIT_PACKAGES: Dict[str, CreditPackage] = {
    "starter": CreditPackage("starter", 100, 4900),
    "pro": CreditPackage("pro", 1000, 39900),
    "enterprise": CreditPackage("enterprise", 10000, 299900),
}


def credit_package_options() -> Dict[str, Dict[str, int]]:
    """Upsell payload listing every purchasable credit package."""
    return {
        name: {"credits": package.credits, "price": package.price}
        for name, package in CREDIT_PACKAGES.items()
    }


def _ensure_exhaustive(name: str, table: Mapping[PlanTier, Any]) -> None:
    missing = [tier.value for tier in PlanTier if tier not in table]
    if missing:
        raise RuntimeError(f"{name} is missing plan tiers: {', '.join(missing)}")


for _name, _table in (
    ("RATE_LIMITS", RATE_LIMITS),
    ("TIER_FEATURES", TIER_FEATURES),
    ("UPGRADE_URLS", UPGRADE_URLS),
    ("SUBSCRIPTION_PLANS", SUBSCRIPTION_PLANS),
):
    _ensure_exhaustive(_name, _table)
