"""
Plan-based feature gating.
"""

from dataclasses import dataclass
from typing import FrozenSet, Optional, Union

from ..domain.plans import (
    DEFAULT_UPGRADE_PRICE,
    FEATURE_UPGRADE_PRICES,
    Feature,
    PlanTier,
    TIER_FEATURES,
    TierLike,
)

FeatureLike = Union[Feature, str]


@dataclass(frozen=True)
class FeatureDecision:
    """Outcome of a feature gate check."""

    allowed: bool
    feature: str
    current_plan: str
    upgrade_price: Optional[int] = None
    upgrade_url: str = "/pricing"


def features_for(tier: TierLike) -> FrozenSet[Feature]:
    """Allow-list for a tier; an unknown tier has no features."""
    resolved = PlanTier.lookup(tier)
    if resolved is None:
        return frozenset()
    return TIER_FEATURES[resolved]


def _resolve_feature(feature: FeatureLike) -> Optional[Feature]:
    if isinstance(feature, Feature):
        return feature
    try:
        return Feature(feature)
    except ValueError:
        return None


def is_allowed(tier: TierLike, feature: FeatureLike) -> bool:
    """True when the tier's allow-list contains the feature."""
    resolved = _resolve_feature(feature)
    return resolved is not None and resolved in features_for(tier)


def upgrade_price_for(feature: FeatureLike) -> int:
    resolved = _resolve_feature(feature)
    if resolved is None:
        return DEFAULT_UPGRADE_PRICE
    return FEATURE_UPGRADE_PRICES.get(resolved, DEFAULT_UPGRADE_PRICE)


def require(tier: TierLike, feature: FeatureLike) -> FeatureDecision:
    """Check a feature against the tier and attach upsell data on denial."""
    feature_name = feature.value if isinstance(feature, Feature) else str(feature)
    plan_name = tier.value if isinstance(tier, PlanTier) else str(tier)

    if is_allowed(tier, feature):
        return FeatureDecision(allowed=True, feature=feature_name, current_plan=plan_name)

    return FeatureDecision(
        allowed=False,
        feature=feature_name,
        current_plan=plan_name,
        upgrade_price=upgrade_price_for(feature),
    )
