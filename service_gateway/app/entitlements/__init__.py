"""
Entitlement checks for the Gateway: which plan tier unlocks which feature.
"""

from .feature_gate import FeatureDecision, features_for, is_allowed, require

__all__ = ["FeatureDecision", "features_for", "is_allowed", "require"]
