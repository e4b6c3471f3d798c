"""
Unit tests for plan-based feature gating.
"""

import pytest

from service_gateway.app.domain.plans import Feature, PlanTier, TIER_FEATURES
from service_gateway.app.entitlements.feature_gate import features_for, is_allowed, require


D, C, E = PlanTier.DEVELOPER, PlanTier.COMPLIANCE, PlanTier.ENTERPRISE

# (feature, developer, compliance, enterprise)
FEATURE_MATRIX = [
    (Feature.URL_SCAN, True, True, True),
    (Feature.BASIC_REPORTS, True, False, False),
    (Feature.VERTICAL_DISCOVERY, False, True, True),
    (Feature.AI_FIXES, False, True, True),
    (Feature.LEGAL_RISK, False, True, True),
    (Feature.API_ACCESS, False, False, True),
    (Feature.WHITE_LABEL, False, False, True),
]


class TestFeatureGate:
    """Test cases for the feature gate."""

    @pytest.mark.parametrize("feature,developer,compliance,enterprise", FEATURE_MATRIX)
    def test_allow_lists(self, feature, developer, compliance, enterprise):
        assert is_allowed(D, feature) is developer
        assert is_allowed(C, feature) is compliance
        assert is_allowed(E, feature) is enterprise

    def test_matrix_covers_every_feature(self):
        assert {row[0] for row in FEATURE_MATRIX} == set(Feature)

    def test_every_tier_has_an_allow_list(self):
        assert set(TIER_FEATURES) == set(PlanTier)

    def test_string_inputs(self):
        assert is_allowed("compliance", "ai_fixes")
        assert not is_allowed("developer", "ai_fixes")

    def test_unknown_feature_denied_everywhere(self):
        for tier in PlanTier:
            assert not is_allowed(tier, "time_travel")

    def test_unknown_tier_has_no_features(self):
        assert features_for("platinum") == frozenset()
        assert not is_allowed("platinum", Feature.URL_SCAN)

    def test_denial_carries_upgrade_price(self):
        decision = require(D, Feature.AI_FIXES)

        assert decision.allowed is False
        assert decision.feature == "ai_fixes"
        assert decision.current_plan == "developer"
        assert decision.upgrade_price == 299
        assert decision.upgrade_url == "/pricing"

    @pytest.mark.parametrize("feature", [Feature.API_ACCESS, Feature.WHITE_LABEL, "time_travel"])
    def test_default_upgrade_price(self, feature):
        assert require(C, feature).upgrade_price == 999

    def test_allowed_decision_has_no_upsell(self):
        decision = require(E, Feature.WHITE_LABEL)

        assert decision.allowed is True
        assert decision.upgrade_price is None
