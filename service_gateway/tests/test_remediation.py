"""
Unit tests for the remediation engine.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from service_gateway.app.remediation.engine import RemediationEngine, Violation
from shared.errors import CompletionProviderError
from shared.test_helpers import TestDataFactory


SUGGESTION = 'Add alt="Chest X-ray showing clear lungs, no abnormalities" to the image element.'


class TestRemediationEngine:
    """Test cases for RemediationEngine."""

    @pytest.fixture
    def completion_client(self):
        client = MagicMock()
        client.complete = AsyncMock(return_value=SUGGESTION)
        return client

    @pytest.fixture
    def engine(self, completion_client):
        return RemediationEngine(completion_client, batch_size=2, batch_delay_seconds=0)

    @pytest.fixture
    def violation(self):
        return Violation(
            violation_type="altText",
            element='<img src="/xray.png">',
            context="Patient imaging results",
            vertical="healthcare",
        )

    def test_prompt_uses_vertical_instructions(self, engine, violation):
        prompt = engine.build_prompt(violation)

        assert "HIPAA-compliant" in prompt
        assert 'Element to fix: <img src="/xray.png">' in prompt
        assert "Vertical: healthcare" in prompt

    def test_prompt_falls_back_to_default_vertical(self, engine):
        prompt = engine.build_prompt(Violation(violation_type="formLabels", element="<input>", vertical="retail"))
        assert "Create clear, descriptive form labels" in prompt

    @pytest.mark.parametrize("length,expected", [(100, 0.95), (250, 0.85), (10, 0.75), (400, 0.75)])
    def test_confidence(self, length, expected):
        assert RemediationEngine.calculate_confidence("x" * length) == expected

    @pytest.mark.asyncio
    async def test_generate_fix(self, engine, violation, completion_client):
        fix = await engine.generate_fix(violation, customer_id="user-1")

        completion_client.complete.assert_awaited_once()
        assert fix.suggestion == SUGGESTION
        assert fix.pricing.sell_price == 0.50
        assert fix.wcag_rule == "1.1.1 Non-text Content"
        assert fix.hipaa_compliant is True
        assert fix.confidence == 0.95
        assert fix.customer_id == "user-1"
        assert fix.is_fallback is False
        assert fix.id.startswith("fix_")

    @pytest.mark.asyncio
    async def test_provider_failure_returns_fallback(self, engine, completion_client):
        completion_client.complete.side_effect = CompletionProviderError("timeout")
        violation = Violation(violation_type="formLabels", element="<label>Date of birth</label>")

        fix = await engine.generate_fix(violation)

        assert fix.is_fallback is True
        assert fix.suggestion == "Add clear label: Date of birth"
        assert fix.pricing.sell_price == 0
        assert fix.id.startswith("fallback_")

    @pytest.mark.asyncio
    async def test_unknown_violation_type_fallback(self, engine, completion_client):
        completion_client.complete.side_effect = CompletionProviderError("down")
        fix = await engine.generate_fix(Violation(violation_type="keyboardTrap", element="<div>"))

        assert fix.suggestion == "Manual fix required"
        assert fix.wcag_rule == "Unknown"

    @pytest.mark.asyncio
    async def test_batch_fixes(self, engine, completion_client):
        violations = [Violation(**v) for v in TestDataFactory.create_test_violations()]

        result = await engine.generate_batch_fixes(violations, vertical="fintech", customer_id="user-1")

        assert completion_client.complete.await_count == 3
        assert [fix.vertical for fix in result.fixes] == ["fintech"] * 3
        assert result.summary.total_fixes == 3
        assert result.summary.total_cost == 1.75
        assert result.summary.total_revenue == round(1.75 * 0.98, 2)
        assert result.summary.average_confidence == pytest.approx(0.95)

    @pytest.mark.asyncio
    async def test_batch_with_partial_failure(self, engine, completion_client):
        completion_client.complete.side_effect = [SUGGESTION, CompletionProviderError("down")]
        violations = [
            Violation(violation_type="altText", element="<img>"),
            Violation(violation_type="focusFix", element="<a>"),
        ]

        result = await engine.generate_batch_fixes(violations)

        assert [fix.is_fallback for fix in result.fixes] == [False, True]
        assert result.summary.total_cost == 0.50
        # Fallback fixes count as 0.8 confidence.
        assert result.summary.average_confidence == pytest.approx((0.95 + 0.8) / 2)

    def test_pricing_info(self, engine):
        info = engine.get_pricing_info()

        assert info["credits"]["pro"] == {"credits": 1000, "price": 399, "savings": 20}
        assert info["per_fix"]["contrast"]["sell_price"] == 0.25
        assert info["guarantee"] == "98% accuracy or credit refund"
