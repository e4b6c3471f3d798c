"""
AI-assisted accessibility fix generation.

Suggestions come from the completion provider; when it fails the engine
returns a deterministic, unpriced fallback instead of an error.
"""

import asyncio
import re
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from shared.errors import CompletionProviderError
from shared.logging import get_logger

from ..adapters.completion_client import XAICompletionClient
from ..domain.plans import CREDIT_PACKAGES


class FixPricing(BaseModel):
    cost: float
    sell_price: float
    margin: float
    currency: str = "USD"


class Violation(BaseModel):
    """A WCAG violation to remediate."""
    violation_type: str = Field(..., description="altText, formLabels, focusFix or contrast")
    element: str = Field(..., description="Offending markup")
    context: Optional[str] = Field(None, description="Surrounding page context")
    vertical: str = Field("default", description="Industry vertical for prompt selection")


class AIFix(BaseModel):
    """A generated (or fallback) remediation suggestion."""
    id: str
    violation_type: str
    element: str
    suggestion: str
    pricing: FixPricing
    vertical: str = "default"
    customer_id: Optional[str] = None
    generated_at: str
    wcag_rule: Optional[str] = None
    hipaa_compliant: bool = False
    confidence: Optional[float] = None
    revenue_impact: float = 0.0
    estimated_time: Optional[str] = None
    is_fallback: bool = False


class BatchSummary(BaseModel):
    total_fixes: int
    total_cost: float
    total_revenue: float
    average_confidence: float


class BatchFixResult(BaseModel):
    fixes: List[AIFix]
    summary: BatchSummary


PRICING: Dict[str, FixPricing] = {
    "altText": FixPricing(cost=0.01, sell_price=0.50, margin=0.98),
    "formLabels": FixPricing(cost=0.02, sell_price=1.00, margin=0.98),
    "focusFix": FixPricing(cost=0.01, sell_price=0.75, margin=0.98),
    "contrast": FixPricing(cost=0.005, sell_price=0.25, margin=0.98),
}

WCAG_RULES = {
    "altText": "1.1.1 Non-text Content",
    "formLabels": "3.3.2 Labels or Instructions",
    "focusFix": "2.4.7 Focus Visible",
    "contrast": "1.4.3 Contrast (Minimum)",
}

ESTIMATED_TIMES = {
    "altText": "2 minutes",
    "formLabels": "5 minutes",
    "focusFix": "10 minutes",
    "contrast": "3 minutes",
}

# Keyed by vertical, then by prompt kind ("altText" or "forms").
VERTICAL_PROMPTS = {
    "healthcare": {
        "altText": "Generate HIPAA-compliant medical image descriptions that are clinical but understandable. "
                   "Focus on diagnostic relevance while protecting patient privacy.",
        "forms": "Create clear healthcare form labels that comply with HHS accessibility requirements. "
                 "Use plain language for patient understanding.",
    },
    "fintech": {
        "altText": "Generate financial chart descriptions focusing on trends, data points, and investment "
                   "implications. Include relevant metrics and time periods.",
        "forms": "Create fintech form labels that are clear about financial transactions, fees, and "
                 "regulatory requirements.",
    },
    "default": {
        "altText": "Generate descriptive alt-text that conveys the essential information of the image for "
                   "screen reader users.",
        "forms": "Create clear, descriptive form labels that help users understand what information is required.",
    },
}

# Percent saved per credit versus the starter package.
CREDIT_SAVINGS = {"starter": 0, "pro": 20, "enterprise": 40}

_TAG_PATTERN = re.compile(r"<[^>]*>")


def _prompt_kind(violation_type: str) -> str:
    return "forms" if violation_type == "formLabels" else violation_type


def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class RemediationEngine:
    """Generates WCAG fix suggestions through the completion provider."""

    def __init__(self, completion_client: XAICompletionClient, batch_size: int = 5,
                 batch_delay_seconds: float = 1.0):
        self.completion_client = completion_client
        self.batch_size = batch_size
        self.batch_delay_seconds = batch_delay_seconds
        self.logger = get_logger("gateway.remediation")

    def build_prompt(self, violation: Violation) -> str:
        kind = _prompt_kind(violation.violation_type)
        vertical_prompts = VERTICAL_PROMPTS.get(violation.vertical, {})
        base_prompt = vertical_prompts.get(kind) or VERTICAL_PROMPTS["default"].get(kind, "")

        return "\n".join([
            "You are an accessibility expert helping fix WCAG violations.",
            "",
            base_prompt,
            "",
            f"Element to fix: {violation.element}",
            f"Context: {violation.context or ''}",
            f"Vertical: {violation.vertical}",
            "",
            "Provide a specific, actionable solution that will make this element compliant with "
            "WCAG 2.2 AA requirements.",
            "",
            "Return only the fix suggestion, no explanations.",
        ])

    @staticmethod
    def calculate_confidence(suggestion: str) -> float:
        """Heuristic confidence from suggestion length."""
        length = len(suggestion)
        if 50 < length < 200:
            return 0.95
        if 20 < length < 300:
            return 0.85
        return 0.75

    async def generate_fix(self, violation: Violation, customer_id: Optional[str] = None) -> AIFix:
        """Generate a priced fix, or a fallback when the provider is unavailable."""
        pricing = PRICING.get(violation.violation_type, PRICING["altText"])

        try:
            suggestion = await self.completion_client.complete(self.build_prompt(violation))
        except CompletionProviderError as e:
            self.logger.error(
                "AI fix generation failed, using fallback",
                violation_type=violation.violation_type,
                error=e.message,
            )
            return self.fallback_fix(violation)

        fix = AIFix(
            id=f"fix_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}",
            violation_type=violation.violation_type,
            element=violation.element,
            suggestion=suggestion,
            pricing=pricing,
            vertical=violation.vertical,
            customer_id=customer_id,
            generated_at=_utc_iso(),
            wcag_rule=WCAG_RULES.get(violation.violation_type, "Unknown"),
            hipaa_compliant=violation.vertical == "healthcare",
            confidence=self.calculate_confidence(suggestion),
            revenue_impact=pricing.sell_price,
            estimated_time=ESTIMATED_TIMES.get(violation.violation_type, "5 minutes"),
        )
        self.logger.info(
            "AI fix generated",
            violation_type=violation.violation_type,
            sell_price=pricing.sell_price,
        )
        return fix

    def fallback_fix(self, violation: Violation) -> AIFix:
        """Deterministic suggestion used when the completion provider fails."""
        text = _TAG_PATTERN.sub("", violation.element).strip()
        fallbacks = {
            "altText": f'Add descriptive alt-text: "{text}"',
            "formLabels": f"Add clear label: {text}",
            "focusFix": "Add visible focus indicator with CSS outline",
            "contrast": "Increase color contrast to meet WCAG AA standards",
        }
        return AIFix(
            id=f"fallback_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}",
            violation_type=violation.violation_type,
            element=violation.element,
            suggestion=fallbacks.get(violation.violation_type, "Manual fix required"),
            pricing=FixPricing(cost=0, sell_price=0, margin=0),
            vertical=violation.vertical,
            generated_at=_utc_iso(),
            wcag_rule=WCAG_RULES.get(violation.violation_type, "Unknown"),
            is_fallback=True,
        )

    async def generate_batch_fixes(self, violations: List[Violation], vertical: str = "default",
                                   customer_id: Optional[str] = None) -> BatchFixResult:
        """Generate fixes in concurrent batches, pausing between batches."""
        self.logger.info("Generating AI fixes", count=len(violations), vertical=vertical)

        fixes: List[AIFix] = []
        for start in range(0, len(violations), self.batch_size):
            batch = violations[start:start + self.batch_size]
            batch_fixes = await asyncio.gather(*(
                self.generate_fix(violation.model_copy(update={"vertical": vertical}), customer_id)
                for violation in batch
            ))
            fixes.extend(batch_fixes)

            if start + self.batch_size < len(violations) and self.batch_delay_seconds > 0:
                await asyncio.sleep(self.batch_delay_seconds)

        total_cost = sum(fix.pricing.sell_price for fix in fixes)
        summary = BatchSummary(
            total_fixes=len(fixes),
            total_cost=round(total_cost, 2),
            total_revenue=round(total_cost * 0.98, 2),
            average_confidence=(
                sum(fix.confidence if fix.confidence is not None else 0.8 for fix in fixes) / len(fixes)
                if fixes else 0.0
            ),
        )
        self.logger.info(
            "AI fix batch complete",
            total_fixes=summary.total_fixes,
            total_cost=summary.total_cost,
            total_revenue=summary.total_revenue,
        )
        return BatchFixResult(fixes=fixes, summary=summary)

    def get_pricing_info(self) -> Dict[str, Any]:
        return {
            "credits": {
                name: {"credits": package.credits, "price": package.price, "savings": CREDIT_SAVINGS.get(name, 0)}
                for name, package in CREDIT_PACKAGES.items()
            },
            "per_fix": {name: pricing.model_dump() for name, pricing in PRICING.items()},
            "guarantee": "98% accuracy or credit refund",
        }
