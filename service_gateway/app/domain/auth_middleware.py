"""
Authentication and authorization pipeline for the Gateway.

A request passes token verification, then tier rate limiting, then an
optional feature gate, then an optional credit gate. Each stage raises the
matching typed error to short-circuit the request.
"""

from fastapi import Request
from typing import Optional

from shared.logging import get_logger, set_user_context
from shared.errors import (
    AuthInvalidError,
    AuthRequiredError,
    FeatureDeniedError,
    InsufficientCreditsError,
    RateLimitError,
)

from ..auth.tokens import AuthErrorKind, Identity, TokenService
from ..credits.ledger import CreditDecision, CreditGate
from ..entitlements import feature_gate
from ..ratelimit.tier_limiter import RateLimitDecision, TierRateLimiter
from .plans import Feature


def extract_bearer_token(request: Request) -> Optional[str]:
    """Return the bearer token from the Authorization header, if any."""
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


class AuthMiddleware:
    """Runs the tiered access pipeline for a request."""

    def __init__(self, token_service: TokenService, rate_limiter: TierRateLimiter, credit_gate: CreditGate):
        self.token_service = token_service
        self.rate_limiter = rate_limiter
        self.credit_gate = credit_gate
        self.logger = get_logger("gateway.auth_middleware")

    def authenticate_request(self, request: Request) -> Identity:
        """Verify the bearer token and attach the identity to the request."""
        result = self.token_service.verify(extract_bearer_token(request))

        if result.error == AuthErrorKind.MISSING:
            raise AuthRequiredError(
                "Please sign in or upgrade your plan",
                details={"pricing_url": "/pricing"},
            )
        if not result.valid:
            reason = result.error.value if result.error else AuthErrorKind.INVALID.value
            raise AuthInvalidError(
                "Invalid or expired token. Please refresh your session",
                details={"reason": reason, "refresh_url": "/auth/refresh"},
            )

        identity = result.identity
        request.state.identity = identity
        set_user_context(identity.subject, identity.plan.value)
        return identity

    async def enforce_rate_limit(self, request: Request, identity: Identity) -> RateLimitDecision:
        """Count the request against the caller's tier budget."""
        decision = await self.rate_limiter.check(identity.plan, identity.subject)
        request.state.rate_limit = decision
        if not decision.allowed:
            raise RateLimitError(
                "Rate limit exceeded for your plan. Upgrade for a higher request budget",
                details={
                    "tier": decision.tier.value,
                    "limit": decision.limit,
                    "retry_after": decision.retry_after,
                    "upgrade_url": decision.upgrade_url,
                },
                retry_after=decision.retry_after,
            )
        return decision

    def authorize_feature(self, identity: Identity, feature: Feature) -> None:
        """Reject the request unless the caller's tier includes the feature."""
        decision = feature_gate.require(identity.plan, feature)
        if decision.allowed:
            return

        self.logger.info(
            "Feature denied",
            user_id=identity.subject,
            feature=decision.feature,
            plan=decision.current_plan,
        )
        metrics = self.rate_limiter.metrics
        if metrics is not None:
            metrics.increment_counter("feature_denials_total", feature=decision.feature, tier=decision.current_plan)
        raise FeatureDeniedError(
            f"Feature '{decision.feature}' is not available in the {decision.current_plan} plan",
            details={
                "feature": decision.feature,
                "current_plan": decision.current_plan,
                "upgrade_url": decision.upgrade_url,
                "upgrade_price": decision.upgrade_price,
            },
        )

    async def charge_credits(self, identity: Identity, cost: int = 1) -> CreditDecision:
        """Deduct AI fix credits, rejecting the request when the balance is short."""
        decision = await self.credit_gate.charge(identity, cost)
        if not decision.allowed:
            raise InsufficientCreditsError(
                "Not enough credits for this request. Purchase a credit package to continue",
                details={
                    "required": decision.required,
                    "remaining": decision.remaining,
                    "purchase_url": decision.purchase_url,
                    "upgrade_options": decision.upgrade_options,
                },
            )
        return decision

    async def process_request(self, request: Request, feature: Optional[Feature] = None) -> Identity:
        """Authenticate, rate limit and optionally feature-gate a request."""
        identity = self.authenticate_request(request)
        await self.enforce_rate_limit(request, identity)
        if feature is not None:
            self.authorize_feature(identity, feature)
        return identity
