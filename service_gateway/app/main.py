"""
API Gateway service for the WCAGAI Access Layer.
"""

from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks, Depends, HTTPException, Request, Response
from pydantic import BaseModel, Field

from shared.base_service import BaseService
from shared.config import DEVELOPMENT_SIGNING_SECRET, ServiceConfig

from .adapters.completion_client import XAICompletionClient
from .adapters.payment_client import StripePaymentClient
from .auth.tokens import Identity, TokenService
from .billing.service import BillingService
from .credits.ledger import CreditGate, InMemoryCreditStore, RedisCreditStore
from .domain.auth_middleware import AuthMiddleware
from .domain.plans import Feature, PlanTier
from .events.revenue import RequestMeta, RevenueEventLogger
from .ratelimit.tier_limiter import InMemoryWindowCounter, RedisWindowCounter, TierRateLimiter, limiter_for
from .remediation.engine import RemediationEngine, Violation


class IssueTokenRequest(BaseModel):
    """Identity claims for a development token."""
    user_id: str = Field(..., min_length=1)
    email: Optional[str] = None
    plan: str = "developer"
    credits: int = Field(0, ge=0)
    company: Optional[str] = None


class AIFixRequest(Violation):
    cost: int = Field(1, ge=1, description="Credits to charge for this fix")


class BatchFixRequest(BaseModel):
    violations: List[Violation] = Field(..., min_length=1)
    vertical: str = "default"


class SubscriptionRequest(BaseModel):
    plan: str
    payment_method_id: str


class CreditPurchaseRequest(BaseModel):
    package: str
    payment_method_id: str


class BenchmarkReportRequest(BaseModel):
    vertical: str
    custom_data: Dict[str, str] = Field(default_factory=dict)


class GatewayService(BaseService):
    """API Gateway service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None):
        super().__init__("gateway", 8000, config=config)

        signing_secret = self.config.signing_secret()
        if signing_secret == DEVELOPMENT_SIGNING_SECRET:
            self.logger.warning(
                "Using development signing key; tokens issued by this process are not secure",
                env=self.config.env,
            )
        self.token_service = TokenService(signing_secret, metrics=self.metrics)

        if self.config.rate_limit_backend == "redis":
            counter = RedisWindowCounter(self.config.redis_url)
        else:
            counter = InMemoryWindowCounter()
        self.rate_limiter = TierRateLimiter(counter, metrics=self.metrics)

        if self.config.credit_store_backend == "redis":
            credit_store = RedisCreditStore(self.config.redis_url)
        else:
            credit_store = InMemoryCreditStore()
        self.credit_gate = CreditGate(credit_store, metrics=self.metrics)

        self.auth_middleware = AuthMiddleware(self.token_service, self.rate_limiter, self.credit_gate)
        self.revenue_events = RevenueEventLogger(metrics=self.metrics)

        self.payment_client = StripePaymentClient(
            self.config.stripe_secret_key,
            self.config.stripe_webhook_secret,
            metrics=self.metrics,
        )
        self.billing_service = BillingService(self.payment_client, self.credit_gate)

        self.completion_client = XAICompletionClient(
            self.config.xai_api_key,
            base_url=self.config.xai_base_url,
            model=self.config.xai_model,
            timeout=self.config.xai_timeout_seconds,
            metrics=self.metrics,
        )
        self.remediation_engine = RemediationEngine(
            self.completion_client,
            batch_size=self.config.ai_batch_size,
            batch_delay_seconds=self.config.ai_batch_delay_seconds,
        )

        self._setup_gateway_routes()

    def _access(self, feature: Optional[Feature] = None):
        """Dependency running the access pipeline, optionally gating a feature."""
        async def dependency(request: Request, response: Response) -> Identity:
            identity = await self.auth_middleware.process_request(request, feature)
            decision = getattr(request.state, "rate_limit", None)
            if decision is not None:
                response.headers.update(decision.headers())
            return identity
        return dependency

    def _record(self, background_tasks: BackgroundTasks, event_type: str, identity: Identity,
                request: Request, **extra: Any) -> None:
        background_tasks.add_task(
            self.revenue_events.record, event_type, identity, RequestMeta.from_request(request), **extra
        )

    async def _check_dependencies(self) -> Dict[str, str]:
        return {
            "rate_limit_backend": self.config.rate_limit_backend,
            "credit_store_backend": self.config.credit_store_backend,
            "completion_provider": self.completion_client.circuit_breaker.state.value,
        }

    async def _shutdown(self) -> None:
        for backend in (self.rate_limiter.counter, self.credit_gate.store):
            close = getattr(backend, "close", None)
            if close is not None:
                await close()

    def _setup_gateway_routes(self):
        """Set up gateway-specific routes."""

        @self.app.get("/")
        async def root():
            return {
                "service": "gateway",
                "message": "WCAGAI Access Layer - API Gateway",
                "version": "1.0.0",
            }

        @self.app.post("/auth/token")
        async def issue_token(body: IssueTokenRequest):
            """Issue a token for supplied claims (development environments only)."""
            if not self.config.is_development:
                raise HTTPException(status_code=404, detail="Not Found")

            identity = Identity(
                subject=body.user_id,
                email=body.email,
                plan=PlanTier.parse(body.plan),
                credits=body.credits,
                company=body.company,
            )
            # An existing balance wins over the requested claim.
            balance = await self.credit_gate.balance_for(identity)
            identity = identity.with_credits(balance)
            return {
                "access_token": self.token_service.issue(identity),
                "token_type": "Bearer",
                "expires_in": 24 * 60 * 60,
                "plan": identity.plan.value,
                "credits": identity.credits,
            }

        @self.app.post("/auth/refresh")
        async def refresh_token(identity: Identity = Depends(self._access())):
            balance = await self.credit_gate.balance_for(identity)
            return {
                "access_token": self.token_service.reissue(identity, credits=balance),
                "token_type": "Bearer",
                "expires_in": 24 * 60 * 60,
                "credits": balance,
            }

        @self.app.get("/auth/me")
        async def current_identity(identity: Identity = Depends(self._access())):
            budget = limiter_for(identity.plan)
            return {
                "user_id": identity.subject,
                "email": identity.email,
                "plan": identity.plan.value,
                "company": identity.company,
                "credits": await self.credit_gate.balance_for(identity),
                "rate_limit": {
                    "window_seconds": budget.window_seconds,
                    "max_requests": budget.max_requests,
                },
            }

        @self.app.get("/api/v1/ai/pricing")
        async def ai_pricing():
            return self.remediation_engine.get_pricing_info()

        @self.app.post("/api/v1/ai/fixes")
        async def create_ai_fix(
            body: AIFixRequest,
            request: Request,
            background_tasks: BackgroundTasks,
            identity: Identity = Depends(self._access(Feature.AI_FIXES)),
        ):
            charge = await self.auth_middleware.charge_credits(identity, body.cost)
            violation = Violation(**body.model_dump(exclude={"cost"}))
            fix = await self.remediation_engine.generate_fix(violation, customer_id=identity.subject)

            balance = charge.balance
            charged = body.cost
            if fix.is_fallback:
                # Fallback suggestions are free.
                balance = await self.credit_gate.grant(identity.subject, body.cost)
                charged = 0

            self._record(background_tasks, "ai_fix_generated", identity, request,
                         fix_id=fix.id, credits_charged=charged, fallback=fix.is_fallback)
            return {
                "fix": fix.model_dump(),
                "credits": {"charged": charged, "balance": balance},
                "access_token": self.token_service.reissue(identity, credits=balance),
            }

        @self.app.post("/api/v1/ai/fixes/batch")
        async def create_ai_fix_batch(
            body: BatchFixRequest,
            request: Request,
            background_tasks: BackgroundTasks,
            identity: Identity = Depends(self._access(Feature.AI_FIXES)),
        ):
            cost = len(body.violations)
            charge = await self.auth_middleware.charge_credits(identity, cost)
            result = await self.remediation_engine.generate_batch_fixes(
                body.violations, body.vertical, customer_id=identity.subject
            )

            balance = charge.balance
            refunded = sum(1 for fix in result.fixes if fix.is_fallback)
            if refunded:
                balance = await self.credit_gate.grant(identity.subject, refunded)

            self._record(background_tasks, "ai_fix_batch_generated", identity, request,
                         fixes=result.summary.total_fixes, credits_charged=cost - refunded)
            return {
                **result.model_dump(),
                "credits": {"charged": cost - refunded, "balance": balance},
                "access_token": self.token_service.reissue(identity, credits=balance),
            }

        @self.app.post("/billing/subscriptions")
        async def create_subscription(
            body: SubscriptionRequest,
            request: Request,
            background_tasks: BackgroundTasks,
            identity: Identity = Depends(self._access()),
        ):
            result = await self.billing_service.create_subscription(identity, body.plan, body.payment_method_id)
            self._record(background_tasks, "subscription_created", identity, request,
                         target_plan=result["plan"], amount=result["amount"])
            return result

        @self.app.get("/billing/subscription")
        async def get_subscription(identity: Identity = Depends(self._access())):
            return await self.billing_service.get_customer_subscription(identity)

        @self.app.delete("/billing/subscriptions/{subscription_id}")
        async def cancel_subscription(
            subscription_id: str,
            request: Request,
            background_tasks: BackgroundTasks,
            identity: Identity = Depends(self._access()),
        ):
            result = await self.billing_service.cancel_subscription(identity, subscription_id)
            self._record(background_tasks, "subscription_canceled", identity, request,
                         subscription_id=subscription_id)
            return result

        @self.app.post("/billing/credits")
        async def purchase_credits(
            body: CreditPurchaseRequest,
            request: Request,
            background_tasks: BackgroundTasks,
            identity: Identity = Depends(self._access()),
        ):
            result = await self.billing_service.purchase_credits(identity, body.package, body.payment_method_id)
            if result["balance"] is not None:
                result["access_token"] = self.token_service.reissue(identity, credits=result["balance"])
            self._record(background_tasks, "credits_purchased", identity, request,
                         package=body.package, amount=result["amount"], status=result["status"])
            return result

        @self.app.post("/billing/benchmark-reports")
        async def purchase_benchmark_report(
            body: BenchmarkReportRequest,
            request: Request,
            background_tasks: BackgroundTasks,
            identity: Identity = Depends(self._access(Feature.VERTICAL_DISCOVERY)),
        ):
            result = await self.billing_service.purchase_benchmark_report(identity, body.vertical, body.custom_data)
            self._record(background_tasks, "benchmark_report_created", identity, request,
                         vertical=body.vertical, amount=result["amount"])
            return result

        @self.app.post("/billing/webhook")
        async def billing_webhook(request: Request):
            payload = await request.body()
            return await self.billing_service.handle_webhook(payload, request.headers.get("Stripe-Signature"))


def create_app(config: Optional[ServiceConfig] = None):
    """Create FastAPI application."""
    service = GatewayService(config)
    return service.app


if __name__ == "__main__":
    service = GatewayService()
    service.run()
