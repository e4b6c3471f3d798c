"""
Billing operations on top of the payment provider.

Application identities (token subjects) and Stripe customer ids are kept
apart: ``CustomerDirectory`` maps one to the other, and Stripe customers
carry the subject in their metadata.
"""

import threading
import time
from typing import Any, Dict, Optional

from shared.errors import NotFoundError, PaymentProviderError, ValidationError
from shared.logging import get_logger

from ..adapters.payment_client import StripePaymentClient
from ..auth.tokens import Identity
from ..credits.ledger import CreditGate
from ..domain.plans import CREDIT_PACKAGES, PlanTier, SUBSCRIPTION_PLANS


BENCHMARK_REPORT_PRICES = {
    "healthcare": 199900,
    "fintech": 249900,
    "ecommerce": 179900,
}
DEFAULT_BENCHMARK_REPORT_PRICE = 199900

REVENUE_PERIODS = {
    "day": 24 * 60 * 60,
    "week": 7 * 24 * 60 * 60,
    "month": 30 * 24 * 60 * 60,
    "year": 365 * 24 * 60 * 60,
}


class CustomerDirectory:
    """Maps application subjects to payment provider customer ids."""

    def __init__(self):
        self._customers: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, subject: str) -> Optional[str]:
        with self._lock:
            return self._customers.get(subject)

    def remember(self, subject: str, customer_id: str) -> None:
        with self._lock:
            self._customers[subject] = customer_id


class BillingService:
    """Subscriptions, credit purchases and revenue reporting."""

    def __init__(self, payment_client: StripePaymentClient, credit_gate: CreditGate,
                 directory: Optional[CustomerDirectory] = None):
        self.payment_client = payment_client
        self.credit_gate = credit_gate
        self.directory = directory or CustomerDirectory()
        self.logger = get_logger("gateway.billing")

    async def _apply_credit_purchase(self, payment_intent_id: str, subject: str, credits: int) -> Optional[int]:
        """Grant purchased credits once per payment intent, across replicas."""
        return await self.credit_gate.grant_once(subject, credits, reference=payment_intent_id)

    async def get_or_create_customer(self, identity: Identity, payment_method_id: Optional[str] = None) -> str:
        """Resolve the provider customer id for an identity, creating it if needed."""
        customer_id = self.directory.get(identity.subject)

        if customer_id is None and identity.email:
            existing = await self.payment_client.find_customer(identity.email, identity.subject)
            if existing is not None:
                customer_id = existing.id

        if customer_id is not None:
            if payment_method_id:
                await self.payment_client.attach_payment_method(payment_method_id, customer_id)
        else:
            customer = await self.payment_client.create_customer(identity.email, identity.subject, payment_method_id)
            customer_id = customer.id
            self.logger.info("Payment customer created", user_id=identity.subject, customer_id=customer_id)

        self.directory.remember(identity.subject, customer_id)
        return customer_id

    async def create_subscription(self, identity: Identity, plan: str, payment_method_id: str) -> Dict[str, Any]:
        tier = PlanTier.lookup(plan)
        if tier is None:
            raise ValidationError("Invalid plan selected", details={"plan": plan})
        subscription_plan = SUBSCRIPTION_PLANS[tier]

        customer_id = await self.get_or_create_customer(identity, payment_method_id)
        subscription = await self.payment_client.create_subscription(
            customer_id,
            subscription_plan.price_id,
            metadata={"subject_id": identity.subject, "plan": tier.value, "source": "wcagai_v4"},
        )

        self.logger.info("Subscription created", user_id=identity.subject, plan=tier.value,
                         subscription_id=subscription.id)
        return {
            "subscription_id": subscription.id,
            "client_secret": subscription.latest_invoice.payment_intent.client_secret,
            "plan": tier.value,
            "amount": subscription_plan.amount_cents,
            "status": subscription.status,
        }

    async def purchase_credits(self, identity: Identity, package: str, payment_method_id: str) -> Dict[str, Any]:
        credit_package = CREDIT_PACKAGES.get(package)
        if credit_package is None:
            raise ValidationError("Invalid credit package", details={"package": package})

        customer_id = await self.get_or_create_customer(identity, payment_method_id)
        payment_intent = await self.payment_client.create_payment_intent(
            amount=credit_package.amount_cents,
            currency="usd",
            customer=customer_id,
            payment_method=payment_method_id,
            confirm=True,
            metadata={
                "type": "credit_purchase",
                "package": package,
                "credits": str(credit_package.credits),
                "subject_id": identity.subject,
            },
        )

        balance = None
        if payment_intent.status == "succeeded":
            await self.credit_gate.balance_for(identity)
            balance = await self._apply_credit_purchase(payment_intent.id, identity.subject, credit_package.credits)

        self.logger.info(
            "Credits purchased",
            user_id=identity.subject,
            credits=credit_package.credits,
            amount=credit_package.amount_cents,
            status=payment_intent.status,
        )
        return {
            "payment_intent_id": payment_intent.id,
            "credits": credit_package.credits,
            "amount": credit_package.amount_cents,
            "status": payment_intent.status,
            "balance": balance,
        }

    async def charge_ai_fix(self, identity: Identity, fix_id: str, amount_cents: int) -> Dict[str, Any]:
        """Off-session microtransaction for a single fix. Never raises."""
        try:
            customer_id = self.directory.get(identity.subject)
            if customer_id is None:
                return {"success": False, "error": "No payment customer on file"}

            payment_intent = await self.payment_client.create_payment_intent(
                amount=amount_cents,
                currency="usd",
                customer=customer_id,
                confirm=True,
                off_session=True,
                metadata={"type": "ai_fix", "fix_id": fix_id, "subject_id": identity.subject},
            )
            if payment_intent.status != "succeeded":
                return {"success": False, "error": f"Payment failed: {payment_intent.status}"}

            self.logger.info("AI fix charged", user_id=identity.subject, fix_id=fix_id, amount=amount_cents)
            return {"success": True, "payment_intent_id": payment_intent.id}
        except PaymentProviderError as e:
            self.logger.error("AI fix payment failed", user_id=identity.subject, error=e.message)
            return {"success": False, "error": e.message}

    async def purchase_benchmark_report(self, identity: Identity, vertical: str,
                                        custom_data: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        amount = BENCHMARK_REPORT_PRICES.get(vertical, DEFAULT_BENCHMARK_REPORT_PRICE)
        customer_id = await self.get_or_create_customer(identity)

        metadata = {str(k): str(v) for k, v in (custom_data or {}).items()}
        metadata.update({"type": "benchmark_report", "vertical": vertical, "subject_id": identity.subject})

        # High-value purchase, left for the customer to confirm.
        payment_intent = await self.payment_client.create_payment_intent(
            amount=amount,
            currency="usd",
            customer=customer_id,
            confirm=False,
            metadata=metadata,
        )

        self.logger.info("Benchmark report created", user_id=identity.subject, vertical=vertical, amount=amount)
        return {
            "client_secret": payment_intent.client_secret,
            "amount": amount,
            "vertical": vertical,
            "payment_intent_id": payment_intent.id,
        }

    async def _owned_customer_id(self, identity: Identity) -> Optional[str]:
        customer_id = self.directory.get(identity.subject)
        if customer_id is None and identity.email:
            existing = await self.payment_client.find_customer(identity.email, identity.subject)
            customer_id = existing.id if existing is not None else None
        if customer_id is not None:
            self.directory.remember(identity.subject, customer_id)
        return customer_id

    async def cancel_subscription(self, identity: Identity, subscription_id: str) -> Dict[str, Any]:
        """Cancel one of the caller's subscriptions at period end."""
        customer_id = await self._owned_customer_id(identity)
        try:
            subscription = await self.payment_client.retrieve_subscription(subscription_id)
        except PaymentProviderError as e:
            if e.details.get("stripe_code") != "resource_missing":
                raise
            subscription = None

        # Foreign subscriptions are indistinguishable from missing ones.
        if subscription is None or customer_id is None or subscription.get("customer") != customer_id:
            self.logger.warning("Subscription cancel refused", user_id=identity.subject,
                                subscription_id=subscription_id)
            raise NotFoundError("Subscription not found", details={"subscription_id": subscription_id})

        subscription = await self.payment_client.cancel_subscription_at_period_end(subscription_id)
        self.logger.info("Subscription canceled at period end", user_id=identity.subject,
                         subscription_id=subscription_id)
        return {
            "subscription_id": subscription.id,
            "status": subscription.status,
            "cancel_at_period_end": subscription.cancel_at_period_end,
            "current_period_end": subscription.get("current_period_end"),
        }

    async def get_customer_subscription(self, identity: Identity) -> Dict[str, Any]:
        try:
            customer_id = await self._owned_customer_id(identity)
            if customer_id is None:
                return {"active": False}

            subscriptions = await self.payment_client.list_subscriptions(customer_id, status="active", limit=1)
            if not subscriptions:
                return {"active": False}

            subscription = subscriptions[0]
            price_id = subscription["items"]["data"][0]["price"]["id"]
            plan = next((tier.value for tier, p in SUBSCRIPTION_PLANS.items() if p.price_id == price_id), None)
            return {
                "active": True,
                "subscription_id": subscription.id,
                "plan": plan,
                "status": subscription.status,
                "current_period_end": subscription.get("current_period_end"),
                "cancel_at_period_end": subscription.get("cancel_at_period_end"),
            }
        except PaymentProviderError as e:
            self.logger.error("Failed to get subscription", user_id=identity.subject, error=e.message)
            return {"active": False, "error": e.message}

    async def get_revenue_metrics(self, period: str = "month") -> Dict[str, Any]:
        if period not in REVENUE_PERIODS:
            raise ValidationError("Unknown revenue period", details={"period": period})

        period_start = int(time.time()) - REVENUE_PERIODS[period]
        try:
            charges = await self.payment_client.list_charges(created_gte=period_start, limit=100)
            subscriptions = await self.payment_client.list_subscriptions(status="active", limit=100)
        except PaymentProviderError as e:
            self.logger.error("Revenue metrics failed", error=e.message)
            return {"error": e.message}

        succeeded = [charge for charge in charges if charge["status"] == "succeeded"]
        total_revenue = sum(charge["amount"] for charge in succeeded)
        mrr = 0
        for subscription in subscriptions:
            item = subscription["items"]["data"][0]
            mrr += item["price"]["unit_amount"] * (item.get("quantity") or 1)

        return {
            "period": period,
            "total_revenue": total_revenue,
            "total_charges": len(charges),
            "successful_charges": len(succeeded),
            "mrr": mrr,
            "active_subscriptions": len(subscriptions),
            "average_transaction_size": total_revenue / len(succeeded) if succeeded else 0,
        }

    async def handle_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Verify a provider webhook and apply credit purchases it confirms."""
        event = self.payment_client.construct_webhook_event(payload, signature)
        event_type = event["type"]
        data = event["data"]["object"]
        result: Dict[str, Any] = {"received": True, "type": event_type}

        metadata = data.get("metadata") or {}
        if event_type == "payment_intent.succeeded" and metadata.get("type") == "credit_purchase":
            subject = metadata.get("subject_id")
            try:
                credits = int(metadata.get("credits", 0))
            except (TypeError, ValueError):
                credits = 0
            if subject and credits > 0:
                balance = await self._apply_credit_purchase(data["id"], subject, credits)
                result["credited"] = balance is not None
                if balance is not None:
                    result["balance"] = balance

        self.logger.info("Webhook processed", event_type=event_type, event_id=event.get("id"))
        return result
