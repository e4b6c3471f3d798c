"""
Stripe client for the Gateway.

Wraps the blocking Stripe SDK in worker threads and maps SDK failures to
``PaymentProviderError``. The API key is passed per call rather than set on
the ``stripe`` module.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional

import stripe

from shared.errors import PaymentProviderError, WebhookVerificationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector


class StripePaymentClient:
    """Client for the payment provider."""

    def __init__(self, secret_key: Optional[str], webhook_secret: Optional[str] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.metrics = metrics
        self.logger = get_logger("gateway.payment_client")

    async def _call(self, operation: str, func: Callable[..., Any], *args, **params) -> Any:
        if not self.secret_key:
            raise PaymentProviderError("Stripe secret key is not configured", details={"operation": operation})

        try:
            if self.metrics is not None:
                with self.metrics.time_operation("provider_call_duration_seconds", provider="stripe"):
                    return await asyncio.to_thread(func, *args, api_key=self.secret_key, **params)
            return await asyncio.to_thread(func, *args, api_key=self.secret_key, **params)
        except stripe.StripeError as e:
            self.logger.error("Stripe call failed", operation=operation, error=str(e))
            raise PaymentProviderError(
                f"{operation} failed: {e.user_message or str(e)}",
                details={"operation": operation, "stripe_code": getattr(e, "code", None)}
            ) from e

    async def find_customer(self, email: str, subject_id: str) -> Optional[Any]:
        """Find the customer created for an application identity."""
        customers = await self._call("list_customers", stripe.Customer.list, email=email, limit=10)
        for customer in customers.data:
            metadata = customer.get("metadata") or {}
            if metadata.get("subject_id") == subject_id:
                return customer
        return None

    async def create_customer(self, email: Optional[str], subject_id: str,
                              payment_method_id: Optional[str] = None) -> Any:
        params: Dict[str, Any] = {
            "metadata": {"subject_id": subject_id, "source": "wcagai_v4"},
        }
        if email:
            params["email"] = email
        if payment_method_id:
            params["payment_method"] = payment_method_id
            params["invoice_settings"] = {"default_payment_method": payment_method_id}
        return await self._call("create_customer", stripe.Customer.create, **params)

    async def attach_payment_method(self, payment_method_id: str, customer_id: str) -> Any:
        return await self._call(
            "attach_payment_method", stripe.PaymentMethod.attach, payment_method_id, customer=customer_id
        )

    async def create_subscription(self, customer_id: str, price_id: str, metadata: Dict[str, str]) -> Any:
        return await self._call(
            "create_subscription",
            stripe.Subscription.create,
            customer=customer_id,
            items=[{"price": price_id}],
            payment_behavior="default_incomplete",
            payment_settings={"save_default_payment_method": "on_subscription"},
            expand=["latest_invoice.payment_intent"],
            metadata=metadata,
        )

    async def retrieve_subscription(self, subscription_id: str) -> Any:
        return await self._call("retrieve_subscription", stripe.Subscription.retrieve, subscription_id)

    async def cancel_subscription_at_period_end(self, subscription_id: str) -> Any:
        return await self._call(
            "cancel_subscription", stripe.Subscription.modify, subscription_id, cancel_at_period_end=True
        )

    async def list_subscriptions(self, customer_id: Optional[str] = None, status: str = "active",
                                 limit: int = 100) -> List[Any]:
        params: Dict[str, Any] = {"status": status, "limit": limit}
        if customer_id:
            params["customer"] = customer_id
        result = await self._call("list_subscriptions", stripe.Subscription.list, **params)
        return list(result.data)

    async def create_payment_intent(self, **params) -> Any:
        return await self._call("create_payment_intent", stripe.PaymentIntent.create, **params)

    async def list_charges(self, created_gte: int, limit: int = 100) -> List[Any]:
        result = await self._call("list_charges", stripe.Charge.list, created={"gte": created_gte}, limit=limit)
        return list(result.data)

    def construct_webhook_event(self, payload: bytes, signature: Optional[str]) -> Any:
        """Verify a webhook payload against its signature header."""
        if not self.webhook_secret:
            raise WebhookVerificationError("Webhook secret is not configured")
        if not signature:
            raise WebhookVerificationError("Missing Stripe-Signature header")

        try:
            return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as e:
            self.logger.warning("Webhook payload invalid", error=str(e))
            raise WebhookVerificationError("Invalid webhook payload") from e
        except stripe.SignatureVerificationError as e:
            self.logger.warning("Webhook signature verification failed", error=str(e))
            raise WebhookVerificationError("Invalid webhook signature") from e
