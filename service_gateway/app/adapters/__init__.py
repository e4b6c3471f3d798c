"""
Adapters package for the Gateway Service.

Contains client wrappers for the external providers (Stripe payments,
xAI completions). These adapters encapsulate:

- Request shapes and credentials
- Retry policies and circuit breakers
- Error handling that maps to shared errors

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .completion_client import XAICompletionClient
from .payment_client import StripePaymentClient

__all__ = [
    "StripePaymentClient",
    "XAICompletionClient",
]
