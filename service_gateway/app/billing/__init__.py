"""
Billing on top of the payment provider: subscriptions, credit packages,
benchmark reports and revenue reporting.
"""

from .service import BillingService, CustomerDirectory

__all__ = ["BillingService", "CustomerDirectory"]
