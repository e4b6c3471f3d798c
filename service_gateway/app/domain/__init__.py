"""
Domain utilities for the Gateway Service.

- plans: plan tiers, features and the static tables keyed by them.
- auth_middleware: the tiered access pipeline (import it directly; it
  depends on the auth and credits packages, which depend on plans).
"""

from .plans import Feature, PlanTier

__all__ = [
    "Feature",
    "PlanTier",
]
