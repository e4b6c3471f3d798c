"""
AI fix credit balances and the credit gate.
"""

from .ledger import CreditDecision, CreditGate, CreditStore, InMemoryCreditStore, RedisCreditStore

__all__ = ["CreditDecision", "CreditGate", "CreditStore", "InMemoryCreditStore", "RedisCreditStore"]
