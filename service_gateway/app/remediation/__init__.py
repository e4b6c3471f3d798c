"""
AI fix generation for WCAG violations.
"""

from .engine import AIFix, BatchFixResult, RemediationEngine, Violation

__all__ = ["AIFix", "BatchFixResult", "RemediationEngine", "Violation"]
