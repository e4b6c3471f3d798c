"""
Authentication helpers for the Access Gateway.
"""

from .tokens import AuthErrorKind, Identity, TokenService, TokenVerification

__all__ = ["AuthErrorKind", "Identity", "TokenService", "TokenVerification"]
