"""
Session token issuing and verification for the Access Gateway.

Tokens are HS256 JWTs carrying the caller's identity claims, valid for a
fixed 24 hours from issuance.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

from jose import JWTError, jwt

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..domain.plans import PlanTier


TOKEN_ALGORITHM = "HS256"
TOKEN_LIFETIME = timedelta(hours=24)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Identity:
    """Identity claims carried by a session token."""

    subject: str
    email: Optional[str] = None
    plan: PlanTier = PlanTier.DEVELOPER
    credits: int = 0
    company: Optional[str] = None

    def to_claims(self) -> Dict[str, Any]:
        return {
            "sub": self.subject,
            "email": self.email,
            "plan": self.plan.value,
            "credits": self.credits,
            "company": self.company,
        }

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "Identity":
        """Rebuild an identity from decoded claims.

        Unknown plan values resolve to the developer tier and malformed
        credit values to zero; only a missing subject is rejected.
        """
        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise ValueError("token missing subject claim")

        credits = claims.get("credits")
        if isinstance(credits, bool) or not isinstance(credits, int) or credits < 0:
            credits = 0

        email = claims.get("email")
        company = claims.get("company")
        return cls(
            subject=subject,
            email=email if isinstance(email, str) else None,
            plan=PlanTier.parse(claims.get("plan")),
            credits=credits,
            company=company if isinstance(company, str) else None,
        )

    def with_credits(self, credits: int) -> "Identity":
        return dataclasses.replace(self, credits=credits)


class AuthErrorKind(str, Enum):
    """Reasons a token fails verification."""
    MISSING = "missing"
    INVALID = "invalid"
    EXPIRED = "expired"


@dataclass(frozen=True)
class TokenVerification:
    """Outcome of verifying a session token."""

    identity: Optional[Identity] = None
    error: Optional[AuthErrorKind] = None
    expires_at: Optional[datetime] = None

    @property
    def valid(self) -> bool:
        return self.identity is not None and self.error is None


class TokenService:
    """Issues and verifies signed session tokens."""

    def __init__(
        self,
        signing_secret: str,
        *,
        clock: Callable[[], datetime] = _utcnow,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        if not signing_secret:
            raise ValueError("signing_secret must be a non-empty string")
        self._secret = signing_secret
        self._clock = clock
        self.metrics = metrics
        self.logger = get_logger("gateway.auth.tokens")

    def issue(self, identity: Identity) -> str:
        """Sign the identity claims into a token expiring 24 hours from now."""
        issued_at = int(self._clock().timestamp())
        claims = identity.to_claims()
        claims["iat"] = issued_at
        claims["exp"] = issued_at + int(TOKEN_LIFETIME.total_seconds())
        token = jwt.encode(claims, self._secret, algorithm=TOKEN_ALGORITHM)

        self.logger.info(
            "Session token issued",
            user_id=identity.subject,
            plan=identity.plan.value,
            credits=identity.credits,
        )
        return token

    def reissue(self, identity: Identity, *, credits: Optional[int] = None) -> str:
        """Issue a fresh token, optionally carrying an updated credit balance."""
        if credits is not None:
            identity = identity.with_credits(credits)
        return self.issue(identity)

    def verify(self, token: Optional[str]) -> TokenVerification:
        """Verify a token, returning a typed result instead of raising."""
        if token is None or not token.strip():
            return self._result(error=AuthErrorKind.MISSING)

        try:
            # Expiry is checked below against the injected clock with sub-second precision.
            claims = jwt.decode(
                token.strip(),
                self._secret,
                algorithms=[TOKEN_ALGORITHM],
                options={"verify_exp": False, "verify_aud": False},
            )
        except JWTError as exc:
            self.logger.warning("Token verification failed", error=str(exc))
            return self._result(error=AuthErrorKind.INVALID)
        except Exception as exc:
            self.logger.warning("Malformed token rejected", error=str(exc))
            return self._result(error=AuthErrorKind.INVALID)

        exp = claims.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            self.logger.warning("Token missing expiry claim")
            return self._result(error=AuthErrorKind.INVALID)

        expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
        if self._clock() >= expires_at:
            self.logger.info("Expired token rejected", user_id=claims.get("sub"))
            return self._result(error=AuthErrorKind.EXPIRED, expires_at=expires_at)

        try:
            identity = Identity.from_claims(claims)
        except ValueError as exc:
            self.logger.warning("Token claims rejected", error=str(exc))
            return self._result(error=AuthErrorKind.INVALID)

        return self._result(identity=identity, expires_at=expires_at)

    def _result(self, identity: Optional[Identity] = None, error: Optional[AuthErrorKind] = None,
                expires_at: Optional[datetime] = None) -> TokenVerification:
        if self.metrics is not None:
            status = error.value if error else "valid"
            self.metrics.increment_counter("token_verifications_total", status=status)
        return TokenVerification(identity=identity, error=error, expires_at=expires_at)
