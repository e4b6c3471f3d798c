"""
Unit tests for session token issuing and verification.
"""

import pytest
from datetime import datetime, timedelta, timezone

from jose import jwt

from service_gateway.app.auth.tokens import AuthErrorKind, Identity, TOKEN_LIFETIME, TokenService
from service_gateway.app.domain.plans import PlanTier
from shared.metrics import MetricsCollector


ISSUED_AT = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock for expiry checks."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _tamper(segment: str) -> str:
    middle = len(segment) // 2
    replacement = "A" if segment[middle] != "A" else "B"
    return segment[:middle] + replacement + segment[middle + 1:]


class TestIdentity:
    """Test cases for Identity claims."""

    def test_claims_round_trip(self):
        identity = Identity("user-1", "a@b.test", PlanTier.COMPLIANCE, 12, "Clinic Co")
        assert Identity.from_claims(identity.to_claims()) == identity

    def test_unknown_plan_falls_back_to_developer(self):
        identity = Identity.from_claims({"sub": "user-1", "plan": "platinum"})
        assert identity.plan == PlanTier.DEVELOPER

    @pytest.mark.parametrize("credits", [-5, "ten", 2.5, True, None])
    def test_malformed_credits_become_zero(self, credits):
        assert Identity.from_claims({"sub": "user-1", "credits": credits}).credits == 0

    def test_missing_subject_rejected(self):
        with pytest.raises(ValueError):
            Identity.from_claims({"plan": "developer"})


class TestTokenService:
    """Test cases for TokenService."""

    @pytest.fixture
    def clock(self):
        return FakeClock(ISSUED_AT)

    @pytest.fixture
    def token_service(self, clock):
        return TokenService("unit-test-secret", clock=clock)

    @pytest.fixture
    def identity(self):
        return Identity(
            subject="user-123",
            email="owner@clinic.test",
            plan=PlanTier.COMPLIANCE,
            credits=40,
            company="Clinic Co",
        )

    def test_issue_then_verify_returns_same_identity(self, token_service, identity):
        result = token_service.verify(token_service.issue(identity))

        assert result.valid
        assert result.identity == identity
        assert result.expires_at == ISSUED_AT + TOKEN_LIFETIME

    def test_token_claims_carry_issue_and_expiry(self, token_service, identity):
        token = token_service.issue(identity)
        claims = jwt.get_unverified_claims(token)

        assert claims["sub"] == "user-123"
        assert claims["plan"] == "compliance"
        assert claims["credits"] == 40
        assert claims["exp"] - claims["iat"] == 24 * 60 * 60
        assert jwt.get_unverified_header(token)["alg"] == "HS256"

    def test_valid_one_microsecond_before_expiry(self, token_service, clock, identity):
        token = token_service.issue(identity)
        clock.now = ISSUED_AT + TOKEN_LIFETIME - timedelta(microseconds=1)

        assert token_service.verify(token).valid

    def test_expired_exactly_at_expiry(self, token_service, clock, identity):
        token = token_service.issue(identity)
        clock.now = ISSUED_AT + TOKEN_LIFETIME

        result = token_service.verify(token)
        assert not result.valid
        assert result.error == AuthErrorKind.EXPIRED

    def test_expired_one_microsecond_after_expiry(self, token_service, clock, identity):
        token = token_service.issue(identity)
        clock.now = ISSUED_AT + TOKEN_LIFETIME + timedelta(microseconds=1)

        assert token_service.verify(token).error == AuthErrorKind.EXPIRED

    @pytest.mark.parametrize("token", [None, "", "   "])
    def test_missing_token(self, token_service, token):
        assert token_service.verify(token).error == AuthErrorKind.MISSING

    @pytest.mark.parametrize("token", ["not-a-token", "a.b.c", "eyJhbGciOiJIUzI1NiJ9..", "🙂.🙂.🙂"])
    def test_malformed_token_is_invalid(self, token_service, token):
        assert token_service.verify(token).error == AuthErrorKind.INVALID

    def test_tampered_signature_is_invalid(self, token_service, identity):
        header, payload, signature = token_service.issue(identity).split(".")
        tampered = ".".join([header, payload, _tamper(signature)])

        assert token_service.verify(tampered).error == AuthErrorKind.INVALID

    def test_tampered_payload_is_invalid(self, token_service, identity):
        header, payload, signature = token_service.issue(identity).split(".")
        tampered = ".".join([header, _tamper(payload), signature])

        assert token_service.verify(tampered).error == AuthErrorKind.INVALID

    def test_token_signed_with_other_secret_is_invalid(self, clock, identity):
        other = TokenService("another-secret", clock=clock)
        token_service = TokenService("unit-test-secret", clock=clock)

        assert token_service.verify(other.issue(identity)).error == AuthErrorKind.INVALID

    def test_token_without_expiry_is_invalid(self, token_service):
        token = jwt.encode({"sub": "user-1", "plan": "developer"}, "unit-test-secret", algorithm="HS256")
        assert token_service.verify(token).error == AuthErrorKind.INVALID

    def test_token_without_subject_is_invalid(self, token_service):
        exp = int((ISSUED_AT + timedelta(hours=1)).timestamp())
        token = jwt.encode({"plan": "developer", "exp": exp}, "unit-test-secret", algorithm="HS256")
        assert token_service.verify(token).error == AuthErrorKind.INVALID

    def test_reissue_carries_updated_credits(self, token_service, identity):
        token = token_service.reissue(identity, credits=7)
        result = token_service.verify(token)

        assert result.identity.credits == 7
        assert result.identity.subject == identity.subject

    def test_empty_secret_rejected(self):
        with pytest.raises(ValueError):
            TokenService("")

    def test_verification_metrics(self, clock, identity):
        metrics = MetricsCollector("gateway")
        token_service = TokenService("unit-test-secret", clock=clock, metrics=metrics)

        token_service.verify(token_service.issue(identity))
        token_service.verify(None)

        exported = metrics.export().decode()
        assert 'token_verifications_total{status="valid"} 1.0' in exported
        assert 'token_verifications_total{status="missing"} 1.0' in exported
