"""
Shared error handling for the WCAGAI Access Layer.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel
from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class AccessLayerException(Exception):
    """Base exception for Access Layer services."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None,
                 headers: Optional[Dict[str, str]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        self.headers = headers or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        # Get trace ID from current span
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class AuthRequiredError(AccessLayerException):
    """No session token was presented."""

    status_code = 401

    def __init__(self, message: str = "Authentication required", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTH_REQUIRED", message, details)


class AuthInvalidError(AccessLayerException):
    """The session token is malformed, tampered with, or expired."""

    status_code = 403

    def __init__(self, message: str = "Invalid or expired token", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTH_INVALID", message, details)


class RateLimitError(AccessLayerException):
    """Rate limiting errors."""

    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded", details: Optional[Dict[str, Any]] = None,
                 retry_after: Optional[int] = None):
        headers = {"Retry-After": str(retry_after)} if retry_after is not None else None
        super().__init__("RATE_LIMITED", message, details, headers)


class FeatureDeniedError(AccessLayerException):
    """The caller's plan does not include the requested feature."""

    status_code = 403

    def __init__(self, message: str = "Feature not available in your plan", details: Optional[Dict[str, Any]] = None):
        super().__init__("FEATURE_DENIED", message, details)


class InsufficientCreditsError(AccessLayerException):
    """The caller's credit balance cannot cover the requested cost."""

    status_code = 402

    def __init__(self, message: str = "Insufficient credits", details: Optional[Dict[str, Any]] = None):
        super().__init__("INSUFFICIENT_CREDITS", message, details)


class ValidationError(AccessLayerException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(AccessLayerException):
    """Resource missing, or not owned by the caller."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class ConfigurationError(AccessLayerException):
    """Unrecoverable configuration problems, raised at startup."""

    status_code = 500

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class ExternalServiceError(AccessLayerException):
    """External service errors."""

    status_code = 502

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)


class PaymentProviderError(ExternalServiceError):
    """Payment provider call failed."""

    def __init__(self, message: str = "Payment provider error", details: Optional[Dict[str, Any]] = None):
        super().__init__("payments", message, details)


class CompletionProviderError(ExternalServiceError):
    """Completion provider call failed."""

    def __init__(self, message: str = "Completion provider error", details: Optional[Dict[str, Any]] = None):
        super().__init__("completions", message, details)


class WebhookVerificationError(AccessLayerException):
    """Inbound webhook payload or signature could not be verified."""

    def __init__(self, message: str = "Webhook verification failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("WEBHOOK_INVALID", message, details)
