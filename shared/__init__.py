"""
Shared utilities for the WCAGAI Access Layer.

This package aggregates common building blocks consumed by the gateway:

- config: Service configuration and secret validation via pydantic-settings
- logging: Structured logging with trace and request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorator for provider calls
- circuit_breaker: Resilient external call protection

Do not import from service_* packages into shared/.
"""
