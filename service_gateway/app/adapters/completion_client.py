"""
Chat completion client for the hosted language model (xAI).
"""

from typing import Any, Dict, Optional

import httpx

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException, get_circuit_breaker
from shared.errors import CompletionProviderError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, RetryError, retry_on_exception


class CompletionServerError(Exception):
    """Retryable 5xx/429 response from the completion provider."""


SYSTEM_PROMPT = "You are an accessibility compliance expert specializing in WCAG 2.2 AA requirements."


class XAICompletionClient:
    """Client for the completion provider."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.x.ai/v1/chat/completions",
        model: str = "grok-beta",
        timeout: float = 15.0,
        retry_config: Optional[RetryConfig] = None,
        metrics: Optional[MetricsCollector] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.model = model
        self.timeout = timeout
        self.metrics = metrics
        self.logger = get_logger("gateway.completion_client")
        self.circuit_breaker = circuit_breaker or get_circuit_breaker(
            "completion_provider",
            failure_threshold=5,
            recovery_timeout=30.0
        )
        self._post = retry_on_exception(
            (httpx.TransportError, CompletionServerError),
            config=retry_config or RetryConfig(max_attempts=3, base_delay=0.5, max_delay=4.0),
        )(self._post_once)

    async def _post_once(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                self.base_url,
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
            )

        if response.status_code == 429 or response.status_code >= 500:
            raise CompletionServerError(f"Completion provider returned {response.status_code}")
        if response.status_code != 200:
            raise CompletionProviderError(
                f"Completion request rejected: {response.status_code}",
                details={"status_code": response.status_code}
            )
        return response.json()

    async def complete(self, prompt: str, *, system_prompt: str = SYSTEM_PROMPT,
                       max_tokens: int = 150, temperature: float = 0.3) -> str:
        """Submit a prompt and return the generated text."""
        if not self.api_key:
            raise CompletionProviderError("Completion provider API key is not configured")

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }

        try:
            if self.metrics is not None:
                with self.metrics.time_operation("provider_call_duration_seconds", provider="xai"):
                    data = await self.circuit_breaker.call(self._post, payload)
            else:
                data = await self.circuit_breaker.call(self._post, payload)
        except CompletionProviderError:
            raise
        except CircuitBreakerOpenException as e:
            self.logger.warning("Completion provider circuit open", error=str(e))
            raise CompletionProviderError("Completion provider temporarily unavailable") from e
        except RetryError as e:
            self.logger.error("Completion provider unavailable", error=str(e.last_exception))
            raise CompletionProviderError(
                "Completion provider unavailable",
                details={"error": str(e.last_exception), "attempts": e.attempts}
            ) from e
        except httpx.HTTPError as e:
            self.logger.error("Completion provider HTTP error", error=str(e))
            raise CompletionProviderError("Completion provider HTTP error", details={"error": str(e)}) from e
        except ValueError as e:
            raise CompletionProviderError("Completion response was not valid JSON") from e

        try:
            return data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise CompletionProviderError("Completion response missing content") from e
