"""
HTTP client for outbound calls through the resilient executor.

Responses are classified before they reach the retry loop:
- 2xx: returned
- 429: RateLimitError (Retry-After header, default 60s)
- other non-2xx: IntegrationError, retryable only for 5xx and 408
- no answer within the attempt timeout: retryable IntegrationError, counted
  by the breaker as a dependency failure
"""

import asyncio
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import httpx

from utils.errors import IntegrationError, RateLimitError
from resilience.executor import ResilientCallExecutor
from resilience.retry import RetryConfig

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0  # seconds
DEFAULT_RETRY_AFTER = 60


def dependency_for(url: str) -> str:
    """Breaker key for a URL: its hostname."""
    return urlparse(url).hostname or url


def per_attempt_timeout(budget: float, retry: RetryConfig) -> float:
    """Split a caller's total budget so every attempt can time out on its own."""
    return budget / (retry.max_retries + 1)


def classify_response(response: httpx.Response, dependency: str) -> httpx.Response:
    """Return the response if 2xx, otherwise raise the matching classified error."""
    if response.is_success:
        return response

    if response.status_code == 429:
        header = response.headers.get("Retry-After", "")
        retry_after = int(header) if header.isdigit() else DEFAULT_RETRY_AFTER
        raise RateLimitError(f"{dependency} rate limit exceeded", retry_after=retry_after)

    raise IntegrationError.from_status(dependency, response.status_code)


class ResilientHttpClient:
    """
    Thin wrapper over ``httpx.AsyncClient`` that sends every request
    through a ResilientCallExecutor.
    """

    def __init__(
        self,
        executor: ResilientCallExecutor,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
        default_headers: Optional[Dict[str, str]] = None,
    ):
        self.executor = executor
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._default_headers = default_headers or {}

    async def post_json(
        self,
        url: str,
        payload: Dict[str, Any],
        *,
        dependency: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        retry_config: Optional[RetryConfig] = None,
    ) -> httpx.Response:
        """
        POST ``payload`` as JSON and return the 2xx response.

        Raises:
            IntegrationError, RateLimitError, CircuitOpenError, or a
            transient httpx error once retries are exhausted
        """
        dependency = dependency or dependency_for(url)
        request_headers = {"Content-Type": "application/json", **self._default_headers, **(headers or {})}

        async def send():
            try:
                response = await asyncio.wait_for(
                    self._client.post(url, json=payload, headers=request_headers, timeout=self.timeout),
                    timeout=self.timeout,
                )
            except asyncio.TimeoutError:
                raise IntegrationError(f"timed out after {self.timeout:g}s", dependency=dependency, retryable=True)
            return classify_response(response, dependency)

        return await self.executor.execute(
            send,
            dependency=dependency,
            retry_config=retry_config,
        )

    async def aclose(self):
        await self._client.aclose()
