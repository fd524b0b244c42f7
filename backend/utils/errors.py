"""
Error Taxonomy

Closed set of tagged error variants shared by the call executor, the
webhook dispatcher and the reconciliation engine.
Every variant decides at construction time whether it may be retried;
the retry loop only reads the ``retryable`` flag.

Kind              Retryable   Carries
----------------  ----------  ------------------------------
ValidationError   never       field-level messages
RateLimitError    always      retry-after hint (seconds)
IntegrationError  5xx / 408   dependency name, HTTP status
CircuitOpenError  never       remaining open duration (seconds)

Plain network failures (timeouts, refused connections) are retryable
without a dedicated type, see ``TRANSIENT_NETWORK_ERRORS``.
"""

from typing import Any, Dict, Optional

import httpx


class ResilienceError(Exception):
    """Base class for all classified errors."""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 500,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.retryable = retryable

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "code": self.code,
        }


class ValidationError(ResilienceError):
    """Malformed input. Never retried."""

    def __init__(self, message: str, fields: Optional[Dict[str, str]] = None):
        super().__init__(message, "VALIDATION_ERROR", status_code=400, retryable=False)
        self.fields = fields or {}

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        if self.fields:
            body["fields"] = self.fields
        return body


class RateLimitError(ResilienceError):
    """A rate limit (ours or the dependency's) rejected the call."""

    def __init__(self, message: str = "Rate limit exceeded", retry_after: Optional[float] = None):
        super().__init__(message, "RATE_LIMIT_EXCEEDED", status_code=429, retryable=True)
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        if self.retry_after:
            body["retryAfter"] = self.retry_after
        return body


class IntegrationError(ResilienceError):
    """An external dependency answered with a failure."""

    def __init__(
        self,
        message: str,
        dependency: str,
        status_code: Optional[int] = None,
        retryable: bool = True,
    ):
        super().__init__(message, "INTEGRATION_ERROR", status_code=502, retryable=retryable)
        self.dependency = dependency
        self.upstream_status = status_code

    @classmethod
    def from_status(cls, dependency: str, status_code: int) -> "IntegrationError":
        """Classify a non-2xx response; only 5xx and 408 are worth retrying."""
        return cls(
            f"HTTP {status_code}",
            dependency=dependency,
            status_code=status_code,
            retryable=status_code >= 500 or status_code == 408,
        )


class CircuitOpenError(ResilienceError):
    """The dependency's circuit breaker is open; the call was never made."""

    def __init__(self, dependency: str, remaining_open: float):
        super().__init__(
            f"Circuit breaker is open for {dependency}",
            "CIRCUIT_OPEN",
            status_code=503,
            retryable=False,
        )
        self.dependency = dependency
        self.remaining_open = remaining_open


TRANSIENT_NETWORK_ERRORS = (
    httpx.TimeoutException,
    httpx.ConnectError,
    ConnectionRefusedError,
    TimeoutError,
)


def is_retryable(error: BaseException) -> bool:
    """Whether an error is eligible for another attempt, ignoring attempt counts."""
    if isinstance(error, ResilienceError):
        return error.retryable
    return isinstance(error, TRANSIENT_NETWORK_ERRORS)
