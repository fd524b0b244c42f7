"""
Resilient Call Executor

Wraps outbound calls to external services (banking, payments,
property-management, accounting vendors) with:
- retry with exponential backoff and jitter
- per-dependency circuit breakers
- sliding-window rate limiting
"""

from utils.errors import (
    ResilienceError,
    ValidationError,
    RateLimitError,
    IntegrationError,
    CircuitOpenError,
    TRANSIENT_NETWORK_ERRORS,
    is_retryable,
)
from resilience.retry import RetryConfig, CallAttempt, compute_delay, retry_async
from resilience.circuit_breaker import (
    CircuitState,
    CircuitBreakerState,
    CircuitBreaker,
    CircuitBreakerRegistry,
)
from resilience.rate_limiter import RateLimitDecision, SlidingWindowRateLimiter, run_periodic_sweep
from resilience.executor import ResilientCallExecutor
from resilience.http_client import ResilientHttpClient, classify_response, dependency_for, per_attempt_timeout

__all__ = [
    # Errors
    'ResilienceError',
    'ValidationError',
    'RateLimitError',
    'IntegrationError',
    'CircuitOpenError',
    'TRANSIENT_NETWORK_ERRORS',
    'is_retryable',
    # Retry
    'RetryConfig',
    'per_attempt_timeout',
    'CallAttempt',
    'compute_delay',
    'retry_async',
    # Circuit breaker
    'CircuitState',
    'CircuitBreakerState',
    'CircuitBreaker',
    'CircuitBreakerRegistry',
    # Rate limiting
    'RateLimitDecision',
    'SlidingWindowRateLimiter',
    'run_periodic_sweep',
    # Executor
    'ResilientCallExecutor',
    'ResilientHttpClient',
    'classify_response',
    'dependency_for',
]
