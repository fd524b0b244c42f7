"""
Resilient Call Executor

Single entry point for every outbound call to an external service.
Each attempt goes through, in order:

1. the outbound rate limiter (keyed per caller/dependency)
2. the dependency's circuit breaker
3. the operation itself

and the retry policy wraps the whole attempt. Only the final error
reaches the caller.
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional

from resilience.circuit_breaker import CircuitBreakerRegistry
from utils.errors import RateLimitError
from resilience.rate_limiter import SlidingWindowRateLimiter
from resilience.retry import Operation, RetryConfig, retry_async

logger = logging.getLogger(__name__)


class ResilientCallExecutor:
    """
    Retry + circuit breaking + rate limiting for outbound calls.

    Constructed once at startup; the breakers and limiter it holds are
    shared by every call site it is passed to.
    """

    def __init__(
        self,
        breakers: CircuitBreakerRegistry,
        limiter: Optional[SlidingWindowRateLimiter] = None,
        default_retry: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rand: Callable[[], float] = random.random,
    ):
        self.breakers = breakers
        self.limiter = limiter
        self.default_retry = default_retry or RetryConfig()
        self._sleep = sleep
        self._rand = rand

    async def execute(
        self,
        operation: Operation,
        *,
        dependency: str,
        retry_config: Optional[RetryConfig] = None,
        rate_limit_key: Optional[str] = None,
    ) -> Any:
        """
        Run ``operation`` against ``dependency`` with the full resilience stack.

        Args:
            operation: zero-argument callable returning an awaitable
            dependency: hostname or logical service name (selects the breaker)
            retry_config: overrides the executor's default retry policy
            rate_limit_key: limiter key; defaults to the dependency name

        Returns:
            Whatever the operation returns

        Raises:
            The last error from the operation, CircuitOpenError, or RateLimitError
        """
        breaker = self.breakers.get(dependency)
        limit_key = rate_limit_key or dependency

        async def attempt():
            if self.limiter is not None:
                decision = self.limiter.check(limit_key)
                if not decision.allowed:
                    raise RateLimitError(
                        f"Outbound rate limit exceeded for {limit_key}",
                        retry_after=decision.retry_after,
                    )
            return await breaker.call(operation)

        return await retry_async(
            attempt,
            retry_config or self.default_retry,
            dependency=dependency,
            sleep=self._sleep,
            rand=self._rand,
        )
