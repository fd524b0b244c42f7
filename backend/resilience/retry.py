"""
Retry with exponential backoff and jitter, driven by tenacity.

Delay before attempt i+1 (0-based i):

    exponential = base_delay * backoff_multiplier ** i
    delay       = min(max_delay, exponential + uniform(0, 0.3 * exponential))

Intermediate failures are logged, never raised. When retries are
exhausted, or the predicate refuses, the last error propagates unchanged.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt

from utils.errors import is_retryable

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[Any]]
RetryPredicate = Callable[[BaseException, int], bool]


@dataclass
class RetryConfig:
    """Retry policy. Delays are in seconds."""
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter_ratio: float = 0.3
    should_retry: Optional[RetryPredicate] = None

    @classmethod
    def from_settings(cls, settings) -> "RetryConfig":
        return cls(
            max_retries=settings.RETRY_MAX_RETRIES,
            base_delay=settings.RETRY_BASE_DELAY,
            max_delay=settings.RETRY_MAX_DELAY,
            backoff_multiplier=settings.RETRY_BACKOFF_MULTIPLIER,
        )


@dataclass
class CallAttempt:
    """One attempt of one execute() call."""
    dependency: str
    attempt: int
    outcome: str  # "success" | "error"
    error_type: Optional[str]
    retryable: Optional[bool]
    timestamp: str


def compute_delay(config: RetryConfig, attempt: int, rand: Callable[[], float] = random.random) -> float:
    """Delay in seconds to wait after failed attempt ``attempt`` (0-based)."""
    exponential = config.base_delay * (config.backoff_multiplier ** attempt)
    jitter = rand() * config.jitter_ratio * exponential
    return min(config.max_delay, exponential + jitter)


def default_should_retry(error: BaseException, attempt: int, config: RetryConfig) -> bool:
    if attempt >= config.max_retries:
        return False
    return is_retryable(error)


def _record(dependency: str, attempt: int, error: Optional[BaseException] = None) -> CallAttempt:
    return CallAttempt(
        dependency=dependency,
        attempt=attempt,
        outcome="error" if error is not None else "success",
        error_type=type(error).__name__ if error is not None else None,
        retryable=is_retryable(error) if error is not None else None,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


def _retry_predicate(config: RetryConfig, dependency: str) -> Callable[[RetryCallState], bool]:
    """tenacity ``retry=`` hook: classify the failed attempt."""

    def should_retry(retry_state: RetryCallState) -> bool:
        error = retry_state.outcome.exception()
        if error is None or isinstance(error, asyncio.CancelledError):
            return False

        attempt = retry_state.attempt_number - 1
        if config.should_retry is not None:
            retry = attempt < config.max_retries and config.should_retry(error, attempt)
        else:
            retry = default_should_retry(error, attempt, config)

        if not retry:
            logger.debug("Giving up on %s after attempt %d: %s", dependency, attempt + 1, error,
                         extra={"call_attempt": asdict(_record(dependency, attempt, error))})
        return retry

    return should_retry


def _log_before_sleep(config: RetryConfig, dependency: str) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState):
        attempt = retry_state.attempt_number - 1
        error = retry_state.outcome.exception()
        delay = retry_state.next_action.sleep
        logger.warning(
            f"Retry attempt {attempt + 1}/{config.max_retries} for {dependency} "
            f"after {delay:.2f}s: {error}",
            extra={"call_attempt": asdict(_record(dependency, attempt, error)), "delay_seconds": delay}
        )

    return before_sleep


async def retry_async(
    operation: Operation,
    config: Optional[RetryConfig] = None,
    *,
    dependency: str = "unknown",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    rand: Callable[[], float] = random.random,
) -> Any:
    """
    Run ``operation`` until it succeeds or the policy gives up.

    Cancellation is never retried and never logged as a failure.
    """
    config = config or RetryConfig()

    retrying = AsyncRetrying(
        stop=stop_after_attempt(config.max_retries + 1),
        wait=lambda retry_state: compute_delay(config, retry_state.attempt_number - 1, rand),
        retry=_retry_predicate(config, dependency),
        before_sleep=_log_before_sleep(config, dependency),
        sleep=sleep,
        reraise=True,
    )

    async for attempt in retrying:
        with attempt:
            result = await operation()

    attempts = attempt.retry_state.attempt_number
    if attempts > 1:
        logger.info(f"{dependency} succeeded on attempt {attempts}",
                    extra={"call_attempt": asdict(_record(dependency, attempts - 1))})
    return result
