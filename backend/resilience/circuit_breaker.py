"""
Per-dependency circuit breakers.

States:
- CLOSED: normal operation, calls pass through
- OPEN: threshold reached, calls fail immediately with CircuitOpenError
- HALF_OPEN: recovery timeout elapsed, exactly one trial call is let through

A breaker lives for the whole process and is shared by every concurrent
call to its dependency. State is guarded by a lock that is never held
while the wrapped operation runs, so a slow dependency only delays its
own callers.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from utils.errors import CircuitOpenError

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass
class CircuitBreakerState:
    """Point-in-time view of a breaker."""
    dependency: str
    state: CircuitState
    consecutive_failures: int
    last_failure_at: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker for one external dependency.

    Example:
        >>> breaker = CircuitBreaker("api.mercury.com")
        >>> result = await breaker.call(lambda: client.get(url))
    """

    def __init__(
        self,
        dependency: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.dependency = dependency
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure_at: Optional[float] = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    def _remaining_open(self, now: float) -> float:
        if self._last_failure_at is None:
            return 0.0
        return max(0.0, self.recovery_timeout - (now - self._last_failure_at))

    def _acquire(self) -> bool:
        """Admit a call or raise. Returns True when the call is the half-open trial."""
        with self._lock:
            now = self._clock()

            if self._state == CircuitState.OPEN:
                remaining = self._remaining_open(now)
                if remaining > 0:
                    raise CircuitOpenError(self.dependency, remaining)
                self._state = CircuitState.HALF_OPEN
                logger.info(f"Circuit breaker HALF_OPEN for {self.dependency} (testing recovery)")

            if self._state == CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    raise CircuitOpenError(self.dependency, 0.0)
                self._trial_in_flight = True
                return True

            return False

    def _on_success(self, trial: bool):
        with self._lock:
            if trial:
                self._trial_in_flight = False
                self._state = CircuitState.CLOSED
                self._failures = 0
                logger.info(f"Circuit breaker CLOSED for {self.dependency} (recovered)")
            elif self._state == CircuitState.CLOSED:
                # Stragglers admitted before the breaker opened do not close it
                self._failures = 0

    def _on_failure(self, trial: bool, error: BaseException):
        with self._lock:
            self._failures += 1
            self._last_failure_at = self._clock()

            if trial:
                self._trial_in_flight = False
                self._state = CircuitState.OPEN
                logger.warning(f"Circuit breaker re-OPENED for {self.dependency}: trial call failed: {error}")
            elif self._state == CircuitState.CLOSED and self._failures >= self.failure_threshold:
                self._state = CircuitState.OPEN
                logger.error(
                    f"Circuit breaker OPENED for {self.dependency} after {self._failures} failures",
                    extra={"dependency": self.dependency, "consecutive_failures": self._failures}
                )

    def _on_cancel(self, trial: bool):
        # Caller gave up; the dependency did not fail.
        if trial:
            with self._lock:
                self._trial_in_flight = False

    async def call(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        """
        Execute ``operation`` under breaker protection.

        Raises:
            CircuitOpenError: if the breaker is open (operation not invoked)
        """
        trial = self._acquire()
        try:
            result = await operation()
        except asyncio.CancelledError:
            self._on_cancel(trial)
            raise
        except Exception as error:
            self._on_failure(trial, error)
            raise
        self._on_success(trial)
        return result

    def snapshot(self) -> CircuitBreakerState:
        with self._lock:
            return CircuitBreakerState(
                dependency=self.dependency,
                state=self._state,
                consecutive_failures=self._failures,
                last_failure_at=self._last_failure_at,
            )

    def reset(self):
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failures = 0
            self._last_failure_at = None
            self._trial_in_flight = False


class CircuitBreakerRegistry:
    """
    One breaker per dependency, created on first use.

    Constructed once at process start and passed to every call site.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        overrides: Optional[Dict[str, Dict[str, float]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.overrides = overrides or {}
        self._clock = clock
        self._lock = threading.Lock()
        self._breakers: Dict[str, CircuitBreaker] = {}

    @classmethod
    def from_settings(cls, settings, clock: Callable[[], float] = time.monotonic) -> "CircuitBreakerRegistry":
        return cls(
            failure_threshold=settings.BREAKER_FAILURE_THRESHOLD,
            recovery_timeout=settings.BREAKER_RECOVERY_TIMEOUT,
            overrides=DEFAULT_BREAKER_OVERRIDES,
            clock=clock,
        )

    def get(self, dependency: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(dependency)
            if breaker is None:
                override = self.overrides.get(dependency, {})
                breaker = CircuitBreaker(
                    dependency,
                    failure_threshold=int(override.get("failure_threshold", self.failure_threshold)),
                    recovery_timeout=override.get("recovery_timeout", self.recovery_timeout),
                    clock=self._clock,
                )
                self._breakers[dependency] = breaker
            return breaker

    def snapshot_all(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            breakers = list(self._breakers.values())
        return {b.dependency: b.snapshot().to_dict() for b in breakers}


# Identity service is tighter than the vendor APIs
DEFAULT_BREAKER_OVERRIDES: Dict[str, Dict[str, float]] = {
    "chittyconnect": {"failure_threshold": 3, "recovery_timeout": 30.0},
}
