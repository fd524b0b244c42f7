"""
Sliding-window rate limiter.

Each key keeps the timestamps of its accepted requests inside the
trailing window. ``check`` prunes lazily; ``sweep`` drops keys with
nothing left in the window and is run periodically to bound memory.
"""

import asyncio
import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class RateLimitDecision:
    allowed: bool
    retry_after: Optional[int] = None  # seconds, only set when rejected


class SlidingWindowRateLimiter:
    """
    Allow at most ``max_requests`` per ``window_seconds`` per key.

    Keys are typically a client IP (inbound) or a dependency name
    (outbound). Each key has its own lock so busy keys do not contend.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        name: str = "default",
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.name = name
        self._clock = clock
        self._windows: Dict[str, Deque[float]] = {}
        self._key_locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()
                self._windows[key] = deque()
            return lock

    def _prune(self, window: Deque[float], now: float):
        while window and now - window[0] >= self.window_seconds:
            window.popleft()

    def check(self, key: str) -> RateLimitDecision:
        """Record a request for ``key`` if it fits in the window."""
        while True:
            lock = self._lock_for(key)
            with lock:
                # A sweep may have retired this lock between lookup and acquire
                if self._key_locks.get(key) is lock:
                    return self._check_locked(key)

    def _check_locked(self, key: str) -> RateLimitDecision:
        now = self._clock()
        window = self._windows[key]
        self._prune(window, now)

        if len(window) >= self.max_requests:
            oldest = window[0]
            retry_after = max(1, math.ceil(self.window_seconds - (now - oldest)))
            logger.debug(f"Rate limit [{self.name}] rejected {key}, retry after {retry_after}s")
            return RateLimitDecision(allowed=False, retry_after=retry_after)

        window.append(now)
        return RateLimitDecision(allowed=True)

    def sweep(self) -> int:
        """Drop keys with no timestamps left in the window. Returns keys removed."""
        now = self._clock()
        removed = 0
        with self._registry_lock:
            for key in list(self._windows):
                lock = self._key_locks[key]
                with lock:
                    window = self._windows[key]
                    self._prune(window, now)
                    if not window:
                        del self._windows[key]
                        del self._key_locks[key]
                        removed += 1
        if removed:
            logger.debug(f"Rate limit [{self.name}] sweep removed {removed} idle keys")
        return removed

    def tracked_keys(self) -> List[str]:
        with self._registry_lock:
            return list(self._windows)


async def run_periodic_sweep(limiters: Iterable[SlidingWindowRateLimiter], interval: float = 300.0):
    """Sweep every limiter every ``interval`` seconds until cancelled."""
    limiters = list(limiters)
    while True:
        await asyncio.sleep(interval)
        for limiter in limiters:
            limiter.sweep()
