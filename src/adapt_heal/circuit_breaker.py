"""
Circuit breaker guarding the advisory model.

CLOSED passes calls through, OPEN rejects them immediately, HALF_OPEN lets
trial calls through after ``recovery_timeout`` to test recovery. An open
breaker turns advisory calls into fast invalid results, so the analyzer
degrades to graph-only scoring instead of waiting on a dead endpoint.
"""

import logging
import time
from enum import Enum
from threading import Lock
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from .exceptions import CircuitBreakerOpenError

logger = logging.getLogger(__name__)

T = TypeVar('T')


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Failure-counting breaker usable from async code and worker threads.

    Usage:
        breaker = CircuitBreaker("advisory", failure_threshold=3)
        result = await breaker.call(provider_call, prompt)
    """

    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = 5,
        success_threshold: int = 1,
        recovery_timeout: float = 60.0,
        expected_exceptions: tuple = (Exception,),
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            name: Breaker name for logging and stats
            failure_threshold: Consecutive failures before opening
            success_threshold: HALF_OPEN successes needed to close
            recovery_timeout: Seconds spent OPEN before trying HALF_OPEN
            expected_exceptions: Exceptions counted as failures
            clock: Monotonic time source, injectable for tests
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exceptions = expected_exceptions
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at: Optional[float] = None
        self._lock = Lock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failure_count

    def allow_request(self) -> None:
        """
        Check whether a call may proceed.

        Raises:
            CircuitBreakerOpenError: If the breaker is OPEN and the recovery
                timeout has not elapsed.
        """
        with self._lock:
            if self._state != CircuitState.OPEN:
                return

            elapsed = self._clock() - (self._opened_at or 0.0)
            if elapsed >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                self._success_count = 0
                logger.info(f"Circuit breaker '{self.name}': HALF_OPEN (testing recovery)")
                return

            raise CircuitBreakerOpenError(self.name, self.recovery_timeout - elapsed)

    def record_success(self) -> None:
        with self._lock:
            self._failure_count = 0
            if self._state != CircuitState.HALF_OPEN:
                return

            self._success_count += 1
            if self._success_count >= self.success_threshold:
                self._state = CircuitState.CLOSED
                self._success_count = 0
                self._opened_at = None
                logger.info(f"Circuit breaker '{self.name}': CLOSED (recovered)")

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1

            if self._state == CircuitState.HALF_OPEN:
                self._open()
                logger.warning(f"Circuit breaker '{self.name}': OPEN (recovery failed)")
            elif (self._state == CircuitState.CLOSED
                  and self._failure_count >= self.failure_threshold):
                self._open()
                logger.error(
                    f"Circuit breaker '{self.name}': OPEN "
                    f"({self._failure_count} consecutive failures)"
                )

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._success_count = 0
        self._opened_at = self._clock()

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Await ``func`` through the breaker."""
        self.allow_request()
        try:
            result = await func(*args, **kwargs)
        except self.expected_exceptions:
            self.record_failure()
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        """Manually reset to CLOSED."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._success_count = 0
            self._opened_at = None
        logger.info(f"Circuit breaker '{self.name}': manually reset to CLOSED")

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "success_count": self._success_count,
                "failure_threshold": self.failure_threshold,
                "recovery_timeout": self.recovery_timeout,
            }
