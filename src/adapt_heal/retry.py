"""
Retry with exponential backoff for calls to external collaborators.

Used by the advisory client around provider calls. Remediation actions do
not use this module: their retry policy is a fixed per-step delay applied
by the executor so that each attempt is visible in the step state machine.
"""

import asyncio
import functools
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Tuple, Type, TypeVar

from .exceptions import ConnectionError, RateLimitError, TimeoutError

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class RetryConfig:
    """
    Configuration for retry behavior.

    Attributes:
        max_attempts: Total attempts including the first call
        backoff_factor: Multiplier for exponential backoff
        min_wait: Minimum wait time in seconds
        max_wait: Maximum wait time in seconds
        jitter: Whether to randomize the wait between 50% and 100%
        retryable_exceptions: Exception types worth another attempt
    """
    max_attempts: int = 3
    backoff_factor: float = 1.0
    min_wait: float = 1.0
    max_wait: float = 30.0
    jitter: bool = True
    retryable_exceptions: Tuple[Type[BaseException], ...] = (Exception,)


def calculate_backoff(
    attempt: int,
    backoff_factor: float,
    min_wait: float,
    max_wait: float,
    jitter: bool
) -> float:
    """
    Calculate exponential backoff wait time.

    Args:
        attempt: Current attempt number (0-indexed)
        backoff_factor: Multiplier for exponential backoff
        min_wait: Minimum wait time
        max_wait: Maximum wait time
        jitter: Whether to add random jitter

    Returns:
        Wait time in seconds
    """
    wait = min(max_wait, min_wait * (2 ** attempt) * backoff_factor)

    if jitter:
        wait = wait * (0.5 + random.random() * 0.5)

    return wait


async def call_with_retry(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    config: RetryConfig,
    **kwargs: Any
) -> T:
    """
    Await ``func(*args, **kwargs)``, retrying retryable failures.

    The last exception is re-raised once ``config.max_attempts`` is spent.
    """
    name = getattr(func, "__name__", repr(func))
    attempts = max(1, config.max_attempts)

    for attempt in range(attempts):
        try:
            return await func(*args, **kwargs)
        except config.retryable_exceptions as e:
            if attempt + 1 >= attempts:
                logger.error(f"Max retries ({attempts}) exceeded for {name}: {e}")
                raise

            wait_time = calculate_backoff(
                attempt, config.backoff_factor, config.min_wait, config.max_wait, config.jitter
            )
            logger.warning(
                f"Retry {attempt + 1}/{attempts} for {name} after {wait_time:.2f}s: {e}"
            )
            await asyncio.sleep(wait_time)

    raise AssertionError("unreachable")


def retry_async(config: RetryConfig) -> Callable:
    """
    Decorator form of ``call_with_retry``.

    Example:
        @retry_async(ADVISORY_RETRY)
        async def fetch_scores(context):
            ...
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await call_with_retry(func, *args, config=config, **kwargs)
        return wrapper
    return decorator


ADVISORY_RETRY = RetryConfig(
    max_attempts=3,
    backoff_factor=1.5,
    min_wait=1.0,
    max_wait=15.0,
    jitter=True,
    retryable_exceptions=(ConnectionError, TimeoutError, RateLimitError)
)
