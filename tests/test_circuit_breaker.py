"""
Tests for circuit breaker pattern implementation.

Verifies circuit state transitions and failure protection.
"""

import pytest

from adapt_heal.circuit_breaker import CircuitBreaker, CircuitState
from adapt_heal.exceptions import CircuitBreakerOpenError, ConnectionError


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


async def succeed():
    return "success"


async def fail():
    raise ConnectionError("Service unavailable")


def test_circuit_breaker_initial_state():
    """Test circuit breaker starts in CLOSED state."""
    breaker = CircuitBreaker(name="test")
    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_count == 0


@pytest.mark.asyncio
async def test_circuit_breaker_stays_closed_on_success():
    """Test circuit breaker stays CLOSED with successful calls."""
    breaker = CircuitBreaker(name="test", failure_threshold=3)

    for _ in range(10):
        assert await breaker.call(succeed) == "success"

    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_count == 0


@pytest.mark.asyncio
async def test_circuit_breaker_opens_after_threshold():
    """Test circuit breaker opens after failure threshold."""
    breaker = CircuitBreaker(name="test", failure_threshold=3)

    for _ in range(3):
        with pytest.raises(ConnectionError):
            await breaker.call(fail)

    assert breaker.state == CircuitState.OPEN
    assert breaker.failure_count == 3


@pytest.mark.asyncio
async def test_circuit_breaker_blocks_when_open():
    """Test circuit breaker rejects calls immediately when OPEN."""
    breaker = CircuitBreaker(name="advisory", failure_threshold=2)

    for _ in range(2):
        with pytest.raises(ConnectionError):
            await breaker.call(fail)

    with pytest.raises(CircuitBreakerOpenError) as exc_info:
        await breaker.call(succeed)

    assert exc_info.value.name == "advisory"
    assert "open" in str(exc_info.value)


@pytest.mark.asyncio
async def test_circuit_breaker_half_open_after_timeout():
    """Test breaker lets a trial call through after the recovery timeout."""
    clock = FakeClock()
    breaker = CircuitBreaker(name="test", failure_threshold=1, recovery_timeout=10, clock=clock)

    with pytest.raises(ConnectionError):
        await breaker.call(fail)
    assert breaker.state == CircuitState.OPEN

    clock.now = 10.0
    assert await breaker.call(succeed) == "success"
    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_circuit_breaker_reopens_on_half_open_failure():
    """Test a failed trial call reopens the breaker."""
    clock = FakeClock()
    breaker = CircuitBreaker(name="test", failure_threshold=1, recovery_timeout=5, clock=clock)

    with pytest.raises(ConnectionError):
        await breaker.call(fail)
    clock.now = 6.0
    with pytest.raises(ConnectionError):
        await breaker.call(fail)

    assert breaker.state == CircuitState.OPEN
    with pytest.raises(CircuitBreakerOpenError):
        await breaker.call(succeed)


@pytest.mark.asyncio
async def test_circuit_breaker_ignores_unexpected_exceptions():
    """Test exceptions outside expected_exceptions do not count as failures."""
    breaker = CircuitBreaker(name="test", failure_threshold=1,
                             expected_exceptions=(ConnectionError,))

    async def bug():
        raise KeyError("bug")

    with pytest.raises(KeyError):
        await breaker.call(bug)

    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_count == 0


@pytest.mark.asyncio
async def test_circuit_breaker_success_resets_failure_count():
    """Test a success clears consecutive failures."""
    breaker = CircuitBreaker(name="test", failure_threshold=3)

    for _ in range(2):
        with pytest.raises(ConnectionError):
            await breaker.call(fail)
    await breaker.call(succeed)

    assert breaker.failure_count == 0
    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_circuit_breaker_reset_and_stats():
    """Test manual reset and statistics."""
    breaker = CircuitBreaker(name="stats", failure_threshold=1)
    with pytest.raises(ConnectionError):
        await breaker.call(fail)

    stats = breaker.get_stats()
    assert stats["name"] == "stats"
    assert stats["state"] == "open"
    assert stats["failure_count"] == 1

    breaker.reset()
    assert breaker.state == CircuitState.CLOSED
    assert breaker.get_stats()["failure_count"] == 0
