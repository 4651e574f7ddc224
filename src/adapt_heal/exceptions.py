"""
Custom exception types for ADAPT-Heal.

Expected remediation failures (invalid analysis, failed validation, failed
actions) are returned as result objects. The exceptions below cover
programmer errors and the few APIs documented as raising.
"""


class ADAPTHealError(Exception):
    """Base exception for all ADAPT-Heal errors."""
    pass


# Configuration errors
class ConfigurationError(ADAPTHealError):
    """Base exception for configuration errors."""
    pass


class InvalidConfigError(ConfigurationError):
    """Invalid configuration."""
    pass


class MissingConfigError(ConfigurationError):
    """Required configuration missing."""
    pass


# External service errors
class ExternalServiceError(ADAPTHealError):
    """Base exception for external service errors."""
    pass


class ConnectionError(ExternalServiceError):
    """Connection to external service failed."""
    pass


class TimeoutError(ExternalServiceError):
    """External service request timed out."""
    pass


class AuthenticationError(ExternalServiceError):
    """Authentication with external service failed."""
    pass


class RateLimitError(ExternalServiceError):
    """Rate limit exceeded for external service."""
    pass


class CircuitBreakerOpenError(ExternalServiceError):
    """Call rejected because the circuit breaker is open."""

    def __init__(self, name: str, retry_after: float):
        self.name = name
        self.retry_after = retry_after
        super().__init__(
            f"Circuit breaker '{name}' is open; retry after {retry_after:.1f}s"
        )


# Advisory model errors
class AdvisoryError(ADAPTHealError):
    """Base exception for advisory model errors."""
    pass


class AdvisoryUnavailableError(AdvisoryError):
    """Advisory model could not be reached or is not configured."""
    pass


class AdvisoryResponseError(AdvisoryError):
    """Advisory model returned a response that could not be parsed."""
    pass


# Strategy registry errors
class RegistryError(ADAPTHealError):
    """Base exception for strategy registry errors."""
    pass


class DuplicateStrategyError(RegistryError):
    """A strategy with the same name and version is already registered."""
    pass


class StrategyNotFoundError(RegistryError):
    """Strategy not found in the registry."""
    pass


# Plan errors
class PlanError(ADAPTHealError):
    """Base exception for remediation plan errors."""
    pass


class PlanNotFoundError(PlanError):
    """Plan not found."""
    pass


class InvalidStateTransitionError(PlanError):
    """Requested status change is not allowed by the state machine."""

    def __init__(self, subject: str, current, requested):
        self.subject = subject
        self.current = current
        self.requested = requested
        super().__init__(
            f"Invalid transition for {subject}: {current.value} -> {requested.value}"
        )


class PlanOwnershipError(PlanError):
    """Plan was mutated by a component that does not own it."""
    pass


# Execution errors
class ExecutionError(ADAPTHealError):
    """Base exception for execution errors."""
    pass


__all__ = [
    "ADAPTHealError",
    "ConfigurationError",
    "InvalidConfigError",
    "MissingConfigError",
    "ExternalServiceError",
    "ConnectionError",
    "TimeoutError",
    "AuthenticationError",
    "RateLimitError",
    "CircuitBreakerOpenError",
    "AdvisoryError",
    "AdvisoryUnavailableError",
    "AdvisoryResponseError",
    "RegistryError",
    "DuplicateStrategyError",
    "StrategyNotFoundError",
    "PlanError",
    "PlanNotFoundError",
    "InvalidStateTransitionError",
    "PlanOwnershipError",
    "ExecutionError",
]
