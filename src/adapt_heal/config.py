"""Configuration management for ADAPT-Heal.

Configuration can be loaded from environment variables, YAML/TOML files, or
direct instantiation.

Classes:
    HealConfig: Main configuration dataclass with validation.

Example:
    >>> from adapt_heal.config import HealConfig
    >>>
    >>> # Load from environment variables
    >>> config = HealConfig.from_env()
    >>>
    >>> # Load from file with env overrides
    >>> config = HealConfig.from_file("adapt-heal.yaml")
    >>>
    >>> # Recommended: automatic loading with fallback
    >>> config = HealConfig.load()
    >>> config.validate()
"""
import os
import logging
from dataclasses import dataclass
from typing import Optional

from .constants import (
    DEFAULT_ACTION_TIMEOUT_SECONDS,
    DEFAULT_ADVISORY_FAILURE_THRESHOLD,
    DEFAULT_ADVISORY_MAX_RETRIES,
    DEFAULT_ADVISORY_RECOVERY_TIMEOUT_SECONDS,
    DEFAULT_ADVISORY_TIMEOUT_SECONDS,
    DEFAULT_APPROVAL_RISK_LEVEL,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_STRATEGIES_PER_PLAN,
    DEFAULT_PLAN_TIMEOUT_SECONDS,
    DEFAULT_RETRY_DELAY_SECONDS,
    VALID_ADVISORY_PROVIDERS,
    VALID_RISK_LEVELS,
    VALID_ROLLBACK_ORDERS,
)

logger = logging.getLogger(__name__)

_TRUE_VALUES = ("true", "1", "yes")


def _get_int_env(key: str, default: int, allow_zero: bool = False) -> int:
    """Safely get a non-negative integer from an environment variable.

    Returns the default (with a warning) when the value cannot be parsed or
    is out of range.
    """
    value = os.getenv(key)
    if value is None:
        return default

    try:
        result = int(value)
    except ValueError:
        logger.warning(
            f"Environment variable {key}={value} is not a valid integer. Using default: {default}"
        )
        return default

    if result < 0 or (result == 0 and not allow_zero):
        logger.warning(
            f"Environment variable {key}={value} is out of range. Using default: {default}"
        )
        return default
    return result


def _get_float_env(key: str, default: float) -> float:
    """Safely get a float from an environment variable."""
    value = os.getenv(key)
    if value is None:
        return default

    try:
        return float(value)
    except ValueError:
        logger.warning(
            f"Environment variable {key}={value} is not a valid number. Using default: {default}"
        )
        return default


def _get_bool_env(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.lower() in _TRUE_VALUES


@dataclass
class HealConfig:
    """
    Configuration for ADAPT-Heal.

    Configuration can be loaded from:
    1. Configuration files (YAML or TOML)
    2. Environment variables (override file settings)
    3. Direct instantiation with parameters

    Environment variables:
        ADAPT_HEAL_ADVISORY_PROVIDER: Advisory model provider (default: "none")
        ADAPT_HEAL_ADVISORY_MODEL: Model identifier (default: "")
        ADAPT_HEAL_ADVISORY_TIMEOUT: Advisory call timeout in seconds (default: 30)
        ADAPT_HEAL_ADVISORY_MAX_RETRIES: Retries for transient advisory failures (default: 2)
        ADAPT_HEAL_ADVISORY_FAILURE_THRESHOLD: Failures before the breaker opens (default: 5)
        ADAPT_HEAL_ADVISORY_RECOVERY_TIMEOUT: Seconds before the breaker half-opens (default: 60)
        ADAPT_HEAL_ALLOW_GRAPH_ONLY: Score without advisory signal (default: true)
        ADAPT_HEAL_ALLOW_ADVISORY_ONLY: Score without graph data (default: true)
        ADAPT_HEAL_MIN_CONFIDENCE: Drop recommendations below this (default: 0.0)
        ADAPT_HEAL_MAX_STRATEGIES_PER_PLAN: Strategies merged into one plan (default: 1)
        ADAPT_HEAL_ACTION_TIMEOUT: Per-action timeout in seconds (default: 300)
        ADAPT_HEAL_MAX_RETRIES: Per-action retry limit (default: 3)
        ADAPT_HEAL_RETRY_DELAY: Seconds between action retries (default: 5.0)
        ADAPT_HEAL_PLAN_TIMEOUT: Overall plan timeout in seconds (default: 3600)
        ADAPT_HEAL_ROLLBACK_ORDER: "forward" or "reverse" (default: "reverse")
        ADAPT_HEAL_ENABLE_ROLLBACK: Roll back on failure (default: true)
        ADAPT_HEAL_APPROVAL_RISK_LEVEL: Risk level requiring approval (default: "critical")
        ADAPT_HEAL_STRICT_VALIDATION: Reject unknown step types/parameters (default: false)
        ADAPT_HEAL_LOG_LEVEL: Logging level (default: "INFO")
        ADAPT_HEAL_LOG_FILE: Log file path (optional)

    Config file locations (searched in order):
        ./adapt-heal.yaml, ./adapt-heal.toml
        ~/.adapt-heal.yaml, ~/.adapt-heal.toml
        /etc/adapt-heal.yaml, /etc/adapt-heal.toml
    """
    # Advisory model
    advisory_provider: str = "none"
    advisory_model: str = ""
    advisory_timeout: int = DEFAULT_ADVISORY_TIMEOUT_SECONDS
    advisory_max_retries: int = DEFAULT_ADVISORY_MAX_RETRIES
    advisory_failure_threshold: int = DEFAULT_ADVISORY_FAILURE_THRESHOLD
    advisory_recovery_timeout: float = DEFAULT_ADVISORY_RECOVERY_TIMEOUT_SECONDS

    # Analysis
    allow_graph_only: bool = True
    allow_advisory_only: bool = True
    min_confidence: float = 0.0
    max_strategies_per_plan: int = DEFAULT_MAX_STRATEGIES_PER_PLAN

    # Execution
    action_timeout_seconds: int = DEFAULT_ACTION_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS
    plan_timeout_seconds: int = DEFAULT_PLAN_TIMEOUT_SECONDS
    rollback_order: str = "reverse"
    enable_rollback: bool = True

    # Risk gating and validation
    approval_risk_level: str = DEFAULT_APPROVAL_RISK_LEVEL
    strict_validation: bool = False

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: If any configuration value is invalid
        """
        errors = []

        if self.advisory_timeout <= 0:
            errors.append(f"advisory_timeout must be positive, got {self.advisory_timeout}")
        if self.advisory_max_retries < 0:
            errors.append(
                f"advisory_max_retries must be non-negative, got {self.advisory_max_retries}"
            )
        if self.advisory_failure_threshold <= 0:
            errors.append(
                f"advisory_failure_threshold must be positive, got {self.advisory_failure_threshold}"
            )
        if self.advisory_recovery_timeout <= 0:
            errors.append(
                f"advisory_recovery_timeout must be positive, got {self.advisory_recovery_timeout}"
            )

        if self.advisory_provider not in VALID_ADVISORY_PROVIDERS:
            errors.append(
                f"advisory_provider must be one of {VALID_ADVISORY_PROVIDERS}, "
                f"got '{self.advisory_provider}'"
            )
        if self.advisory_provider != "none" and not self.advisory_model:
            errors.append("advisory_model must be specified when advisory_provider is not 'none'")

        if not (0.0 <= self.min_confidence <= 1.0):
            errors.append(f"min_confidence must be between 0.0 and 1.0, got {self.min_confidence}")
        if self.max_strategies_per_plan <= 0:
            errors.append(
                f"max_strategies_per_plan must be positive, got {self.max_strategies_per_plan}"
            )

        if self.action_timeout_seconds <= 0:
            errors.append(
                f"action_timeout_seconds must be positive, got {self.action_timeout_seconds}"
            )
        if self.max_retries < 0:
            errors.append(f"max_retries must be non-negative, got {self.max_retries}")
        if self.retry_delay_seconds < 0:
            errors.append(
                f"retry_delay_seconds must be non-negative, got {self.retry_delay_seconds}"
            )
        if self.plan_timeout_seconds <= 0:
            errors.append(f"plan_timeout_seconds must be positive, got {self.plan_timeout_seconds}")

        if self.rollback_order.lower() not in VALID_ROLLBACK_ORDERS:
            errors.append(
                f"rollback_order must be one of {VALID_ROLLBACK_ORDERS}, got '{self.rollback_order}'"
            )
        if self.approval_risk_level.lower() not in VALID_RISK_LEVELS:
            errors.append(
                f"approval_risk_level must be one of {VALID_RISK_LEVELS}, "
                f"got '{self.approval_risk_level}'"
            )

        valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.log_level.upper() not in valid_log_levels:
            errors.append(
                f"log_level must be one of {valid_log_levels}, got '{self.log_level}'"
            )

        if errors:
            raise ValueError("Configuration validation failed:\n  - " + "\n  - ".join(errors))

    @classmethod
    def from_env(cls) -> 'HealConfig':
        """
        Create configuration from environment variables only.

        Returns:
            HealConfig instance populated from environment variables
        """
        return cls(
            advisory_provider=os.getenv("ADAPT_HEAL_ADVISORY_PROVIDER", "none"),
            advisory_model=os.getenv("ADAPT_HEAL_ADVISORY_MODEL", ""),
            advisory_timeout=_get_int_env(
                "ADAPT_HEAL_ADVISORY_TIMEOUT", DEFAULT_ADVISORY_TIMEOUT_SECONDS
            ),
            advisory_max_retries=_get_int_env(
                "ADAPT_HEAL_ADVISORY_MAX_RETRIES", DEFAULT_ADVISORY_MAX_RETRIES, allow_zero=True
            ),
            advisory_failure_threshold=_get_int_env(
                "ADAPT_HEAL_ADVISORY_FAILURE_THRESHOLD", DEFAULT_ADVISORY_FAILURE_THRESHOLD
            ),
            advisory_recovery_timeout=_get_float_env(
                "ADAPT_HEAL_ADVISORY_RECOVERY_TIMEOUT", DEFAULT_ADVISORY_RECOVERY_TIMEOUT_SECONDS
            ),
            allow_graph_only=_get_bool_env("ADAPT_HEAL_ALLOW_GRAPH_ONLY", True),
            allow_advisory_only=_get_bool_env("ADAPT_HEAL_ALLOW_ADVISORY_ONLY", True),
            min_confidence=_get_float_env("ADAPT_HEAL_MIN_CONFIDENCE", 0.0),
            max_strategies_per_plan=_get_int_env(
                "ADAPT_HEAL_MAX_STRATEGIES_PER_PLAN", DEFAULT_MAX_STRATEGIES_PER_PLAN
            ),
            action_timeout_seconds=_get_int_env(
                "ADAPT_HEAL_ACTION_TIMEOUT", DEFAULT_ACTION_TIMEOUT_SECONDS
            ),
            max_retries=_get_int_env(
                "ADAPT_HEAL_MAX_RETRIES", DEFAULT_MAX_RETRIES, allow_zero=True
            ),
            retry_delay_seconds=_get_float_env(
                "ADAPT_HEAL_RETRY_DELAY", DEFAULT_RETRY_DELAY_SECONDS
            ),
            plan_timeout_seconds=_get_int_env(
                "ADAPT_HEAL_PLAN_TIMEOUT", DEFAULT_PLAN_TIMEOUT_SECONDS
            ),
            rollback_order=os.getenv("ADAPT_HEAL_ROLLBACK_ORDER", "reverse"),
            enable_rollback=_get_bool_env("ADAPT_HEAL_ENABLE_ROLLBACK", True),
            approval_risk_level=os.getenv(
                "ADAPT_HEAL_APPROVAL_RISK_LEVEL", DEFAULT_APPROVAL_RISK_LEVEL
            ),
            strict_validation=_get_bool_env("ADAPT_HEAL_STRICT_VALIDATION", False),
            log_level=os.getenv("ADAPT_HEAL_LOG_LEVEL", "INFO"),
            log_file=os.getenv("ADAPT_HEAL_LOG_FILE"),
        )

    @classmethod
    def from_file(cls, config_path: Optional[str] = None) -> 'HealConfig':
        """
        Create configuration from file with environment variable overrides.

        If no path is provided, searches standard locations. Falls back to
        environment-only configuration when the file cannot be loaded.

        Args:
            config_path: Optional explicit path to config file.

        Returns:
            HealConfig instance with merged configuration
        """
        from .config_loader import load_config_with_overrides

        try:
            config_dict = load_config_with_overrides(config_path)
            return cls(**config_dict)
        except (OSError, ValueError, TypeError) as e:
            logger.error(f"Failed to load configuration from file: {e}")
            logger.warning("Falling back to environment variable configuration")
            return cls.from_env()

    @classmethod
    def load(cls, config_path: Optional[str] = None, use_file: bool = True) -> 'HealConfig':
        """
        Load configuration with automatic fallback.

        This is the recommended method for loading configuration.

        Args:
            config_path: Optional explicit path to config file
            use_file: If True, attempts to load from file before env vars

        Returns:
            HealConfig instance
        """
        if use_file:
            return cls.from_file(config_path)
        return cls.from_env()
