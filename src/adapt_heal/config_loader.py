"""
Configuration file loader for ADAPT-Heal.

Supports loading configuration from YAML and TOML files with environment
variable overrides and a standard search path.

File layout (YAML shown, TOML uses the same tables):

    advisory:
      provider: anthropic
      model: claude-3-5-sonnet-20241022
      timeout: 30
    analysis:
      allow_graph_only: true
      min_confidence: 0.2
    execution:
      action_timeout_seconds: 120
      rollback_order: reverse
    risk:
      approval_risk_level: high
    logging:
      level: DEBUG
"""

import os
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)


def _parse_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


# env var -> (section, key, parser)
ENV_OVERRIDES: Dict[str, Tuple[str, str, Callable[[str], Any]]] = {
    "ADAPT_HEAL_ADVISORY_PROVIDER": ("advisory", "provider", str),
    "ADAPT_HEAL_ADVISORY_MODEL": ("advisory", "model", str),
    "ADAPT_HEAL_ADVISORY_TIMEOUT": ("advisory", "timeout", int),
    "ADAPT_HEAL_ADVISORY_MAX_RETRIES": ("advisory", "max_retries", int),
    "ADAPT_HEAL_ADVISORY_FAILURE_THRESHOLD": ("advisory", "failure_threshold", int),
    "ADAPT_HEAL_ADVISORY_RECOVERY_TIMEOUT": ("advisory", "recovery_timeout", float),
    "ADAPT_HEAL_ALLOW_GRAPH_ONLY": ("analysis", "allow_graph_only", _parse_bool),
    "ADAPT_HEAL_ALLOW_ADVISORY_ONLY": ("analysis", "allow_advisory_only", _parse_bool),
    "ADAPT_HEAL_MIN_CONFIDENCE": ("analysis", "min_confidence", float),
    "ADAPT_HEAL_MAX_STRATEGIES_PER_PLAN": ("analysis", "max_strategies_per_plan", int),
    "ADAPT_HEAL_ACTION_TIMEOUT": ("execution", "action_timeout_seconds", int),
    "ADAPT_HEAL_MAX_RETRIES": ("execution", "max_retries", int),
    "ADAPT_HEAL_RETRY_DELAY": ("execution", "retry_delay_seconds", float),
    "ADAPT_HEAL_PLAN_TIMEOUT": ("execution", "plan_timeout_seconds", int),
    "ADAPT_HEAL_ROLLBACK_ORDER": ("execution", "rollback_order", str),
    "ADAPT_HEAL_ENABLE_ROLLBACK": ("execution", "enable_rollback", _parse_bool),
    "ADAPT_HEAL_APPROVAL_RISK_LEVEL": ("risk", "approval_risk_level", str),
    "ADAPT_HEAL_STRICT_VALIDATION": ("risk", "strict_validation", _parse_bool),
    "ADAPT_HEAL_LOG_LEVEL": ("logging", "level", str),
    "ADAPT_HEAL_LOG_FILE": ("logging", "file", str),
}

# (section, key) -> HealConfig field
SECTION_FIELDS: Dict[Tuple[str, str], str] = {
    ("advisory", "provider"): "advisory_provider",
    ("advisory", "model"): "advisory_model",
    ("advisory", "timeout"): "advisory_timeout",
    ("advisory", "max_retries"): "advisory_max_retries",
    ("advisory", "failure_threshold"): "advisory_failure_threshold",
    ("advisory", "recovery_timeout"): "advisory_recovery_timeout",
    ("analysis", "allow_graph_only"): "allow_graph_only",
    ("analysis", "allow_advisory_only"): "allow_advisory_only",
    ("analysis", "min_confidence"): "min_confidence",
    ("analysis", "max_strategies_per_plan"): "max_strategies_per_plan",
    ("execution", "action_timeout_seconds"): "action_timeout_seconds",
    ("execution", "max_retries"): "max_retries",
    ("execution", "retry_delay_seconds"): "retry_delay_seconds",
    ("execution", "plan_timeout_seconds"): "plan_timeout_seconds",
    ("execution", "rollback_order"): "rollback_order",
    ("execution", "enable_rollback"): "enable_rollback",
    ("risk", "approval_risk_level"): "approval_risk_level",
    ("risk", "strict_validation"): "strict_validation",
    ("logging", "level"): "log_level",
    ("logging", "file"): "log_file",
}


def load_yaml_file(path: Path) -> dict:
    """
    Load configuration from a YAML file.

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If YAML parsing fails
    """
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        with open(path, 'r') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Failed to parse YAML config file {path}: {e}") from e

    return config if config is not None else {}


def load_toml_file(path: Path) -> dict:
    """
    Load configuration from a TOML file.

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If TOML parsing fails
    """
    try:
        # Python 3.11+ has tomllib built-in
        import tomllib
    except ImportError:
        import tomli as tomllib

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        with open(path, 'rb') as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Failed to parse TOML config file {path}: {e}") from e


def load_config_file(path: str) -> dict:
    """
    Load configuration from a YAML or TOML file.

    The file format is determined by the file extension (.yaml, .yml, or .toml).

    Raises:
        ValueError: If file extension is not supported or parsing fails
        FileNotFoundError: If file doesn't exist
    """
    file_path = Path(path)
    suffix = file_path.suffix.lower()

    if suffix in ['.yaml', '.yml']:
        return load_yaml_file(file_path)
    elif suffix == '.toml':
        return load_toml_file(file_path)
    else:
        raise ValueError(
            f"Unsupported config file format: {suffix}. "
            "Supported formats: .yaml, .yml, .toml"
        )


def find_config_file() -> Optional[Path]:
    """
    Search for a configuration file in standard locations.

    Search order: ./adapt-heal.{yaml,toml}, ~/.adapt-heal.{yaml,toml},
    /etc/adapt-heal.{yaml,toml}.

    Returns:
        Path to the first configuration file found, or None
    """
    search_paths = [
        Path.cwd() / "adapt-heal.yaml",
        Path.cwd() / "adapt-heal.toml",
        Path.home() / ".adapt-heal.yaml",
        Path.home() / ".adapt-heal.toml",
        Path("/etc/adapt-heal.yaml"),
        Path("/etc/adapt-heal.toml"),
    ]

    for path in search_paths:
        if path.exists() and path.is_file():
            logger.info(f"Found configuration file: {path}")
            return path

    logger.debug("No configuration file found in standard locations")
    return None


def get_env_config() -> dict:
    """
    Extract nested configuration from ADAPT_HEAL_* environment variables.

    Unparseable values are skipped with a warning.
    """
    config: Dict[str, Dict[str, Any]] = {}

    for env_var, (section, key, parser) in ENV_OVERRIDES.items():
        raw = os.getenv(env_var)
        if not raw:
            continue
        try:
            value = parser(raw)
        except ValueError:
            logger.warning(f"Invalid {env_var}, ignoring")
            continue
        config.setdefault(section, {})[key] = value

    return config


def deep_merge(base: dict, override: dict) -> dict:
    """
    Deep merge two dictionaries, with override values taking precedence.
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def flatten_config(config: dict) -> dict:
    """
    Flatten nested configuration sections onto HealConfig field names.

    Unknown sections and keys are logged and ignored.
    """
    flat = {}

    for section, values in config.items():
        if not isinstance(values, dict):
            logger.warning(f"Ignoring non-table config section '{section}'")
            continue
        for key, value in values.items():
            field_name = SECTION_FIELDS.get((section, key))
            if field_name is None:
                logger.warning(f"Ignoring unknown config key '{section}.{key}'")
                continue
            flat[field_name] = value

    return flat


def merge_config(file_config: dict, env_config: dict) -> dict:
    """
    Merge file-based and environment-based configuration.

    Environment variables take precedence over file-based configuration.

    Returns:
        Merged configuration dictionary (flattened)
    """
    merged = deep_merge(file_config, env_config)
    return flatten_config(merged)


def load_config_with_overrides(config_path: Optional[str] = None) -> dict:
    """
    Load configuration from file with environment variable overrides.

    Args:
        config_path: Optional explicit path to config file.
                    If None, searches standard locations.

    Returns:
        Dictionary containing merged configuration

    Raises:
        FileNotFoundError: If explicit config_path is provided but doesn't exist
        ValueError: If config parsing fails
    """
    file_config = {}

    if config_path:
        file_config = load_config_file(config_path)
        logger.info(f"Loaded configuration from: {config_path}")
    else:
        found_path = find_config_file()
        if found_path:
            file_config = load_config_file(str(found_path))
            logger.info(f"Loaded configuration from: {found_path}")

    env_config = get_env_config()
    if env_config:
        logger.info("Applying environment variable overrides")

    return merge_config(file_config, env_config)
