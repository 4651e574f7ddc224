"""
Centralized logging configuration for ADAPT-Heal.

Provides one logging setup for the engine and the CLI so that repeated
setup calls do not stack handlers.

Functions:
    setup_logging: Configure root logging with console and optional rotating file output.
    configure_cli_logging: Map CLI verbosity flags onto a log level.

Example:
    >>> from adapt_heal.logging_config import setup_logging
    >>> setup_logging(level='DEBUG', log_file='adapt_heal.log')
"""
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional, Union

from .logging_context import JSONFormatter


_LOGGING_CONFIGURED = False


def setup_logging(
    level: str = 'INFO',
    log_file: Optional[Union[str, Path]] = None,
    log_format: Optional[str] = None,
    include_timestamp: bool = True,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
    use_json: bool = False,
) -> None:
    """
    Configure logging for ADAPT-Heal.

    Should be called once at application startup. Later calls only update
    the root level.

    Args:
        level: Log level ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')
        log_file: Optional path to log file; enables rotating file logging.
        log_format: Custom log format string. Ignored when use_json is set.
        include_timestamp: Whether to include timestamps in log messages.
        max_bytes: Maximum size of log file before rotation (default 10MB).
        backup_count: Number of backup log files to keep (default 5).
        use_json: Emit one JSON object per record, including remediation
            context fields (plan_id, correlation_id, ...).
    """
    global _LOGGING_CONFIGURED

    root_logger = logging.getLogger()

    if _LOGGING_CONFIGURED:
        root_logger.setLevel(getattr(logging, level.upper()))
        return

    if use_json:
        formatter: logging.Formatter = JSONFormatter()
    else:
        if log_format is None:
            if include_timestamp:
                log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            else:
                log_format = '%(name)s - %(levelname)s - %(message)s'
        formatter = logging.Formatter(log_format)

    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=max_bytes,
            backupCount=backup_count
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

        root_logger.info(f"Logging to file: {log_path}")

    _LOGGING_CONFIGURED = True

    root_logger.debug(f"Logging configured at {level} level")


def reset_logging_config() -> None:
    """
    Reset logging configuration.

    Intended for test teardown.
    """
    global _LOGGING_CONFIGURED

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    _LOGGING_CONFIGURED = False


def configure_cli_logging(verbose: bool = False, quiet: bool = False,
                          log_file: Optional[str] = None) -> None:
    """
    Configure logging for CLI usage.

    Args:
        verbose: Enable DEBUG level logging
        quiet: Only show WARNING and above
        log_file: Optional rotating log file
    """
    if quiet:
        level = 'WARNING'
    elif verbose:
        level = 'DEBUG'
    else:
        level = 'INFO'

    setup_logging(
        level=level,
        log_file=log_file,
        include_timestamp=verbose
    )
