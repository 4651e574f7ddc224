"""
Structured logging with remediation correlation context.

Context values (correlation_id, execution_id, plan_id, action_id,
error_type) live in a ContextVar, so each asyncio task running a plan
carries its own copy and concurrent plans never mix their log fields.
"""

import contextvars
import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

CONTEXT_FIELDS = ('correlation_id', 'execution_id', 'plan_id', 'action_id', 'error_type')

remediation_context: contextvars.ContextVar[dict] = contextvars.ContextVar(
    'remediation_context', default={}
)


class ContextualLogger(logging.LoggerAdapter):
    """
    Logger adapter that injects remediation context into log records.

    Usage:
        logger = get_logger(__name__)
        with LoggingContext(plan_id='plan-1', correlation_id='c-9'):
            logger.info("Executing step")
    """

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        ctx = remediation_context.get({})
        extra = dict(kwargs.get('extra') or {})

        for key in CONTEXT_FIELDS:
            value = ctx.get(key)
            if value is not None:
                extra.setdefault(key, value)

        kwargs['extra'] = extra
        return msg, kwargs


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs log records as JSON objects with consistent fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        ctx = remediation_context.get({})
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None) or ctx.get(key)
            if value is not None:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def get_logger(name: str, use_json: bool = False) -> ContextualLogger:
    """
    Get a contextual logger instance.

    Args:
        name: Logger name (typically __name__)
        use_json: Attach a JSON stream handler if the logger has none
    """
    base_logger = logging.getLogger(name)

    if use_json and not base_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
        base_logger.addHandler(handler)
        base_logger.setLevel(logging.INFO)

    return ContextualLogger(base_logger, {})


def set_context(**kwargs: Any) -> contextvars.Token:
    """
    Merge values into the current remediation context.

    Returns:
        Token to reset context later via remediation_context.reset(token)
    """
    current = remediation_context.get({}).copy()
    current.update(kwargs)
    return remediation_context.set(current)


def get_context() -> dict:
    """Get current remediation context."""
    return remediation_context.get({}).copy()


def clear_context() -> None:
    """Clear remediation context."""
    remediation_context.set({})


class LoggingContext:
    """
    Context manager for setting logging context.

    Usage:
        with LoggingContext(plan_id='plan-1'):
            logger.info("Processing")  # Includes plan_id
    """

    def __init__(self, **kwargs: Any):
        self.kwargs = kwargs
        self.token: Optional[contextvars.Token] = None

    def __enter__(self):
        self.token = set_context(**self.kwargs)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.token:
            remediation_context.reset(self.token)
        return False
