"""
Sanitization helpers for text that crosses a trust boundary: prompts sent to
the advisory model, errors coming back from providers and actions, and
values written to logs.
"""

from .sanitization import (
    redact_secrets,
    sanitize_api_error,
    sanitize_for_llm,
    sanitize_for_logging,
)

__all__ = [
    "redact_secrets",
    "sanitize_api_error",
    "sanitize_for_llm",
    "sanitize_for_logging",
]
