"""
ADAPT-Heal: Adaptive Diagnostic Agent for Proactive Troubleshooting – Self-Healing Orchestrator.
"""
from .version import __version__, VERSION_INFO, get_version, get_version_info
from .logging_context import (
    get_logger,
    set_context,
    get_context,
    clear_context,
    LoggingContext,
)
from .metrics import (
    track_remediation_total,
    track_remediation_duration,
    track_rollback,
    track_advisory_request,
    get_metrics_text,
)
from .models import ErrorContext, ImpactScope, RiskLevel, Severity

__all__ = [
    "__version__",
    "VERSION_INFO",
    "get_version",
    "get_version_info",
    "get_logger",
    "set_context",
    "get_context",
    "clear_context",
    "LoggingContext",
    "track_remediation_total",
    "track_remediation_duration",
    "track_rollback",
    "track_advisory_request",
    "get_metrics_text",
    "ErrorContext",
    "ImpactScope",
    "RiskLevel",
    "Severity",
]
