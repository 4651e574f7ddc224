"""
Version information for ADAPT-Heal.

Single source of truth for the package version, shared by the CLI and the
remediation engine's result payloads.
"""

__version__ = "1.0.0-alpha"

VERSION_INFO = {
    "version": __version__,
    "api_version": "v1",
    "platform": "ADAPT",
    "name": "ADAPT-Heal",
    "full_name": "Adaptive Diagnostic Agent for Proactive Troubleshooting - Remediation Orchestrator",
}


def get_version() -> str:
    """Return the current version string."""
    return __version__


def get_version_info() -> dict:
    """Return detailed version information."""
    return VERSION_INFO.copy()
