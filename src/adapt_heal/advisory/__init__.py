"""Advisory model integration: providers and the advisory client."""
from .base import LLMMessage, LLMProvider, LLMResponse
from .client import (
    AdvisoryAnalysis,
    AdvisoryClient,
    LLMAdvisoryClient,
    NullAdvisoryClient,
    StaticAdvisoryClient,
    build_advisory_result,
    create_advisory_client,
    normalize_scores,
)
from .factory import get_llm_provider

__all__ = [
    "AdvisoryAnalysis",
    "AdvisoryClient",
    "LLMAdvisoryClient",
    "LLMMessage",
    "LLMProvider",
    "LLMResponse",
    "NullAdvisoryClient",
    "StaticAdvisoryClient",
    "build_advisory_result",
    "create_advisory_client",
    "get_llm_provider",
    "normalize_scores",
]
