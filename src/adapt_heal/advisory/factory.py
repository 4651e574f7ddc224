"""
Factory for creating advisory model providers.
"""
import logging
from typing import Optional

from .base import LLMProvider

logger = logging.getLogger(__name__)


def get_llm_provider(
    provider_name: str,
    model: Optional[str] = None,
    api_key: Optional[str] = None,
    **kwargs
) -> Optional[LLMProvider]:
    """
    Get an LLM provider instance.

    Args:
        provider_name: "anthropic", "openai" or "none"
        model: Model identifier; provider default when omitted
        api_key: API key; the SDK's environment variable when omitted
        **kwargs: Provider-specific parameters such as ``timeout``

    Returns:
        LLMProvider instance, or None when the provider is "none"

    Raises:
        ValueError: If provider name is not recognized
        ImportError: If the provider SDK is not installed
    """
    provider_name = (provider_name or "none").lower()

    if provider_name == "none":
        logger.info("Advisory model disabled")
        return None

    if provider_name == "openai":
        from .openai_provider import DEFAULT_OPENAI_MODEL, OpenAIProvider
        model = model or DEFAULT_OPENAI_MODEL
        logger.info(f"Using OpenAI advisory provider with model {model}")
        return OpenAIProvider(model=model, api_key=api_key, **kwargs)

    if provider_name == "anthropic":
        from .anthropic_provider import DEFAULT_ANTHROPIC_MODEL, AnthropicProvider
        model = model or DEFAULT_ANTHROPIC_MODEL
        logger.info(f"Using Anthropic advisory provider with model {model}")
        return AnthropicProvider(model=model, api_key=api_key, **kwargs)

    raise ValueError(
        f"Unknown advisory provider: {provider_name}. "
        f"Supported providers: anthropic, openai, none"
    )
