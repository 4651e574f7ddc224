"""
Anthropic provider for the advisory model.
"""
import logging
from typing import List, Optional

from .base import LLMMessage, LLMProvider, LLMResponse
from ..constants import DEFAULT_ADVISORY_MAX_TOKENS, DEFAULT_ADVISORY_TIMEOUT_SECONDS
from ..exceptions import (
    AdvisoryError,
    AuthenticationError,
    ConnectionError,
    RateLimitError,
    TimeoutError,
)
from ..security import sanitize_api_error

logger = logging.getLogger(__name__)

DEFAULT_ANTHROPIC_MODEL = "claude-3-5-sonnet-20241022"


class AnthropicProvider(LLMProvider):
    """Anthropic API provider for Claude models."""

    name = "anthropic"

    def __init__(
        self,
        model: str = DEFAULT_ANTHROPIC_MODEL,
        api_key: Optional[str] = None,
        timeout: int = DEFAULT_ADVISORY_TIMEOUT_SECONDS,
        **kwargs
    ):
        super().__init__(model, api_key, **kwargs)
        self.timeout = timeout

        try:
            import anthropic
        except ImportError:
            raise ImportError(
                "Anthropic package not installed. Install with: pip install adapt-heal[llm]"
            )
        self.anthropic = anthropic

        # Without an explicit key the SDK reads ANTHROPIC_API_KEY
        client_kwargs = {"timeout": timeout, "max_retries": 0}
        if api_key:
            client_kwargs["api_key"] = api_key
        self.client = anthropic.Anthropic(**client_kwargs)

    def complete(
        self,
        messages: List[LLMMessage],
        temperature: float = 0.2,
        max_tokens: Optional[int] = None
    ) -> LLMResponse:
        # Anthropic takes the system prompt separately
        system_message = None
        conversation = []
        for msg in messages:
            if msg.role == "system":
                system_message = msg.content
            else:
                conversation.append({"role": msg.role, "content": msg.content})

        request = {
            "model": self.model,
            "messages": conversation,
            "temperature": temperature,
            "max_tokens": max_tokens or DEFAULT_ADVISORY_MAX_TOKENS,
        }
        if system_message:
            request["system"] = system_message

        logger.debug(f"Calling Anthropic API with model {self.model} (timeout: {self.timeout}s)")

        try:
            response = self.client.messages.create(**request)
        except self.anthropic.APITimeoutError as e:
            raise TimeoutError(f"Anthropic API timed out after {self.timeout}s") from e
        except self.anthropic.RateLimitError as e:
            raise RateLimitError(f"Anthropic rate limit: {sanitize_api_error(e)}") from e
        except self.anthropic.AuthenticationError as e:
            raise AuthenticationError(f"Anthropic authentication failed: {sanitize_api_error(e)}") from e
        except self.anthropic.APIConnectionError as e:
            raise ConnectionError(f"Anthropic connection failed: {sanitize_api_error(e)}") from e
        except self.anthropic.APIError as e:
            raise AdvisoryError(f"Anthropic API error: {sanitize_api_error(e)}") from e

        return LLMResponse(
            content=response.content[0].text,
            model=response.model,
            usage={
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
                "total_tokens": response.usage.input_tokens + response.usage.output_tokens,
            },
            finish_reason=response.stop_reason,
        )
