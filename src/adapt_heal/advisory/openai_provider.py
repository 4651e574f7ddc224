"""
OpenAI provider for the advisory model.
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

DEFAULT_OPENAI_MODEL = "gpt-4o"


class OpenAIProvider(LLMProvider):
    """OpenAI API provider for GPT models."""

    name = "openai"

    def __init__(
        self,
        model: str = DEFAULT_OPENAI_MODEL,
        api_key: Optional[str] = None,
        timeout: int = DEFAULT_ADVISORY_TIMEOUT_SECONDS,
        **kwargs
    ):
        super().__init__(model, api_key, **kwargs)
        self.timeout = timeout

        try:
            import openai
        except ImportError:
            raise ImportError(
                "OpenAI package not installed. Install with: pip install adapt-heal[llm]"
            )
        self.openai = openai

        # Without an explicit key the SDK reads OPENAI_API_KEY
        client_kwargs = {"timeout": timeout, "max_retries": 0}
        if api_key:
            client_kwargs["api_key"] = api_key
        self.client = openai.OpenAI(**client_kwargs)

    def complete(
        self,
        messages: List[LLMMessage],
        temperature: float = 0.2,
        max_tokens: Optional[int] = None
    ) -> LLMResponse:
        logger.debug(f"Calling OpenAI API with model {self.model} (timeout: {self.timeout}s)")

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": m.role, "content": m.content} for m in messages],
                temperature=temperature,
                max_tokens=max_tokens or DEFAULT_ADVISORY_MAX_TOKENS,
                response_format={"type": "json_object"},
            )
        except self.openai.APITimeoutError as e:
            raise TimeoutError(f"OpenAI API timed out after {self.timeout}s") from e
        except self.openai.RateLimitError as e:
            raise RateLimitError(f"OpenAI rate limit: {sanitize_api_error(e)}") from e
        except self.openai.AuthenticationError as e:
            raise AuthenticationError(f"OpenAI authentication failed: {sanitize_api_error(e)}") from e
        except self.openai.APIConnectionError as e:
            raise ConnectionError(f"OpenAI connection failed: {sanitize_api_error(e)}") from e
        except self.openai.APIError as e:
            raise AdvisoryError(f"OpenAI API error: {sanitize_api_error(e)}") from e

        choice = response.choices[0]
        usage = None
        if response.usage is not None:
            usage = {
                "input_tokens": response.usage.prompt_tokens,
                "output_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return LLMResponse(
            content=choice.message.content or "",
            model=response.model,
            usage=usage,
            finish_reason=choice.finish_reason,
        )
