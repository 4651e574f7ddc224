"""
Provider seam for the advisory client.

The advisory client asks one question per ErrorContext: a system prompt
fixing the JSON reply shape, then a user prompt describing the incident.
A provider turns that exchange into a single SDK call and hands back the
raw reply. Decoding strategy scores stays with the client.
"""
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict

from ..constants import DEFAULT_ADVISORY_MAX_TOKENS, DEFAULT_ADVISORY_TEMPERATURE

MessageRole = Literal["system", "user", "assistant"]

# Finish reasons reported when the token limit cut the reply short
TRUNCATED_FINISH_REASONS = frozenset({"length", "max_tokens"})

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*\})\s*```", re.DOTALL)


def extract_json_text(content: str) -> str:
    """The body of a fenced ```json block if the reply has one, else the stripped reply."""
    text = content.strip()
    fenced = _FENCED_JSON.search(text)
    return fenced.group(1) if fenced else text


class LLMMessage(BaseModel):
    """One turn of an advisory exchange."""
    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str


class LLMResponse(BaseModel):
    """Raw reply to an advisory exchange."""
    content: str
    model: str
    usage: Optional[Dict[str, int]] = None
    finish_reason: Optional[str] = None

    @property
    def truncated(self) -> bool:
        return self.finish_reason in TRUNCATED_FINISH_REASONS

    def json_text(self) -> str:
        return extract_json_text(self.content)


class LLMProvider(ABC):
    """
    A language model able to answer an advisory exchange.

    ``complete`` is synchronous; the advisory client runs it in a worker
    thread. Implementations translate SDK failures into
    ``adapt_heal.exceptions`` types (TimeoutError, RateLimitError,
    ConnectionError, AuthenticationError) so retry decisions do not depend
    on any one SDK.
    """

    name = "llm"

    def __init__(self, model: str, api_key: Optional[str] = None, **kwargs: Any):
        self.model = model
        self.api_key = api_key
        self.kwargs = kwargs

    @abstractmethod
    def complete(
        self,
        messages: List[LLMMessage],
        temperature: float = DEFAULT_ADVISORY_TEMPERATURE,
        max_tokens: Optional[int] = DEFAULT_ADVISORY_MAX_TOKENS
    ) -> LLMResponse:
        """Answer ``messages`` with a single completion."""

    def advisory_exchange(self, system_prompt: str, prompt: str) -> List[LLMMessage]:
        """Instructions first, then the incident."""
        return [
            LLMMessage(role="system", content=system_prompt),
            LLMMessage(role="user", content=prompt),
        ]

    def __repr__(self) -> str:
        return f"{type(self).__name__}(model={self.model!r})"
