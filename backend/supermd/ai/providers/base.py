"""Chat-completion provider interface.

The memory summarizer is the only caller: it needs a single non-streaming
completion per fold, so that is all a provider has to implement.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar, Literal

Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class LLMMessage:
    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class LLMResponse:
    """Completion text plus the usage numbers reported by the provider."""

    content: str
    model: str
    tokens_in: int
    tokens_out: int
    finish_reason: str | None = None


class LLMProvider(ABC):
    """Base class for registered providers.

    Subclasses set ``name`` (the registry key and the ``LLM_PROVIDER`` value)
    and, optionally, ``DEFAULT_MODEL``.
    """

    name: ClassVar[str]
    DEFAULT_MODEL: ClassVar[str | None] = None

    @classmethod
    def resolve_model(cls, model: str | None) -> str | None:
        """Return the configured model if set, otherwise DEFAULT_MODEL."""
        return (model or "").strip() or cls.DEFAULT_MODEL

    @abstractmethod
    async def generate(
        self,
        messages: list[LLMMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
        **kwargs: Any,
    ) -> LLMResponse:
        """Generate a complete response.

        Args:
            messages: Conversation, oldest first
            model: Model ID (provider-specific); the provider default when unset
            temperature: Sampling temperature (0-1)
            max_tokens: Maximum tokens to generate
            **kwargs: Provider-specific request fields
        """

    async def aclose(self) -> None:
        """Release network resources held by the provider."""
