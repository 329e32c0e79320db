"""LLM provider implementations and factory."""

from supermd.ai.providers.base import LLMMessage, LLMProvider, LLMResponse
from supermd.ai.providers.factory import get_llm_provider, is_llm_provider_configured
from supermd.ai.providers.llm import GroqProvider, OpenAIProvider, StubLLMProvider

__all__ = [
    "get_llm_provider",
    "is_llm_provider_configured",
    "LLMProvider",
    "LLMMessage",
    "LLMResponse",
    "GroqProvider",
    "OpenAIProvider",
    "StubLLMProvider",
]
