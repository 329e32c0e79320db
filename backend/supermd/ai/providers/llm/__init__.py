"""LLM provider implementations."""

from supermd.ai.providers.llm.groq import GroqProvider
from supermd.ai.providers.llm.openai import OpenAIProvider
from supermd.ai.providers.llm.stub import StubLLMProvider

__all__ = [
    "GroqProvider",
    "OpenAIProvider",
    "StubLLMProvider",
]
