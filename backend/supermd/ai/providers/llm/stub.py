"""Stub provider for tests and offline development."""

import asyncio

from supermd.ai.providers.base import LLMMessage, LLMProvider, LLMResponse
from supermd.ai.providers.registry import register_llm_provider


@register_llm_provider
class StubLLMProvider(LLMProvider):
    """Deterministic provider that condenses the last user message.

    Good enough to exercise the memory summarizer without network access.
    """

    name = "stub"
    MAX_CHARS = 400

    def __init__(self, latency_seconds: float = 0.0) -> None:
        self._latency = latency_seconds

    async def generate(
        self,
        messages: list[LLMMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
        **kwargs,
    ) -> LLMResponse:
        if self._latency:
            await asyncio.sleep(self._latency)

        last_user = next((m.content for m in reversed(messages) if m.role == "user"), "")
        lines = [line.strip() for line in last_user.splitlines() if line.strip()]
        condensed = " ".join(lines)[: min(self.MAX_CHARS, max_tokens * 4)]

        return LLMResponse(
            content=f"[stub summary] {condensed}" if condensed else "",
            model="stub",
            tokens_in=sum(len(m.content.split()) for m in messages),
            tokens_out=len(condensed.split()),
            finish_reason="stop",
        )
