"""Rolling summarization of folded memory entries."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence

from supermd.ai.providers.base import LLMMessage, LLMProvider
from supermd.ai.providers.factory import get_llm_provider, is_llm_provider_configured
from supermd.config import Settings, get_settings
from supermd.exceptions import SummarizerError
from supermd.memory.types import MemoryEntry

logger = logging.getLogger("memory")

SUMMARY_SYSTEM_PROMPT = (
    "You maintain the conversation memory of SuperMD, a markdown notebook assistant. "
    "Compress earlier conversation into a short summary. Keep named entities, "
    "document names and the referents a later question may point back to. "
    "Stay under 250 words."
)

# Rolling summary prompt - merges the previous summary with the folded turns
SUMMARY_PROMPT = """Existing summary (write "(none)" if empty): {previous_summary}

New conversation:
{conversation}

Write the updated summary as bullets or short paragraphs. Keep the keywords the
assistant needs to resolve references such as "that document" or "the previous step"."""

SPEAKER_LABELS = {
    "human": "User",
    "assistant": "SuperMD",
    "system": "System",
}


class MemorySummarizer:
    """Merges a batch of entries into the previous summary via an LLM."""

    def __init__(
        self,
        llm: LLMProvider,
        model_id: str | None = None,
        timeout_seconds: float = 30.0,
        max_output_tokens: int = 500,
        temperature: float = 0.3,
    ):
        self.llm = llm
        self.model_id = model_id
        self.timeout_seconds = timeout_seconds
        self.max_output_tokens = max_output_tokens
        self.temperature = temperature

    async def summarize(self, previous_summary: str, batch: Sequence[MemoryEntry]) -> str:
        """Return the merged summary; the previous one if the model returns nothing.

        Raises:
            SummarizerError: On model failure or timeout.
        """
        messages = [
            LLMMessage(role="system", content=SUMMARY_SYSTEM_PROMPT),
            LLMMessage(
                role="user",
                content=SUMMARY_PROMPT.format(
                    previous_summary=previous_summary or "(none)",
                    conversation=format_conversation(batch),
                ),
            ),
        ]

        start_time = time.time()
        try:
            response = await asyncio.wait_for(
                self.llm.generate(
                    messages,
                    model=self.model_id,
                    temperature=self.temperature,
                    max_tokens=self.max_output_tokens,
                ),
                timeout=self.timeout_seconds,
            )
        except TimeoutError as exc:
            raise SummarizerError(
                f"Summarization timed out after {self.timeout_seconds}s",
                details={"provider": self.llm.name},
            ) from exc
        except Exception as exc:
            raise SummarizerError(
                f"Summarization failed: {exc}",
                details={"provider": self.llm.name},
            ) from exc

        logger.info(
            "Memory batch summarized",
            extra={
                "service": "memory",
                "provider": self.llm.name,
                "model_id": response.model,
                "batch_size": len(batch),
                "tokens_in": response.tokens_in,
                "tokens_out": response.tokens_out,
                "duration_ms": int((time.time() - start_time) * 1000),
            },
        )

        text = (response.content or "").strip()
        return text or previous_summary

    async def aclose(self) -> None:
        await self.llm.aclose()


def format_conversation(batch: Sequence[MemoryEntry]) -> str:
    """Format entries as speaker-labelled lines for the summary prompt."""
    return "\n".join(
        f"{SPEAKER_LABELS.get(entry.role, 'System')}: {entry.content}" for entry in batch
    )


def build_summarizer(settings: Settings | None = None) -> MemorySummarizer | None:
    """Summarizer for the configured provider, or ``None`` without credentials.

    Without a summarizer, trimming drops folded entries instead of
    summarizing them.
    """
    settings = settings or get_settings()
    provider = settings.effective_summary_provider
    if not is_llm_provider_configured(provider):
        logger.info(
            "No summarization model configured, memory trims will drop old entries",
            extra={"service": "memory", "provider": provider},
        )
        return None
    return MemorySummarizer(
        llm=get_llm_provider(provider),
        model_id=settings.llm_model,
        timeout_seconds=settings.agent_memory_summary_timeout_seconds,
        max_output_tokens=settings.agent_memory_summary_max_output_tokens,
    )
