"""Tests for the rolling memory summarizer."""

from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from supermd.ai.providers.base import LLMResponse
from supermd.ai.providers.factory import get_llm_provider
from supermd.ai.providers.llm.stub import StubLLMProvider
from supermd.config import Settings, get_settings
from supermd.exceptions import SummarizerError
from supermd.memory.summarizer import (
    MemorySummarizer,
    build_summarizer,
    format_conversation,
)
from supermd.memory.types import MemoryEntry


def _batch() -> list[MemoryEntry]:
    created = datetime(2026, 1, 1)
    return [
        MemoryEntry(id=1, role="human", content="What is in roadmap.md?", tokens=6, created_at=created),
        MemoryEntry(id=2, role="assistant", content="Three milestones.", tokens=5, created_at=created),
    ]


class TestFormatConversation:
    def test_labels_speakers(self):
        assert format_conversation(_batch()) == (
            "User: What is in roadmap.md?\nSuperMD: Three milestones."
        )


class TestMemorySummarizer:
    """Test MemorySummarizer against stub and mocked providers."""

    @pytest.mark.asyncio
    async def test_summarizes_with_stub_provider(self):
        summarizer = MemorySummarizer(StubLLMProvider())

        text = await summarizer.summarize("", _batch())

        assert text.startswith("[stub summary]")
        assert "roadmap.md" in text

    @pytest.mark.asyncio
    async def test_prompt_includes_previous_summary(self):
        llm = AsyncMock()
        llm.name = "mock"
        llm.generate.return_value = LLMResponse(
            content="merged", model="m", tokens_in=10, tokens_out=1
        )
        summarizer = MemorySummarizer(llm, model_id="m", max_output_tokens=123)

        text = await summarizer.summarize("earlier summary", _batch())

        assert text == "merged"
        messages = llm.generate.call_args.args[0]
        assert messages[0].role == "system"
        assert "earlier summary" in messages[1].content
        assert "SuperMD: Three milestones." in messages[1].content
        assert llm.generate.call_args.kwargs["max_tokens"] == 123

    @pytest.mark.asyncio
    async def test_empty_output_keeps_previous_summary(self):
        llm = AsyncMock()
        llm.name = "mock"
        llm.generate.return_value = LLMResponse(content="  ", model="m", tokens_in=1, tokens_out=0)

        text = await MemorySummarizer(llm).summarize("previous", _batch())

        assert text == "previous"

    @pytest.mark.asyncio
    async def test_provider_failure_raises_summarizer_error(self):
        llm = AsyncMock()
        llm.name = "mock"
        llm.generate.side_effect = RuntimeError("boom")

        with pytest.raises(SummarizerError):
            await MemorySummarizer(llm).summarize("", _batch())

    @pytest.mark.asyncio
    async def test_timeout_raises_summarizer_error(self):
        summarizer = MemorySummarizer(StubLLMProvider(latency_seconds=1.0), timeout_seconds=0.01)

        with pytest.raises(SummarizerError) as exc_info:
            await summarizer.summarize("", _batch())

        assert "timed out" in exc_info.value.message


class TestBuildSummarizer:
    """Test summarizer construction from settings."""

    def test_stub_provider_means_no_summarizer(self):
        assert build_summarizer(Settings(llm_provider="stub")) is None

    def test_missing_api_key_means_no_summarizer(self, monkeypatch):
        monkeypatch.setenv("LLM_PROVIDER", "openai")
        monkeypatch.setenv("LLM_API_KEY", "")
        get_settings.cache_clear()

        assert build_summarizer(get_settings()) is None

    def test_configured_provider_builds_summarizer(self, monkeypatch):
        monkeypatch.setenv("LLM_PROVIDER", "openai")
        monkeypatch.setenv("LLM_API_KEY", "sk-test")
        get_settings.cache_clear()
        get_llm_provider.cache_clear()

        summarizer = build_summarizer(get_settings())

        assert summarizer is not None
        assert summarizer.llm.name == "openai"
        get_llm_provider.cache_clear()
