"""Tests for AgentMemoryService trimming and context helpers."""

import asyncio
from collections.abc import Sequence
from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from supermd.exceptions import StoreUnavailableError, SummarizerError
from supermd.memory import (
    AgentMemoryService,
    InMemoryMemoryStore,
    MemoryEntryInput,
    MemoryStore,
    MemorySummary,
    close_memory_service,
    collect_conversation_context,
    memory_to_messages,
    set_memory_service,
)
from supermd.memory.service import select_fold_batch
from supermd.memory.types import MemoryEntry, MemoryWindow

USER = "user-1"
MODE = "rag"


def _entries(count: int, chars: int = 800, role: str = "human") -> list[MemoryEntryInput]:
    return [MemoryEntryInput(role=role, content=f"{i}" + "x" * (chars - 1)) for i in range(count)]


def _entry(entry_id: int, tokens: int, role: str = "human", content: str = "x", metadata=None):
    return MemoryEntry(
        id=entry_id,
        role=role,
        content=content,
        tokens=tokens,
        created_at=datetime(2026, 1, 1),
        metadata=metadata,
    )


class FakeSummarizer:
    """Returns a fixed summary and records what it was asked to fold."""

    def __init__(self, text: str = "short summary", delay: float = 0.0):
        self.text = text
        self.delay = delay
        self.calls: list[tuple[str, list[str]]] = []

    async def summarize(self, previous_summary: str, batch: Sequence[MemoryEntry]) -> str:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.calls.append((previous_summary, [entry.content for entry in batch]))
        return self.text


class FailingSummarizer:
    async def summarize(self, previous_summary: str, batch: Sequence[MemoryEntry]) -> str:
        raise SummarizerError("model unavailable")


class UnavailableStore(MemoryStore):
    async def load(self, user_id, mode):
        raise StoreUnavailableError("down")

    async def append(self, user_id, mode, entries, tokens):
        raise StoreUnavailableError("down")

    async def fold(self, user_id, mode, entry_ids, summary, clear_summary=False):
        raise StoreUnavailableError("down")


class TestSelectFoldBatch:
    """Test batch selection."""

    def test_covers_overflow_with_min_batch(self):
        entries = [_entry(i, 200) for i in range(10)]

        batch = select_fold_batch(entries, overflow=400, min_batch=4)

        assert [entry.id for entry in batch] == [0, 1, 2, 3]

    def test_extends_past_min_batch_to_cover_overflow(self):
        entries = [_entry(i, 100) for i in range(10)]

        batch = select_fold_batch(entries, overflow=550, min_batch=2)

        assert len(batch) == 6

    def test_short_log_folds_everything(self):
        entries = [_entry(0, 900)]

        assert select_fold_batch(entries, overflow=500, min_batch=4) == entries

    def test_empty_log(self):
        assert select_fold_batch([], overflow=10, min_batch=4) == []


class TestTrim:
    """Test the trim loop."""

    @pytest.mark.asyncio
    async def test_ten_entries_fold_oldest_four(self):
        service = AgentMemoryService(InMemoryMemoryStore(), max_tokens=1600, min_batch_messages=4)

        await service.append(USER, MODE, _entries(10))
        window = await service.load(USER, MODE)

        assert len(window.entries) == 6
        assert window.total_tokens == 1200
        assert window.entries[0].content.startswith("4")

    @pytest.mark.asyncio
    async def test_folded_entries_become_summary(self):
        summarizer = FakeSummarizer("user asked about pricing")
        service = AgentMemoryService(InMemoryMemoryStore(), summarizer=summarizer)

        await service.append(USER, MODE, _entries(10))
        window = await service.load(USER, MODE)

        assert window.summary is not None
        assert window.summary.content == "user asked about pricing"
        assert window.total_tokens <= 1600
        previous, folded = summarizer.calls[0]
        assert previous == ""
        assert len(folded) == 4

    @pytest.mark.asyncio
    async def test_previous_summary_is_passed_to_next_fold(self):
        summarizer = FakeSummarizer("rolling")
        service = AgentMemoryService(InMemoryMemoryStore(), summarizer=summarizer)

        await service.append(USER, MODE, _entries(10))
        summarizer.text = "rolling v2"
        await service.append(USER, MODE, _entries(4))

        assert summarizer.calls[-1][0] == "rolling"
        window = await service.load(USER, MODE)
        assert window.summary.content == "rolling v2"

    @pytest.mark.asyncio
    async def test_within_budget_does_nothing(self):
        summarizer = FakeSummarizer()
        service = AgentMemoryService(InMemoryMemoryStore(), summarizer=summarizer)

        await service.append(USER, MODE, _entries(3))
        result = await service.trim(USER, MODE)

        assert result.passes == 0
        assert summarizer.calls == []

    @pytest.mark.asyncio
    async def test_single_huge_entry_is_folded(self):
        summarizer = FakeSummarizer("y" * 4000)
        service = AgentMemoryService(
            InMemoryMemoryStore(),
            summarizer=summarizer,
            max_tokens=100,
            summary_max_tokens=80,
        )

        await service.append(USER, MODE, [MemoryEntryInput(role="human", content="z" * 2000)])
        window = await service.load(USER, MODE)

        assert window.entries == ()
        assert window.summary is not None
        assert window.summary.tokens <= 80
        assert window.total_tokens <= 100

    @pytest.mark.asyncio
    async def test_failed_summarization_drops_batch(self):
        store = InMemoryMemoryStore()
        await store.fold(USER, MODE, [], MemorySummary(content="kept", tokens=1))
        service = AgentMemoryService(store, summarizer=FailingSummarizer())

        await service.append(USER, MODE, _entries(10))
        window = await service.load(USER, MODE)

        assert window.summary.content == "kept"
        assert len(window.entries) == 6
        assert window.total_tokens <= 1600

    @pytest.mark.asyncio
    async def test_oversize_summary_is_dropped(self):
        store = InMemoryMemoryStore()
        await store.fold(USER, MODE, [], MemorySummary(content="s" * 800, tokens=200))
        service = AgentMemoryService(store, max_tokens=100)

        result = await service.trim(USER, MODE)

        assert result.summary_dropped is True
        assert result.tokens_before == 200
        assert result.tokens_after == 0
        assert (await service.load(USER, MODE)).is_empty

    @pytest.mark.asyncio
    async def test_trim_result_reports_progress(self):
        service = AgentMemoryService(InMemoryMemoryStore())
        await service.append(USER, MODE, _entries(10), trim=False)

        result = await service.trim(USER, MODE)

        assert result.passes == 1
        assert result.folded_entries == 4
        assert result.tokens_before == 2000
        assert result.tokens_after == 1200
        assert result.summarized is False

    @pytest.mark.asyncio
    async def test_pass_limit_stops_trim(self):
        summarizer = FakeSummarizer("y" * 4000)
        service = AgentMemoryService(
            InMemoryMemoryStore(),
            summarizer=summarizer,
            max_tokens=100,
            summary_max_tokens=100,
            min_batch_messages=1,
            max_trim_passes=1,
        )
        await service.append(USER, MODE, _entries(2, chars=400), trim=False)

        result = await service.trim(USER, MODE)

        assert result.passes == 1
        assert result.tokens_after > 100

    @pytest.mark.asyncio
    async def test_concurrent_trims_are_serialized(self):
        summarizer = FakeSummarizer(delay=0.01)
        service = AgentMemoryService(InMemoryMemoryStore(), summarizer=summarizer)
        await service.append(USER, MODE, _entries(10), trim=False)

        results = await asyncio.gather(service.trim(USER, MODE), service.trim(USER, MODE))

        assert sum(result.folded_entries for result in results) == 4
        assert len(summarizer.calls) == 1

    @pytest.mark.asyncio
    async def test_locks_are_released_after_trims(self):
        service = AgentMemoryService(InMemoryMemoryStore(), summarizer=FakeSummarizer(delay=0.01))
        for n in range(5):
            await service.append(f"user-{n}", MODE, _entries(10))
        await asyncio.gather(*(service.trim(USER, mode) for mode in ("rag", "research", "rag")))

        assert service._locks == {}
        assert not service._lock_users

    @pytest.mark.asyncio
    async def test_logs_are_independent_per_mode(self):
        service = AgentMemoryService(InMemoryMemoryStore())

        await service.append(USER, "rag", _entries(10))
        await service.append(USER, "research", _entries(2))

        assert len((await service.load(USER, "research")).entries) == 2


class TestAppend:
    """Test appending entries."""

    @pytest.mark.asyncio
    async def test_tokens_estimated_on_append(self):
        service = AgentMemoryService(InMemoryMemoryStore())

        created = await service.append(
            USER, MODE, [MemoryEntryInput(role="assistant", content="x" * 10)]
        )

        assert created[0].tokens == 3

    @pytest.mark.asyncio
    async def test_blank_entries_are_skipped(self):
        service = AgentMemoryService(InMemoryMemoryStore())

        created = await service.append(
            USER,
            MODE,
            [MemoryEntryInput(role="human", content="  "), MemoryEntryInput(role="human", content="hi")],
        )

        assert [entry.content for entry in created] == ["hi"]

    @pytest.mark.asyncio
    async def test_custom_estimator(self):
        service = AgentMemoryService(InMemoryMemoryStore(), estimator=lambda text: len(text.split()))

        created = await service.append(
            USER, MODE, [MemoryEntryInput(role="human", content="three word message")]
        )

        assert created[0].tokens == 3

    def test_rejects_non_positive_budget(self):
        with pytest.raises(ValueError):
            AgentMemoryService(InMemoryMemoryStore(), max_tokens=0)


class TestStoreOutage:
    """Test degradation when the store is unreachable."""

    @pytest.mark.asyncio
    async def test_load_returns_empty_window(self):
        service = AgentMemoryService(UnavailableStore())

        window = await service.load(USER, MODE)

        assert window.is_empty

    @pytest.mark.asyncio
    async def test_append_records_nothing(self):
        service = AgentMemoryService(UnavailableStore())

        assert await service.append(USER, MODE, _entries(2)) == []

    @pytest.mark.asyncio
    async def test_trim_is_skipped(self):
        service = AgentMemoryService(UnavailableStore())

        result = await service.trim(USER, MODE)

        assert result.passes == 0


class TestContextHelpers:
    """Test conversion of a window for prompt assembly."""

    def test_memory_to_messages(self):
        window = MemoryWindow(
            summary=MemorySummary(content="earlier talk", tokens=3),
            entries=(
                _entry(1, 1, role="human", content="question"),
                _entry(2, 1, role="assistant", content="answer"),
                _entry(3, 1, role="system", content="note"),
            ),
        )

        messages = memory_to_messages(window)

        assert [m.role for m in messages] == ["system", "user", "assistant", "system"]
        assert messages[0].content == "Conversation summary:\nearlier talk"

    def test_memory_to_messages_without_summary(self):
        window = MemoryWindow(entries=(_entry(1, 1, role="human", content="hi"),))

        assert len(memory_to_messages(window)) == 1

    def test_collect_conversation_context(self):
        window = MemoryWindow(
            entries=(
                _entry(1, 1, role="human", content="old question"),
                _entry(2, 1, role="system", content="SOURCES: a.md, b.md"),
                _entry(3, 1, role="human", content="latest question"),
                _entry(4, 1, role="assistant", content="latest answer"),
            )
        )

        context = collect_conversation_context(window)

        assert context.last_query == "latest question"
        assert context.last_answer == "latest answer"
        assert context.last_sources == ["a.md", "b.md"]

    def test_sources_from_assistant_metadata(self):
        window = MemoryWindow(
            entries=(
                _entry(1, 1, role="assistant", content="answer", metadata={"sources": ["x.md"]}),
            )
        )

        context = collect_conversation_context(window)

        assert context.last_sources == ["x.md"]
        assert context.last_query is None

    def test_empty_window(self):
        context = collect_conversation_context(MemoryWindow())

        assert context.last_query is None
        assert context.last_answer is None
        assert context.last_sources is None


class TestShutdown:
    @pytest.mark.asyncio
    async def test_close_releases_summarizer_client(self):
        summarizer = AsyncMock()
        set_memory_service(AgentMemoryService(InMemoryMemoryStore(), summarizer=summarizer))

        await close_memory_service()

        summarizer.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_without_service(self):
        set_memory_service(None)

        await close_memory_service()
