"""Tests for the in-memory memory store."""

import pytest

from supermd.exceptions import ConcurrentTrimError
from supermd.memory import InMemoryMemoryStore, MemoryEntryInput, MemorySummary

USER = "user-1"
MODE = "research"


async def _seed(store: InMemoryMemoryStore, count: int = 3):
    entries = [MemoryEntryInput(role="human", content=f"turn {i}") for i in range(count)]
    return await store.append(USER, MODE, entries, [2] * count)


class TestInMemoryMemoryStore:
    """Test InMemoryMemoryStore append/fold semantics."""

    @pytest.mark.asyncio
    async def test_append_preserves_order_and_assigns_ids(self):
        store = InMemoryMemoryStore()
        created = await _seed(store)

        window = await store.load(USER, MODE)

        assert [entry.content for entry in window.entries] == ["turn 0", "turn 1", "turn 2"]
        assert len({entry.id for entry in created}) == 3
        assert window.total_tokens == 6

    @pytest.mark.asyncio
    async def test_fold_replaces_summary_and_deletes_entries(self):
        store = InMemoryMemoryStore()
        created = await _seed(store)

        await store.fold(USER, MODE, [created[0].id], MemorySummary(content="s", tokens=1))
        window = await store.load(USER, MODE)

        assert window.summary.content == "s"
        assert window.summary.updated_at is not None
        assert [entry.id for entry in window.entries] == [created[1].id, created[2].id]

    @pytest.mark.asyncio
    async def test_fold_without_summary_keeps_existing(self):
        store = InMemoryMemoryStore()
        created = await _seed(store)
        await store.fold(USER, MODE, [], MemorySummary(content="old", tokens=1))

        await store.fold(USER, MODE, [created[0].id], None)

        assert (await store.load(USER, MODE)).summary.content == "old"

    @pytest.mark.asyncio
    async def test_fold_can_clear_summary(self):
        store = InMemoryMemoryStore()
        await store.fold(USER, MODE, [], MemorySummary(content="old", tokens=1))

        await store.fold(USER, MODE, [], None, clear_summary=True)

        assert (await store.load(USER, MODE)).summary is None

    @pytest.mark.asyncio
    async def test_fold_of_missing_entries_raises(self):
        store = InMemoryMemoryStore()
        created = await _seed(store)
        await store.fold(USER, MODE, [created[0].id], None)

        with pytest.raises(ConcurrentTrimError) as exc_info:
            await store.fold(USER, MODE, [created[0].id, created[1].id], None)

        assert exc_info.value.details["expected"] == 2
        assert exc_info.value.details["deleted"] == 1

    @pytest.mark.asyncio
    async def test_logs_are_partitioned_by_user(self):
        store = InMemoryMemoryStore()
        await _seed(store)

        assert (await store.load("someone-else", MODE)).is_empty
