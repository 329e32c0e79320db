"""Tests for SqlMemoryStore against Postgres."""

import asyncio

import pytest

from supermd.exceptions import ConcurrentTrimError, StoreUnavailableError
from supermd.memory import AgentMemoryService, MemoryEntryInput, MemorySummary, SqlMemoryStore

USER = "user-1"
MODE = "rag"


async def _seed(store: SqlMemoryStore, count: int = 4, user_id: str = USER, mode: str = MODE):
    entries = [
        MemoryEntryInput(role="human", content=f"turn {i}", metadata={"turn": i})
        for i in range(count)
    ]
    return await store.append(user_id, mode, entries, [3] * count)


class TestSqlMemoryStore:
    """Test append/load/fold on the agent_memory tables."""

    @pytest.mark.asyncio
    async def test_append_and_load_in_order(self, pg_session_factory):
        store = SqlMemoryStore(pg_session_factory)
        created = await _seed(store)

        window = await store.load(USER, MODE)

        assert [entry.id for entry in window.entries] == [entry.id for entry in created]
        assert [entry.content for entry in window.entries] == [f"turn {i}" for i in range(4)]
        assert window.entries[2].metadata == {"turn": 2}
        assert window.summary is None
        assert window.total_tokens == 12

    @pytest.mark.asyncio
    async def test_logs_are_scoped_by_user_and_mode(self, pg_session_factory):
        store = SqlMemoryStore(pg_session_factory)
        await _seed(store, count=2)
        await _seed(store, count=1, mode="research")
        await _seed(store, count=3, user_id="user-2")

        assert len((await store.load(USER, MODE)).entries) == 2
        assert len((await store.load(USER, "research")).entries) == 1
        assert len((await store.load("user-2", MODE)).entries) == 3

    @pytest.mark.asyncio
    async def test_fold_deletes_entries_and_writes_summary(self, pg_session_factory):
        store = SqlMemoryStore(pg_session_factory)
        created = await _seed(store)

        await store.fold(
            USER, MODE, [created[0].id, created[1].id], MemorySummary(content="first", tokens=2)
        )
        window = await store.load(USER, MODE)

        assert [entry.id for entry in window.entries] == [created[2].id, created[3].id]
        assert window.summary.content == "first"
        assert window.summary.tokens == 2
        assert window.summary.updated_at is not None

    @pytest.mark.asyncio
    async def test_second_fold_updates_the_single_summary_row(self, pg_session_factory):
        store = SqlMemoryStore(pg_session_factory)
        created = await _seed(store)

        await store.fold(USER, MODE, [created[0].id], MemorySummary(content="first", tokens=2))
        await store.fold(USER, MODE, [created[1].id], MemorySummary(content="second", tokens=3))
        await store.fold(USER, MODE, [created[2].id], None)

        window = await store.load(USER, MODE)
        assert window.summary.content == "second"
        assert window.summary.tokens == 3
        assert [entry.id for entry in window.entries] == [created[3].id]

    @pytest.mark.asyncio
    async def test_fold_can_clear_summary(self, pg_session_factory):
        store = SqlMemoryStore(pg_session_factory)
        await store.fold(USER, MODE, [], MemorySummary(content="old", tokens=1))

        await store.fold(USER, MODE, [], None, clear_summary=True)

        assert (await store.load(USER, MODE)).summary is None

    @pytest.mark.asyncio
    async def test_fold_of_missing_entries_rolls_back(self, pg_session_factory):
        store = SqlMemoryStore(pg_session_factory)
        created = await _seed(store)
        await store.fold(USER, MODE, [created[0].id], MemorySummary(content="kept", tokens=1))

        with pytest.raises(ConcurrentTrimError):
            await store.fold(
                USER,
                MODE,
                [created[0].id, created[1].id],
                MemorySummary(content="lost", tokens=1),
            )

        window = await store.load(USER, MODE)
        # Neither the delete of created[1] nor the new summary was committed
        assert [entry.id for entry in window.entries] == [e.id for e in created[1:]]
        assert window.summary.content == "kept"

    @pytest.mark.asyncio
    async def test_concurrent_folds_of_same_entries(self, pg_session_factory):
        first = SqlMemoryStore(pg_session_factory)
        second = SqlMemoryStore(pg_session_factory)
        created = await _seed(first)
        batch = [created[0].id, created[1].id]

        results = await asyncio.gather(
            first.fold(USER, MODE, batch, MemorySummary(content="from first", tokens=2)),
            second.fold(USER, MODE, batch, MemorySummary(content="from second", tokens=2)),
            return_exceptions=True,
        )

        errors = [result for result in results if isinstance(result, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], ConcurrentTrimError)

        window = await first.load(USER, MODE)
        winner = "from second" if results[0] is errors[0] else "from first"
        assert window.summary.content == winner
        assert [entry.id for entry in window.entries] == [created[2].id, created[3].id]

    @pytest.mark.asyncio
    async def test_service_trims_through_sql_store(self, pg_session_factory):
        service = AgentMemoryService(SqlMemoryStore(pg_session_factory), max_tokens=40)
        entries = [MemoryEntryInput(role="human", content="x" * 40) for _ in range(6)]

        await service.append(USER, MODE, entries)

        window = await service.load(USER, MODE)
        assert window.total_tokens <= 40
        assert len(window.entries) < 6


class TestSqlMemoryStoreOutage:
    """Test error mapping when Postgres cannot be reached."""

    @pytest.mark.asyncio
    async def test_load_raises_store_unavailable(self, unreachable_session_factory):
        store = SqlMemoryStore(unreachable_session_factory)

        with pytest.raises(StoreUnavailableError):
            await store.load(USER, MODE)

    @pytest.mark.asyncio
    async def test_fold_raises_store_unavailable(self, unreachable_session_factory):
        store = SqlMemoryStore(unreachable_session_factory)

        with pytest.raises(StoreUnavailableError):
            await store.fold(USER, MODE, [1], MemorySummary(content="s", tokens=1))

    @pytest.mark.asyncio
    async def test_service_degrades_to_empty_memory(self, unreachable_session_factory):
        service = AgentMemoryService(SqlMemoryStore(unreachable_session_factory))

        window = await service.load(USER, MODE)

        assert window.entries == ()
        assert window.summary is None
