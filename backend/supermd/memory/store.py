"""Storage of memory logs: entries plus one rolling summary per (user, mode)."""

from __future__ import annotations

import itertools
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import delete, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from supermd.exceptions import ConcurrentTrimError, StoreUnavailableError
from supermd.memory.types import MemoryEntry, MemoryEntryInput, MemorySummary, MemoryWindow
from supermd.models import AgentMemoryEntry, AgentMemorySummary

logger = logging.getLogger("memory")


class MemoryStore(ABC):
    """Persistence interface for memory logs.

    Every method raises :class:`StoreUnavailableError` when the backend
    cannot be reached; callers decide how to degrade.
    """

    @abstractmethod
    async def load(self, user_id: str, mode: str) -> MemoryWindow:
        """Return the summary and all entries, oldest first."""

    @abstractmethod
    async def append(
        self,
        user_id: str,
        mode: str,
        entries: Sequence[MemoryEntryInput],
        tokens: Sequence[int],
    ) -> list[MemoryEntry]:
        """Insert entries atomically, in order."""

    @abstractmethod
    async def fold(
        self,
        user_id: str,
        mode: str,
        entry_ids: Sequence[int],
        summary: MemorySummary | None,
        clear_summary: bool = False,
    ) -> None:
        """Atomically replace the summary and delete folded entries.

        ``summary=None`` keeps the current summary unless ``clear_summary``.

        Raises:
            ConcurrentTrimError: If some of ``entry_ids`` no longer exist.
        """


class InMemoryMemoryStore(MemoryStore):
    """Process-local store for development and tests."""

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], list[MemoryEntry]] = {}
        self._summaries: dict[tuple[str, str], MemorySummary] = {}
        self._ids = itertools.count(1)

    async def load(self, user_id: str, mode: str) -> MemoryWindow:
        key = (user_id, mode)
        return MemoryWindow(
            summary=self._summaries.get(key),
            entries=tuple(self._entries.get(key, [])),
        )

    async def append(
        self,
        user_id: str,
        mode: str,
        entries: Sequence[MemoryEntryInput],
        tokens: Sequence[int],
    ) -> list[MemoryEntry]:
        now = datetime.utcnow()
        created = [
            MemoryEntry(
                id=next(self._ids),
                role=entry.role,
                content=entry.content,
                tokens=count,
                created_at=now,
                metadata=entry.metadata,
            )
            for entry, count in zip(entries, tokens, strict=True)
        ]
        self._entries.setdefault((user_id, mode), []).extend(created)
        return created

    async def fold(
        self,
        user_id: str,
        mode: str,
        entry_ids: Sequence[int],
        summary: MemorySummary | None,
        clear_summary: bool = False,
    ) -> None:
        key = (user_id, mode)
        current = self._entries.get(key, [])
        doomed = set(entry_ids)
        remaining = [entry for entry in current if entry.id not in doomed]
        deleted = len(current) - len(remaining)
        if deleted != len(doomed):
            raise ConcurrentTrimError(user_id, mode, expected=len(doomed), deleted=deleted)

        self._entries[key] = remaining
        if clear_summary:
            self._summaries.pop(key, None)
        elif summary is not None:
            self._summaries[key] = MemorySummary(
                content=summary.content,
                tokens=summary.tokens,
                updated_at=datetime.utcnow(),
            )


class SqlMemoryStore(MemoryStore):
    """Store backed by ``agent_memory_entries`` / ``agent_memory_summaries``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def load(self, user_id: str, mode: str) -> MemoryWindow:
        try:
            async with self._session_factory() as session:
                summary_row = (
                    await session.execute(
                        select(AgentMemorySummary).where(
                            AgentMemorySummary.user_id == user_id,
                            AgentMemorySummary.mode == mode,
                        )
                    )
                ).scalar_one_or_none()
                entry_rows = (
                    await session.execute(
                        select(AgentMemoryEntry)
                        .where(
                            AgentMemoryEntry.user_id == user_id,
                            AgentMemoryEntry.mode == mode,
                        )
                        .order_by(AgentMemoryEntry.created_at, AgentMemoryEntry.id)
                    )
                ).scalars().all()
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailableError(
                "Could not load memory log",
                details={"user_id": user_id, "mode": mode},
            ) from exc

        return MemoryWindow(
            summary=_to_summary(summary_row) if summary_row else None,
            entries=tuple(_to_entry(row) for row in entry_rows),
        )

    async def append(
        self,
        user_id: str,
        mode: str,
        entries: Sequence[MemoryEntryInput],
        tokens: Sequence[int],
    ) -> list[MemoryEntry]:
        now = datetime.utcnow()
        rows = [
            AgentMemoryEntry(
                user_id=user_id,
                mode=mode,
                role=entry.role,
                content=entry.content,
                tokens=count,
                entry_metadata=entry.metadata,
                created_at=now,
            )
            for entry, count in zip(entries, tokens, strict=True)
        ]
        try:
            async with self._session_factory() as session, session.begin():
                session.add_all(rows)
                await session.flush()
                created = [_to_entry(row) for row in rows]
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailableError(
                "Could not append memory entries",
                details={"user_id": user_id, "mode": mode, "count": len(rows)},
            ) from exc
        return created

    async def fold(
        self,
        user_id: str,
        mode: str,
        entry_ids: Sequence[int],
        summary: MemorySummary | None,
        clear_summary: bool = False,
    ) -> None:
        try:
            async with self._session_factory() as session, session.begin():
                if session.bind is not None and session.bind.dialect.name == "postgresql":
                    # Serializes folds of one log across processes until commit
                    await session.execute(
                        text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                        {"key": f"agent_memory:{user_id}:{mode}"},
                    )

                if entry_ids:
                    result = await session.execute(
                        delete(AgentMemoryEntry).where(
                            AgentMemoryEntry.id.in_(list(entry_ids)),
                            AgentMemoryEntry.user_id == user_id,
                            AgentMemoryEntry.mode == mode,
                        )
                    )
                    if result.rowcount != len(entry_ids):
                        raise ConcurrentTrimError(
                            user_id, mode, expected=len(entry_ids), deleted=result.rowcount
                        )

                if clear_summary:
                    await session.execute(
                        delete(AgentMemorySummary).where(
                            AgentMemorySummary.user_id == user_id,
                            AgentMemorySummary.mode == mode,
                        )
                    )
                elif summary is not None:
                    await _upsert_summary(session, user_id, mode, summary)
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailableError(
                "Could not fold memory entries",
                details={"user_id": user_id, "mode": mode},
            ) from exc


async def _upsert_summary(
    session: AsyncSession,
    user_id: str,
    mode: str,
    summary: MemorySummary,
) -> None:
    existing = (
        await session.execute(
            select(AgentMemorySummary)
            .where(
                AgentMemorySummary.user_id == user_id,
                AgentMemorySummary.mode == mode,
            )
            .with_for_update()
        )
    ).scalar_one_or_none()
    if existing is None:
        session.add(
            AgentMemorySummary(
                user_id=user_id,
                mode=mode,
                content=summary.content,
                tokens=summary.tokens,
            )
        )
    else:
        existing.content = summary.content
        existing.tokens = summary.tokens
        existing.updated_at = datetime.utcnow()


def _to_entry(row: AgentMemoryEntry) -> MemoryEntry:
    return MemoryEntry(
        id=row.id,
        role=row.role,  # type: ignore[arg-type]
        content=row.content,
        tokens=row.tokens,
        created_at=row.created_at,
        metadata=row.entry_metadata,
    )


def _to_summary(row: AgentMemorySummary) -> MemorySummary:
    return MemorySummary(content=row.content, tokens=row.tokens, updated_at=row.updated_at)
