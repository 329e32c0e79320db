"""Value types of the agent memory log."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

MemoryMode = Literal["rag", "research"]
MemoryRole = Literal["human", "assistant", "system"]

MEMORY_MODES: tuple[str, ...] = ("rag", "research")
MEMORY_ROLES: tuple[str, ...] = ("human", "assistant", "system")


@dataclass(frozen=True)
class MemoryEntryInput:
    """A turn to append; token count is estimated on append."""

    role: MemoryRole
    content: str
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True)
class MemoryEntry:
    id: int
    role: MemoryRole
    content: str
    tokens: int
    created_at: datetime
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True)
class MemorySummary:
    content: str
    tokens: int
    updated_at: datetime | None = None


@dataclass(frozen=True)
class MemoryWindow:
    """Summary plus remaining entries, oldest first."""

    summary: MemorySummary | None = None
    entries: tuple[MemoryEntry, ...] = field(default_factory=tuple)

    @property
    def total_tokens(self) -> int:
        summary_tokens = self.summary.tokens if self.summary else 0
        return summary_tokens + sum(entry.tokens for entry in self.entries)

    @property
    def is_empty(self) -> bool:
        return self.summary is None and not self.entries


@dataclass(frozen=True)
class ConversationContext:
    last_query: str | None = None
    last_answer: str | None = None
    last_sources: list[str] | None = None


@dataclass
class TrimResult:
    """What one ``trim`` call did to a memory log."""

    passes: int = 0
    folded_entries: int = 0
    summarized: bool = False
    summary_dropped: bool = False
    tokens_before: int = 0
    tokens_after: int = 0
