from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from supermd.memory.types import MemoryWindow


class MemoryEntryIn(BaseModel):
    role: Literal["human", "assistant", "system"]
    content: str = Field(min_length=1)
    metadata: dict[str, Any] | None = None


class MemoryAppendRequest(BaseModel):
    entries: list[MemoryEntryIn] = Field(min_length=1)


class MemoryEntryOut(BaseModel):
    id: int
    role: str
    content: str
    tokens: int
    created_at: datetime
    metadata: dict[str, Any] | None = None


class MemorySummaryOut(BaseModel):
    content: str
    tokens: int
    updated_at: datetime | None = None


class MemoryContextResponse(BaseModel):
    mode: str
    summary: MemorySummaryOut | None = None
    entries: list[MemoryEntryOut] = Field(default_factory=list)
    total_tokens: int = 0
    max_tokens: int
    last_query: str | None = None
    last_answer: str | None = None
    last_sources: list[str] | None = None

    @classmethod
    def from_window(
        cls,
        mode: str,
        window: MemoryWindow,
        max_tokens: int,
        last_query: str | None = None,
        last_answer: str | None = None,
        last_sources: list[str] | None = None,
    ) -> MemoryContextResponse:
        summary = window.summary
        return cls(
            mode=mode,
            summary=(
                MemorySummaryOut(
                    content=summary.content,
                    tokens=summary.tokens,
                    updated_at=summary.updated_at,
                )
                if summary
                else None
            ),
            entries=[
                MemoryEntryOut(
                    id=entry.id,
                    role=entry.role,
                    content=entry.content,
                    tokens=entry.tokens,
                    created_at=entry.created_at,
                    metadata=entry.metadata,
                )
                for entry in window.entries
            ],
            total_tokens=window.total_tokens,
            max_tokens=max_tokens,
            last_query=last_query,
            last_answer=last_answer,
            last_sources=last_sources,
        )


class MemoryAppendResponse(BaseModel):
    mode: str
    appended: int
    entry_ids: list[int]
    trim_scheduled: bool
