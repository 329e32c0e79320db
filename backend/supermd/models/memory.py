"""Agent memory log and rolling summary."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from supermd.infrastructure.database import Base


class AgentMemoryEntry(Base):
    """One conversational turn in a user's memory log for one mode."""

    __tablename__ = "agent_memory_entries"
    __table_args__ = (
        Index("ix_agent_memory_entries_user_mode_created", "user_id", "mode", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    mode: Mapped[str] = mapped_column(String(32), nullable=False, comment="'rag' or 'research'")
    role: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="'human', 'assistant' or 'system'",
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    tokens: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Estimated token count, fixed at insert time",
    )
    # "metadata" is reserved on declarative classes
    entry_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<AgentMemoryEntry(id={self.id}, user_id={self.user_id}, "
            f"mode={self.mode}, tokens={self.tokens})>"
        )


class AgentMemorySummary(Base):
    """Rolling summary of entries already folded out of the log.

    At most one row per (user_id, mode).
    """

    __tablename__ = "agent_memory_summaries"
    __table_args__ = (
        UniqueConstraint("user_id", "mode", name="uq_agent_memory_summaries_user_mode"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    mode: Mapped[str] = mapped_column(String(32), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    tokens: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<AgentMemorySummary(user_id={self.user_id}, mode={self.mode}, tokens={self.tokens})>"
