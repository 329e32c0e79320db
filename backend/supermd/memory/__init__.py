"""Token-bounded agent memory with rolling summarization."""

from supermd.memory.service import (
    AgentMemoryService,
    close_memory_service,
    collect_conversation_context,
    get_memory_service,
    memory_to_messages,
    set_memory_service,
)
from supermd.memory.store import InMemoryMemoryStore, MemoryStore, SqlMemoryStore
from supermd.memory.summarizer import MemorySummarizer
from supermd.memory.tokens import estimate_tokens
from supermd.memory.types import (
    ConversationContext,
    MemoryEntry,
    MemoryEntryInput,
    MemorySummary,
    MemoryWindow,
    TrimResult,
)

__all__ = [
    "AgentMemoryService",
    "close_memory_service",
    "collect_conversation_context",
    "get_memory_service",
    "memory_to_messages",
    "set_memory_service",
    "MemoryStore",
    "InMemoryMemoryStore",
    "SqlMemoryStore",
    "MemorySummarizer",
    "estimate_tokens",
    "ConversationContext",
    "MemoryEntry",
    "MemoryEntryInput",
    "MemorySummary",
    "MemoryWindow",
    "TrimResult",
]
