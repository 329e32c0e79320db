"""SQLAlchemy models."""

from supermd.models.document import Document
from supermd.models.memory import AgentMemoryEntry, AgentMemorySummary

__all__ = [
    "Document",
    "AgentMemoryEntry",
    "AgentMemorySummary",
]
