"""Load/save interface for document text with SQL and in-memory backends."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from supermd.config import get_settings
from supermd.exceptions import StoreUnavailableError
from supermd.models import Document

logger = logging.getLogger("documents")

DEMO_DOCUMENT_ID = "demo-document"
DEMO_DOCUMENT_TEXT = """# Welcome to SuperMD

SuperMD is a Markdown notebook with **deep research** and **agentic RAG**.

## Collaboration

Open this document in two browser windows and type in both: edits merge
without conflicts, and cursors of other editors show up as you work.

Try it out!"""


class DocumentStore(ABC):
    """Persistence interface for document text."""

    @abstractmethod
    async def load_document_text(self, document_id: str) -> str:
        """Return the stored text, or ``""`` for unknown documents.

        Implementations degrade to ``""`` when the backend is unreachable so
        that a room still opens (empty) during an outage.
        """

    @abstractmethod
    async def save_document_text(self, document_id: str, text: str) -> None:
        """Persist ``text``.

        Raises:
            StoreUnavailableError: If the backend cannot be reached.
        """


class InMemoryDocumentStore(DocumentStore):
    """Process-local store, seeded with a demo document."""

    def __init__(self, documents: dict[str, str] | None = None, include_demo: bool = True):
        self._documents: dict[str, str] = {}
        if include_demo:
            self._documents[DEMO_DOCUMENT_ID] = DEMO_DOCUMENT_TEXT
        self._documents.update(documents or {})

    async def load_document_text(self, document_id: str) -> str:
        return self._documents.get(document_id, "")

    async def save_document_text(self, document_id: str, text: str) -> None:
        self._documents[document_id] = text


class SqlDocumentStore(DocumentStore):
    """Store backed by the ``documents`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def load_document_text(self, document_id: str) -> str:
        start = time.time()
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Document.content).where(Document.id == document_id)
                )
                content = result.scalar_one_or_none()
        except (SQLAlchemyError, OSError) as exc:
            logger.warning(
                "Document load failed, serving empty text",
                extra={
                    "service": "documents",
                    "room_id": document_id,
                    "error": str(exc),
                    "error_code": StoreUnavailableError.code,
                },
            )
            return ""

        logger.debug(
            "Document loaded",
            extra={
                "service": "documents",
                "room_id": document_id,
                "duration_ms": int((time.time() - start) * 1000),
                "metadata": {"found": content is not None},
            },
        )
        return content or ""

    async def save_document_text(self, document_id: str, text: str) -> None:
        try:
            async with self._session_factory() as session, session.begin():
                document = await session.get(Document, document_id)
                if document is None:
                    session.add(Document(id=document_id, content=text))
                else:
                    document.content = text
                    document.updated_at = datetime.utcnow()
        except (SQLAlchemyError, OSError) as exc:
            logger.warning(
                "Document save failed",
                extra={
                    "service": "documents",
                    "room_id": document_id,
                    "error": str(exc),
                    "error_code": StoreUnavailableError.code,
                },
            )
            raise StoreUnavailableError(
                f"Could not save document {document_id}",
                details={"document_id": document_id},
            ) from exc

        logger.info(
            "Document saved",
            extra={
                "service": "documents",
                "room_id": document_id,
                "metadata": {"length": len(text)},
            },
        )


_store: DocumentStore | None = None


def get_document_store() -> DocumentStore:
    """Get the global document store, built from settings on first use."""
    global _store
    if _store is None:
        if get_settings().document_store_backend == "memory":
            _store = InMemoryDocumentStore()
        else:
            from supermd.infrastructure.database import get_session_factory

            _store = SqlDocumentStore(get_session_factory())
    return _store


def set_document_store(store: DocumentStore | None) -> None:
    """Replace the global document store (``None`` rebuilds it from settings)."""
    global _store
    _store = store
