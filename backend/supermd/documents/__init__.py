"""Document text persistence used to seed and save collaborative rooms."""

from supermd.documents.store import (
    DocumentStore,
    InMemoryDocumentStore,
    SqlDocumentStore,
    get_document_store,
    set_document_store,
)

__all__ = [
    "DocumentStore",
    "InMemoryDocumentStore",
    "SqlDocumentStore",
    "get_document_store",
    "set_document_store",
]
