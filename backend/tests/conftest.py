"""Test configuration for the SuperMD backend.

Everything runs against the in-memory stores and the stub LLM provider, so
no database or network is needed.
"""

import os

os.environ["ENVIRONMENT"] = "development"
os.environ["DOCUMENT_STORE_BACKEND"] = "memory"
os.environ["MEMORY_STORE_BACKEND"] = "memory"
os.environ["LLM_PROVIDER"] = "stub"
os.environ["AUTH_JWT_SECRET"] = "test-secret-0123456789abcdef0123456789"

import pytest  # noqa: E402

import supermd.api.ws.manager as manager_module  # noqa: E402
from supermd.api.ws.hub import reset_relay_hub  # noqa: E402
from supermd.config import get_settings  # noqa: E402
from supermd.documents import InMemoryDocumentStore, set_document_store  # noqa: E402
from supermd.memory import (  # noqa: E402
    AgentMemoryService,
    InMemoryMemoryStore,
    set_memory_service,
)


@pytest.fixture(autouse=True)
def _reset_globals():
    """Fresh settings, connection manager, relay hub and stores per test."""
    get_settings.cache_clear()
    manager_module._manager = None
    reset_relay_hub()
    set_document_store(InMemoryDocumentStore())
    set_memory_service(None)
    yield
    manager_module._manager = None
    reset_relay_hub()
    set_document_store(None)
    set_memory_service(None)
    get_settings.cache_clear()


@pytest.fixture
def document_store() -> InMemoryDocumentStore:
    store = InMemoryDocumentStore(documents={"doc-1": "hello"}, include_demo=False)
    set_document_store(store)
    reset_relay_hub()
    return store


@pytest.fixture
def memory_service() -> AgentMemoryService:
    """Memory service without a summarizer; trims drop folded entries."""
    service = AgentMemoryService(store=InMemoryMemoryStore(), summarizer=None)
    set_memory_service(service)
    return service


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {get_settings().auth_dev_token}"}
