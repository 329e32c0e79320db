"""Global relay hub wired to the connection manager and document store."""

from supermd.api.ws.manager import get_connection_manager
from supermd.collab.relay import RelayHub
from supermd.collab.rooms import RoomRegistry
from supermd.config import get_settings
from supermd.documents import get_document_store

_hub: RelayHub | None = None


def get_relay_hub() -> RelayHub:
    """Get the global relay hub, creating it on first use."""
    global _hub
    if _hub is None:
        settings = get_settings()
        _hub = RelayHub(
            registry=RoomRegistry(
                first_responder_only=settings.collab_bootstrap_first_responder_only,
            ),
            send=get_connection_manager().send_to_client,
            document_store=get_document_store(),
            seed_from_store=settings.collab_seed_from_store,
        )
    return _hub


def reset_relay_hub() -> None:
    """Drop the global hub (for tests)."""
    global _hub
    _hub = None
