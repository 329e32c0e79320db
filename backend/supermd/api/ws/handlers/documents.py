"""Persist converged document text on behalf of a room member."""

import logging
from typing import Any

from fastapi import WebSocket

from supermd.api.ws.hub import get_relay_hub
from supermd.api.ws.manager import ConnectionManager
from supermd.api.ws.router import get_router
from supermd.collab import protocol
from supermd.exceptions import ProtocolError

logger = logging.getLogger("ws")
router = get_router()


@router.handler(protocol.DOCUMENT_SAVE)
async def handle_document_save(
    websocket: WebSocket,
    payload: dict[str, Any],
    manager: ConnectionManager,
) -> None:
    """Save the sender's current text.

    Expected payload:
        {"roomId": "<document id>", "content": "<full text>"}

    Responses:
        - document.saved on success
        - error STORE_UNAVAILABLE when the store is down
    """
    room_id = protocol.require_str(payload, "roomId")
    content = payload.get("content")
    if not isinstance(content, str):
        raise ProtocolError("'content' must be a string", details={"field": "content"})

    client_id = manager.get_client_id(websocket)
    if client_id is None:
        raise ProtocolError("Connection is not registered")

    await get_relay_hub().save_document(room_id, client_id, content)
    await manager.send_message(
        websocket,
        protocol.envelope(protocol.DOCUMENT_SAVED, {"roomId": room_id, "length": len(content)}),
    )
