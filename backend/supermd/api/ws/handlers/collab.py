"""Room membership, document sync and presence handlers."""

import logging
from typing import Any

from fastapi import WebSocket

from supermd.api.ws.hub import get_relay_hub
from supermd.api.ws.manager import ConnectionManager
from supermd.api.ws.router import get_router
from supermd.collab import protocol
from supermd.exceptions import ProtocolError
from supermd.infrastructure.logging import set_request_context

logger = logging.getLogger("ws")
router = get_router()


def _client_id(websocket: WebSocket, manager: ConnectionManager) -> str:
    client_id = manager.get_client_id(websocket)
    if client_id is None:
        raise ProtocolError("Connection is not registered")
    return client_id


@router.handler(protocol.ROOM_JOIN)
async def handle_room_join(
    websocket: WebSocket,
    payload: dict[str, Any],
    manager: ConnectionManager,
) -> None:
    """Join a room.

    Expected payload:
        {"roomId": "<document id>", "replicaId": "<optional document replica id>"}

    Responses:
        - room.info to the joiner
        - room.user_joined to the other members
    """
    room_id = protocol.require_str(payload, "roomId")
    replica_id = protocol.optional_str(payload, "replicaId")
    client_id = _client_id(websocket, manager)
    set_request_context(room_id=room_id, client_id=client_id)
    await get_relay_hub().join(room_id, client_id, replica_id)


@router.handler(protocol.ROOM_LEAVE)
async def handle_room_leave(
    websocket: WebSocket,
    payload: dict[str, Any],
    manager: ConnectionManager,
) -> None:
    room_id = protocol.require_str(payload, "roomId")
    await get_relay_hub().leave(room_id, _client_id(websocket, manager))


@router.handler(protocol.SYNC_UPDATE)
async def handle_sync_update(
    websocket: WebSocket,
    payload: dict[str, Any],
    manager: ConnectionManager,
) -> None:
    """Forward an incremental update to every other member, unchanged."""
    room_id = protocol.require_str(payload, "roomId")
    update = protocol.require_str(payload, "update")
    await get_relay_hub().forward(room_id, _client_id(websocket, manager), update)


@router.handler(protocol.SYNC_REQUEST)
async def handle_sync_request(
    websocket: WebSocket,
    payload: dict[str, Any],
    manager: ConnectionManager,
) -> None:
    room_id = protocol.require_str(payload, "roomId")
    await get_relay_hub().forward_bootstrap_request(room_id, _client_id(websocket, manager))


@router.handler(protocol.SYNC_RESPONSE)
async def handle_sync_response(
    websocket: WebSocket,
    payload: dict[str, Any],
    manager: ConnectionManager,
) -> None:
    """Deliver a full-state response to the requester named in ``targetId``.

    ``"empty": true`` marks a response from a replica with no content.
    """
    room_id = protocol.require_str(payload, "roomId")
    target_id = protocol.require_str(payload, "targetId")
    update = protocol.require_str(payload, "update")
    await get_relay_hub().forward_bootstrap_response(
        room_id,
        _client_id(websocket, manager),
        target_id,
        update,
        empty=payload.get("empty") is True,
    )


@router.handler(protocol.AWARENESS_UPDATE)
async def handle_awareness_update(
    websocket: WebSocket,
    payload: dict[str, Any],
    manager: ConnectionManager,
) -> None:
    room_id = protocol.require_str(payload, "roomId")
    update = protocol.require_str(payload, "update")
    await get_relay_hub().forward_presence(room_id, _client_id(websocket, manager), update)
