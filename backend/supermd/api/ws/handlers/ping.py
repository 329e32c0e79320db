"""Ping/pong WebSocket handler for keepalive."""

import logging
from typing import Any

from fastapi import WebSocket

from supermd.api.ws.manager import ConnectionManager
from supermd.api.ws.router import get_router
from supermd.collab import protocol

logger = logging.getLogger("ws")
router = get_router()


@router.handler(protocol.PING)
async def handle_ping(
    websocket: WebSocket,
    _payload: dict[str, Any],
    manager: ConnectionManager,
) -> None:
    await manager.send_message(websocket, protocol.envelope(protocol.PONG))
