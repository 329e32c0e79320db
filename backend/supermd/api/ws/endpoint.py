"""WebSocket endpoint."""

import contextlib
import logging

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from supermd.api.ws.hub import get_relay_hub
from supermd.api.ws.manager import get_connection_manager
from supermd.api.ws.router import get_router
from supermd.collab import protocol
from supermd.infrastructure.logging import clear_request_context, set_request_context

logger = logging.getLogger("ws")


async def websocket_endpoint(websocket: WebSocket) -> None:
    """Main WebSocket endpoint handler.

    Handles the connection lifecycle:
    1. Accept connection and announce the assigned client id
    2. Receive and route messages in arrival order
    3. Leave every joined room on disconnect
    """
    manager = get_connection_manager()
    router = get_router()

    connection = await manager.connect(websocket)
    set_request_context(client_id=connection.client_id)
    await manager.send_message(
        websocket,
        protocol.envelope(protocol.SESSION_READY, {"clientId": connection.client_id}),
    )

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError as e:
                logger.warning(
                    "Invalid JSON received",
                    extra={"service": "ws", "error": str(e)},
                )
                await manager.send_message(
                    websocket,
                    protocol.error_envelope("INVALID_JSON", "Message must be valid JSON"),
                )
                continue

            manager.touch(websocket)
            # Handled inline so each sender's messages reach peers in order
            await router.route(websocket, message, manager)

    except WebSocketDisconnect:
        logger.info(
            "WebSocket disconnected by client",
            extra={"service": "ws", "client_id": connection.client_id},
        )
    except Exception as e:
        logger.error(
            "WebSocket error",
            extra={"service": "ws", "error": str(e)},
            exc_info=True,
        )
        if websocket.application_state == WebSocketState.CONNECTED:
            with contextlib.suppress(Exception):
                await manager.send_message(
                    websocket,
                    protocol.error_envelope("SERVER_ERROR", "An unexpected error occurred"),
                )
    finally:
        await manager.disconnect(websocket)
        await get_relay_hub().disconnect(connection.client_id)
        clear_request_context()
