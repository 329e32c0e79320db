"""WebSocket connection manager."""

import collections
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from fastapi import WebSocket
from starlette.websockets import WebSocketState

logger = logging.getLogger("ws")


@dataclass
class Connection:
    """Represents an active WebSocket connection."""

    websocket: WebSocket
    client_id: str
    connected_at: datetime = field(default_factory=datetime.utcnow)
    last_seen: datetime = field(default_factory=datetime.utcnow)


class ConnectionManager:
    """Tracks sockets by their relay client id."""

    def __init__(self):
        # Map of websocket id -> Connection
        self._connections: dict[int, Connection] = {}
        # Map of client_id -> websocket id
        self._client_index: dict[str, int] = {}
        self._emit_counts: collections.Counter[str] = collections.Counter()
        self._receive_counts: collections.Counter[str] = collections.Counter()
        self._disconnect_count: int = 0

    def get_metrics_snapshot(self) -> dict[str, Any]:
        return {
            "connection_count": self.connection_count,
            "disconnect_count": int(self._disconnect_count),
            "emit_counts": dict(self._emit_counts),
            "receive_counts": dict(self._receive_counts),
        }

    @property
    def connection_count(self) -> int:
        """Get total number of active connections."""
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> Connection:
        """Accept a new WebSocket connection and assign it a client id."""
        await websocket.accept()
        connection = Connection(websocket=websocket, client_id=uuid4().hex)
        ws_id = id(websocket)
        self._connections[ws_id] = connection
        self._client_index[connection.client_id] = ws_id

        logger.info(
            "WebSocket connected",
            extra={
                "service": "ws",
                "client_id": connection.client_id,
                "metadata": {"connection_count": self.connection_count},
            },
        )
        return connection

    async def disconnect(self, websocket: WebSocket) -> Connection | None:
        """Forget a socket; returns its connection if it was known."""
        ws_id = id(websocket)
        connection = self._connections.pop(ws_id, None)
        if connection is None:
            return None

        self._client_index.pop(connection.client_id, None)
        self._disconnect_count += 1

        logger.info(
            "WebSocket disconnected",
            extra={
                "service": "ws",
                "client_id": connection.client_id,
                "metadata": {"connection_count": self.connection_count},
            },
        )
        return connection

    def get_client_id(self, websocket: WebSocket) -> str | None:
        connection = self._connections.get(id(websocket))
        return connection.client_id if connection else None

    def touch(self, websocket: WebSocket) -> None:
        """Record inbound traffic; any message, not only ``ping``, keeps a socket alive."""
        connection = self._connections.get(id(websocket))
        if connection:
            connection.last_seen = datetime.utcnow()

    def stale_connections(self, timeout_seconds: float) -> list[Connection]:
        """Connections that have sent nothing for ``timeout_seconds``."""
        cutoff = datetime.utcnow() - timedelta(seconds=timeout_seconds)
        return [c for c in self._connections.values() if c.last_seen < cutoff]

    def record_received(self, message_type: str) -> None:
        self._receive_counts[message_type] += 1

    async def send_message(self, websocket: WebSocket, message: dict[str, Any]) -> bool:
        """Send a message to a specific WebSocket.

        Returns:
            True if sent successfully, False otherwise
        """
        msg_type = str(message.get("type"))
        if websocket.application_state == WebSocketState.DISCONNECTED:
            logger.debug(
                f"Skipping send to disconnected websocket: {msg_type}",
                extra={"service": "ws", "message_type": msg_type},
            )
            return False

        try:
            await websocket.send_json(message)
        except Exception as e:
            # Don't log errors for expected disconnections
            if "closed" in str(e).lower() or "disconnect" in str(e).lower():
                logger.debug(
                    f"WebSocket already closed when sending {msg_type}",
                    extra={"service": "ws", "message_type": msg_type, "error": type(e).__name__},
                )
            else:
                logger.error(
                    f"Failed to send message {msg_type}: {type(e).__name__}: {e}",
                    extra={"service": "ws", "message_type": msg_type, "error": str(e)},
                )
            return False

        self._emit_counts[msg_type] += 1
        return True

    async def close_stale_connections(self, timeout_seconds: float) -> int:
        """Close sockets idle past the timeout; the endpoint then runs the normal leave path."""
        stale = self.stale_connections(timeout_seconds)
        for connection in stale:
            logger.info(
                "Closing idle WebSocket",
                extra={
                    "service": "ws",
                    "client_id": connection.client_id,
                    "metadata": {"last_seen": connection.last_seen.isoformat()},
                },
            )
            if connection.websocket.application_state == WebSocketState.CONNECTED:
                try:
                    await connection.websocket.close(code=1001)
                except RuntimeError as e:
                    logger.debug(
                        "Idle WebSocket already closing",
                        extra={"service": "ws", "client_id": connection.client_id, "error": str(e)},
                    )
        return len(stale)

    async def send_to_client(self, client_id: str, message: dict[str, Any]) -> bool:
        """Send a message to the socket registered under ``client_id``."""
        ws_id = self._client_index.get(client_id)
        connection = self._connections.get(ws_id) if ws_id is not None else None
        if connection is None:
            return False
        return await self.send_message(connection.websocket, message)


# Global connection manager instance
_manager: ConnectionManager | None = None


def get_connection_manager() -> ConnectionManager:
    """Get the global connection manager instance."""
    global _manager
    if _manager is None:
        _manager = ConnectionManager()
    return _manager
