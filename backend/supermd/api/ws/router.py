"""WebSocket message router."""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import WebSocket

from supermd.api.ws.manager import ConnectionManager
from supermd.collab import protocol
from supermd.exceptions import AppError

logger = logging.getLogger("ws")

# Type alias for message handlers
MessageHandler = Callable[[WebSocket, dict[str, Any], ConnectionManager], Awaitable[None]]


class MessageRouter:
    """Routes WebSocket messages to appropriate handlers."""

    def __init__(self):
        self._handlers: dict[str, MessageHandler] = {}

    @property
    def message_types(self) -> list[str]:
        return sorted(self._handlers)

    def register(self, message_type: str, handler: MessageHandler) -> None:
        """Register a handler for a message type."""
        self._handlers[message_type] = handler
        logger.debug(
            "Handler registered",
            extra={"service": "ws", "message_type": message_type},
        )

    def handler(self, message_type: str) -> Callable[[MessageHandler], MessageHandler]:
        """Decorator to register a message handler.

        Usage:
            @router.handler("room.join")
            async def handle_join(websocket, payload, manager):
                ...
        """

        def decorator(func: MessageHandler) -> MessageHandler:
            self.register(message_type, func)
            return func

        return decorator

    async def route(
        self,
        websocket: WebSocket,
        message: dict[str, Any],
        manager: ConnectionManager,
    ) -> None:
        """Route a message to its handler.

        Handler failures are answered with an ``error`` envelope; the socket
        stays open.
        """
        message_type = message.get("type") if isinstance(message, dict) else None

        if not message_type:
            logger.warning("Message missing type field", extra={"service": "ws"})
            await manager.send_message(
                websocket,
                protocol.error_envelope("INVALID_MESSAGE", "Message must include 'type' field"),
            )
            return

        handler = self._handlers.get(message_type)

        if not handler:
            logger.warning(
                "Unknown message type",
                extra={"service": "ws", "message_type": message_type},
            )
            await manager.send_message(
                websocket,
                protocol.error_envelope(
                    "UNKNOWN_MESSAGE_TYPE", f"Unknown message type: {message_type}"
                ),
            )
            return

        manager.record_received(message_type)
        payload = message.get("payload")
        if not isinstance(payload, dict):
            payload = {}

        try:
            await handler(websocket, payload, manager)
        except AppError as e:
            logger.warning(
                "Handler rejected message",
                extra={
                    "service": "ws",
                    "message_type": message_type,
                    "error_code": e.code,
                    "error": e.message,
                },
            )
            await manager.send_message(websocket, protocol.error_envelope(e.code, e.message))
        except Exception as e:
            logger.error(
                "Handler error",
                extra={"service": "ws", "message_type": message_type, "error": str(e)},
                exc_info=True,
            )
            await manager.send_message(
                websocket,
                protocol.error_envelope(
                    "HANDLER_ERROR", "An error occurred processing your request"
                ),
            )


# Global router instance
_router: MessageRouter | None = None
_handlers_imported: bool = False


def get_router() -> MessageRouter:
    """Get global message router instance.

    On first call, creates the router and imports all handlers.
    """
    global _router, _handlers_imported

    if _router is None:
        _router = MessageRouter()

    if not _handlers_imported:
        _handlers_imported = True
        _import_handlers()

    return _router


def _import_handlers() -> None:
    """Import handler modules so their decorators register with the router."""
    from supermd.api.ws.handlers import collab, documents, ping  # noqa: F401

    logger.info(
        "Handlers registered",
        extra={"service": "ws", "metadata": {"handlers": _router.message_types}},
    )
