"""Message envelopes exchanged over the collaboration WebSocket.

All messages have the shape ``{"type": str, "payload": dict}``. Binary
blobs (document updates, presence updates) travel base64 encoded; the
relay forwards them without decoding.
"""

from __future__ import annotations

import base64
import binascii
from typing import Any

from supermd.exceptions import ProtocolError

# Client -> server
ROOM_JOIN = "room.join"
ROOM_LEAVE = "room.leave"
DOCUMENT_SAVE = "document.save"

# Server -> client
SESSION_READY = "session.ready"
ROOM_INFO = "room.info"
ROOM_USER_JOINED = "room.user_joined"
ROOM_USER_LEFT = "room.user_left"
AWARENESS_REMOVE = "awareness.remove"
DOCUMENT_SAVED = "document.saved"
ERROR = "error"

# Both directions
SYNC_UPDATE = "sync.update"
SYNC_REQUEST = "sync.request"
SYNC_RESPONSE = "sync.response"
AWARENESS_UPDATE = "awareness.update"
PING = "ping"
PONG = "pong"


def envelope(message_type: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
    return {"type": message_type, "payload": payload or {}}


def error_envelope(code: str, message: str) -> dict[str, Any]:
    return envelope(ERROR, {"code": code, "message": message})


def encode_blob(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode_blob(value: Any, field: str = "update") -> bytes:
    """Decode a base64 field.

    Raises:
        ProtocolError: If ``value`` is not a base64 string.
    """
    if not isinstance(value, str):
        raise ProtocolError(f"'{field}' must be a base64 string", details={"field": field})
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ProtocolError(f"'{field}' is not valid base64", details={"field": field}) from exc


def require_str(payload: dict[str, Any], field: str) -> str:
    """Return a non-empty string field from ``payload``.

    Raises:
        ProtocolError: If the field is missing or not a non-empty string.
    """
    value = payload.get(field)
    if not isinstance(value, str) or not value:
        raise ProtocolError(f"'{field}' is required", details={"field": field})
    return value


def optional_str(payload: dict[str, Any], field: str) -> str | None:
    """Like :func:`require_str`, but a missing field is ``None``."""
    if payload.get(field) is None:
        return None
    return require_str(payload, field)


def require_count(payload: dict[str, Any], field: str) -> int:
    """Return a non-negative integer field from ``payload``.

    Raises:
        ProtocolError: If the field is missing, not an integer or negative.
    """
    value = payload.get(field)
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ProtocolError(f"'{field}' must be a non-negative integer", details={"field": field})
    return value
