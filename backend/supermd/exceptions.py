"""Custom exceptions for the application.

This module defines application-specific exceptions with structured
error codes and metadata for consistent error handling across the relay
and the memory service.

Exception Hierarchy:
- AppError (base)
  ├── ProtocolError
  │   ├── MalformedUpdateError
  │   └── MalformedPresenceError
  ├── RoomMembershipError
  ├── StoreUnavailableError
  ├── SummarizerError
  ├── ConcurrentTrimError
  ├── IdentityError
  └── ConfigurationError

Attributes:
    code: Machine-readable error code (e.g., "MALFORMED_UPDATE")
    message: Human-readable error message
    details: Additional context for debugging
    retryable: Whether the operation can be retried
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any


class AppError(Exception):
    """Base exception for application errors."""

    code: str = "APP_ERROR"
    message: str = "An unexpected error occurred"
    retryable: bool = False

    def __init__(
        self,
        message: str | None = None,
        details: dict[str, Any] | None = None,
        retryable: bool | None = None,
    ) -> None:
        """Initialize error with optional message and details."""
        self.message = message or self.message
        self.details = details or {}
        if retryable is not None:
            self.retryable = retryable
        self.timestamp = datetime.now(UTC)
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for JSON serialization."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "retryable": self.retryable,
                "timestamp": self.timestamp.isoformat(),
            }
        }

    def __str__(self) -> str:
        """String representation with code."""
        return f"[{self.code}] {self.message}"


class ProtocolError(AppError):
    """Raised when a relay message envelope is missing required fields."""

    code = "PROTOCOL_ERROR"
    message = "Invalid collaboration message"


class MalformedUpdateError(ProtocolError):
    """Raised when a document update blob cannot be decoded.

    Replicas drop such updates; they never reach the merge routine.
    """

    code = "MALFORMED_UPDATE"
    message = "Document update could not be decoded"


class MalformedPresenceError(ProtocolError):
    """Raised when a presence blob cannot be decoded."""

    code = "MALFORMED_PRESENCE"
    message = "Presence update could not be decoded"


class RoomMembershipError(AppError):
    """Raised when a client addresses a room it has not joined."""

    code = "NOT_IN_ROOM"
    message = "Client is not a member of this room"

    def __init__(self, room_id: str, client_id: str) -> None:
        self.room_id = room_id
        self.client_id = client_id
        super().__init__(
            message=f"Client {client_id} has not joined room {room_id}",
            details={"room_id": room_id, "client_id": client_id},
        )


class StoreUnavailableError(AppError):
    """Raised by a store when its backing database cannot be reached."""

    code = "STORE_UNAVAILABLE"
    message = "Backing store is unavailable"
    retryable = True


class SummarizerError(AppError):
    """Raised when the summarization model fails or times out."""

    code = "SUMMARIZER_FAILED"
    message = "Summarization model call failed"
    retryable = True


class ConcurrentTrimError(AppError):
    """Raised when two trims fold the same memory log at the same time.

    Trims are serialized per (user, mode); seeing this error means that
    serialization was bypassed.
    """

    code = "CONCURRENT_TRIM"
    message = "Memory log was trimmed concurrently"

    def __init__(self, user_id: str, mode: str, expected: int, deleted: int) -> None:
        self.user_id = user_id
        self.mode = mode
        super().__init__(
            message=(
                f"Memory log {user_id}/{mode} changed during fold: "
                f"expected to delete {expected} entries, deleted {deleted}"
            ),
            details={
                "user_id": user_id,
                "mode": mode,
                "expected": expected,
                "deleted": deleted,
            },
        )


class IdentityError(AppError):
    """Raised when a bearer token cannot be resolved to a user id."""

    code = "INVALID_IDENTITY"
    message = "Could not resolve user identity"


class ConfigurationError(AppError):
    """Base exception for configuration errors."""

    code = "CONFIGURATION_ERROR"
    message = "Invalid configuration"


__all__ = [
    "AppError",
    "ProtocolError",
    "MalformedUpdateError",
    "MalformedPresenceError",
    "RoomMembershipError",
    "StoreUnavailableError",
    "SummarizerError",
    "ConcurrentTrimError",
    "IdentityError",
    "ConfigurationError",
]
