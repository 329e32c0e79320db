"""Structured JSON logging.

One JSON object per line on stdout. Request-scoped identifiers (request,
user, room and relay client) are kept in context variables and stamped onto
every record emitted while they are set.
"""

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from typing import Any

_CONTEXT: dict[str, ContextVar[str | None]] = {
    name: ContextVar(name, default=None)
    for name in ("request_id", "user_id", "room_id", "client_id")
}

# Record attributes copied into the JSON body when passed via ``extra``
_EXTRA_FIELDS = (
    *_CONTEXT,
    "mode",
    "provider",
    "model_id",
    "message_type",
    "user_count",
    "batch_size",
    "total_tokens",
    "max_tokens",
    "tokens_in",
    "tokens_out",
    "duration_ms",
    "error_code",
    "error",
    "metadata",
)

_NOISY_LOGGERS = ("asyncio", "uvicorn.access", "httpx", "httpcore", "sqlalchemy.engine")


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "ts": datetime.now(UTC).isoformat(),
            "level": record.levelname.lower(),
            "message": record.getMessage(),
            "logger": record.name,
            "service": getattr(record, "service", record.name.split(".")[0]),
        }
        log_data.update(get_request_context())

        for field in _EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_data[field] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class NamespaceFilter(logging.Filter):
    """Pass INFO and above; DEBUG only for the listed top-level namespaces."""

    def __init__(self, debug_namespaces: list[str]):
        super().__init__()
        self.debug_namespaces = set(debug_namespaces)

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.INFO:
            return True
        return record.name.split(".")[0] in self.debug_namespaces


def setup_logging(log_level: str = "INFO", debug_namespaces: list[str] | None = None) -> None:
    """Configure structured logging for the application.

    Args:
        log_level: Default log level (DEBUG, INFO, WARNING, ERROR)
        debug_namespaces: Logger namespaces (``collab``, ``memory``, ...) to
            log at DEBUG
    """
    debug_namespaces = debug_namespaces or []

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())
    handler.addFilter(NamespaceFilter(debug_namespaces))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG if debug_namespaces else log_level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("logging").info(
        "Logging configured",
        extra={
            "service": "logging",
            "metadata": {"log_level": log_level, "debug_namespaces": debug_namespaces},
        },
    )


def get_request_context() -> dict[str, str]:
    """Context identifiers currently set, by name."""
    return {name: value for name, var in _CONTEXT.items() if (value := var.get()) is not None}


def set_request_context(
    request_id: str | None = None,
    user_id: str | None = None,
    room_id: str | None = None,
    client_id: str | None = None,
) -> None:
    """Set context identifiers; ``None`` arguments leave the current value."""
    values = {
        "request_id": request_id,
        "user_id": user_id,
        "room_id": room_id,
        "client_id": client_id,
    }
    for name, value in values.items():
        if value is not None:
            _CONTEXT[name].set(value)


def clear_request_context() -> None:
    for var in _CONTEXT.values():
        var.set(None)


@contextmanager
def request_context(**identifiers: str) -> Iterator[None]:
    """Bind identifiers for the duration of a block, then restore the old values.

    Used by work that outlives the request that started it, such as memory
    trims scheduled as background tasks.
    """
    unknown = set(identifiers) - set(_CONTEXT)
    if unknown:
        raise ValueError(f"Unknown context identifiers: {sorted(unknown)}")

    tokens: list[tuple[ContextVar[str | None], Token[str | None]]] = [
        (_CONTEXT[name], _CONTEXT[name].set(value)) for name, value in identifiers.items()
    ]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


__all__ = [
    "StructuredFormatter",
    "NamespaceFilter",
    "setup_logging",
    "get_request_context",
    "set_request_context",
    "clear_request_context",
    "request_context",
]
