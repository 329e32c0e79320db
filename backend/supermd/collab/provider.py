"""Client-side synchronization of one document replica with a relay room.

The provider is transport agnostic: it is given an async ``send`` callable
for outgoing envelopes and is fed incoming envelopes through
``handle_message``. Local edits are always applied to the replica
immediately; broadcasting them is fire and forget.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from supermd.collab import protocol
from supermd.collab.autosave import DebouncedSaver
from supermd.collab.awareness import Awareness
from supermd.collab.crdt import CRDTDocument, Update
from supermd.config import get_settings
from supermd.exceptions import MalformedPresenceError, MalformedUpdateError, ProtocolError

logger = logging.getLogger("collab")

Send = Callable[[dict[str, Any]], Awaitable[None]]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    JOINING = "joining"
    SYNCED = "synced"
    LEAVING = "leaving"


@dataclass(frozen=True)
class TextEdit:
    """An editor change: remove ``delete_count`` chars at ``index``, then insert ``text``."""

    index: int
    delete_count: int = 0
    text: str = ""


class SyncProvider:
    """Binds a :class:`CRDTDocument` and its presence to one relay room.

    The document's client id is announced as ``replicaId`` on join, so the
    relay reports departures under the id presence is keyed by even though
    every socket gets a fresh relay client id.
    """

    def __init__(
        self,
        room_id: str,
        document: CRDTDocument,
        send: Send,
        awareness: Awareness | None = None,
        autosave_delay_seconds: float | None = None,
    ) -> None:
        self.room_id = room_id
        self.document = document
        self.awareness = awareness or Awareness(document.client_id)
        self.state = ConnectionState.DISCONNECTED
        self.user_count = 0
        self._send = send
        self._tasks: set[asyncio.Task[None]] = set()
        self._saver = (
            DebouncedSaver(self._send_save, autosave_delay_seconds)
            if autosave_delay_seconds is not None
            else None
        )
        self._unsubscribe = document.on_update(self._on_document_update)

    @classmethod
    def from_settings(
        cls,
        room_id: str,
        document: CRDTDocument,
        send: Send,
        awareness: Awareness | None = None,
    ) -> SyncProvider:
        """Provider with autosave configured from ``collab_autosave_debounce_seconds``.

        A debounce of zero disables autosave.
        """
        delay = get_settings().collab_autosave_debounce_seconds
        return cls(
            room_id,
            document,
            send,
            awareness=awareness,
            autosave_delay_seconds=delay if delay > 0 else None,
        )

    @property
    def client_id(self) -> str:
        return self.document.client_id

    @property
    def text(self) -> str:
        return self.document.text

    @property
    def autosave(self) -> DebouncedSaver | None:
        return self._saver

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Join the room, ask peers for their state and announce our own.

        A replica that already holds content (offline edits, reconnect)
        broadcasts its full state so peers pick up what they missed. Local
        presence is re-sent with a new clock, since peers saw it removed
        when the previous connection went away.
        """
        self.state = ConnectionState.JOINING
        await self._send(
            protocol.envelope(
                protocol.ROOM_JOIN, {"roomId": self.room_id, "replicaId": self.client_id}
            )
        )
        await self.request_bootstrap()
        if not self.document.is_empty:
            await self._send(self._update_message(self.document.encode_state_as_update()))
        local_state = self.awareness.get_local_state()
        if local_state is not None:
            await self._send(self._presence_message(self.awareness.set_local_state(local_state)))

    async def disconnect(self) -> None:
        """Leave the room cleanly, flushing pending saves and clearing presence."""
        if self.state is ConnectionState.DISCONNECTED:
            return
        self.state = ConnectionState.LEAVING
        if self._saver is not None:
            await self._saver.flush()
        await self.flush()
        await self._send(protocol.envelope(protocol.ROOM_LEAVE, {"roomId": self.room_id}))
        self.state = ConnectionState.DISCONNECTED
        self.user_count = 0

    def transport_lost(self) -> None:
        """The socket dropped; keep editing locally until ``connect`` is called again."""
        self.state = ConnectionState.DISCONNECTED
        self.user_count = 0

    async def flush(self) -> None:
        """Wait for in-flight broadcasts."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        self._unsubscribe()

    # ------------------------------------------------------------------
    # Local operations
    # ------------------------------------------------------------------

    def local_edit(self, edit: TextEdit) -> Update:
        return self.document.replace(edit.index, edit.delete_count, edit.text)

    def insert(self, index: int, text: str) -> Update:
        return self.document.insert(index, text)

    def delete(self, index: int, length: int = 1) -> Update:
        return self.document.delete(index, length)

    def update_presence(self, state: dict[str, Any] | None) -> None:
        self._emit(self._presence_message(self.awareness.set_local_state(state)))

    async def request_bootstrap(self) -> None:
        await self._send(protocol.envelope(protocol.SYNC_REQUEST, {"roomId": self.room_id}))

    # ------------------------------------------------------------------
    # Remote input
    # ------------------------------------------------------------------

    def apply_remote_update(self, data: bytes) -> bool:
        """Merge an encoded update from a peer.

        Malformed updates are logged and dropped; returns whether the
        update was well formed.
        """
        try:
            update = Update.decode(data)
        except MalformedUpdateError as exc:
            logger.warning(
                "Dropping malformed document update",
                extra={
                    "service": "collab",
                    "room_id": self.room_id,
                    "client_id": self.client_id,
                    "error_code": exc.code,
                    "metadata": exc.details,
                },
            )
            return False

        self.document.apply_update(update, origin="remote")
        if update.kind == "full" and self.state is ConnectionState.JOINING:
            self._mark_synced()
        return True

    async def handle_message(self, message: dict[str, Any]) -> None:
        """Dispatch one envelope received from the relay."""
        message_type = message.get("type")
        payload = message.get("payload")
        if payload is None:
            payload = {}

        try:
            if not isinstance(payload, dict):
                raise ProtocolError("'payload' must be an object", details={"field": "payload"})
            if payload.get("roomId") not in (None, self.room_id):
                return

            if message_type == protocol.ROOM_INFO:
                self._on_room_info(payload)
            elif message_type == protocol.ROOM_USER_JOINED:
                self.user_count = protocol.require_count(payload, "userCount")
                self._announce_presence()
            elif message_type == protocol.ROOM_USER_LEFT:
                # Presence goes with the awareness.remove that follows
                self.user_count = protocol.require_count(payload, "userCount")
                if self.user_count <= 1 and self.state is ConnectionState.JOINING:
                    self._mark_synced()
            elif message_type in (protocol.SYNC_UPDATE, protocol.SYNC_RESPONSE):
                self.apply_remote_update(protocol.decode_blob(payload.get("update")))
            elif message_type == protocol.SYNC_REQUEST:
                await self._respond_bootstrap(protocol.require_str(payload, "requesterId"))
            elif message_type == protocol.AWARENESS_UPDATE:
                self.awareness.apply_update(protocol.decode_blob(payload.get("update")))
            elif message_type == protocol.AWARENESS_REMOVE:
                self.awareness.remove_client(protocol.require_str(payload, "clientId"))
            elif message_type == protocol.ERROR:
                logger.warning(
                    "Relay reported an error",
                    extra={
                        "service": "collab",
                        "room_id": self.room_id,
                        "error_code": payload.get("code"),
                        "error": payload.get("message"),
                    },
                )
        except (ProtocolError, MalformedPresenceError) as exc:
            logger.warning(
                "Dropping invalid relay message",
                extra={
                    "service": "collab",
                    "room_id": self.room_id,
                    "message_type": message_type,
                    "error_code": exc.code,
                },
            )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _on_room_info(self, payload: dict[str, Any]) -> None:
        self.user_count = protocol.require_count(payload, "userCount")
        seed = payload.get("seed")
        if isinstance(seed, str) and seed:
            self.document.seed(seed)
        if self.user_count <= 1 and self.state is ConnectionState.JOINING:
            # Nobody to bootstrap from
            self._mark_synced()

    async def _respond_bootstrap(self, requester_id: str) -> None:
        """Send our full state to a joining peer.

        Only a synced replica answers: one that is still joining may hold
        a fraction of the room's content. A synced replica with nothing in
        it answers with ``empty`` so the relay keeps the request open for
        a member that has content.
        """
        if self.state is not ConnectionState.SYNCED:
            logger.debug(
                "Not answering bootstrap request before sync",
                extra={
                    "service": "collab",
                    "room_id": self.room_id,
                    "client_id": requester_id,
                    "metadata": {"state": self.state.value},
                },
            )
            return

        payload: dict[str, Any] = {
            "roomId": self.room_id,
            "targetId": requester_id,
            "update": protocol.encode_blob(self.document.encode_state_as_update().encode()),
        }
        if self.document.is_empty:
            payload["empty"] = True
        await self._send(protocol.envelope(protocol.SYNC_RESPONSE, payload))

    def _announce_presence(self) -> None:
        """Re-send local presence so a new member sees it."""
        if self.awareness.get_local_state() is None:
            return
        self._emit(self._presence_message(self.awareness.encode_update([self.client_id])))

    def _presence_message(self, data: bytes) -> dict[str, Any]:
        return protocol.envelope(
            protocol.AWARENESS_UPDATE,
            {"roomId": self.room_id, "update": protocol.encode_blob(data)},
        )

    def _mark_synced(self) -> None:
        self.state = ConnectionState.SYNCED
        logger.debug(
            "Replica synced",
            extra={
                "service": "collab",
                "room_id": self.room_id,
                "client_id": self.client_id,
                "user_count": self.user_count,
            },
        )

    def _on_document_update(self, update: Update, origin: str) -> None:
        if origin not in ("local", "seed"):
            return
        self._emit(self._update_message(update))
        if origin == "local" and self._saver is not None:
            self._saver.schedule(self.document.text)

    def _update_message(self, update: Update) -> dict[str, Any]:
        return protocol.envelope(
            protocol.SYNC_UPDATE,
            {"roomId": self.room_id, "update": protocol.encode_blob(update.encode())},
        )

    async def _send_save(self, text: str) -> None:
        await self._send(
            protocol.envelope(protocol.DOCUMENT_SAVE, {"roomId": self.room_id, "content": text})
        )

    def _emit(self, message: dict[str, Any]) -> None:
        if self.state is ConnectionState.DISCONNECTED:
            # Re-announced as full state on the next connect
            return
        task = asyncio.get_running_loop().create_task(self._send_quietly(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send_quietly(self, message: dict[str, Any]) -> None:
        try:
            await self._send(message)
        except Exception as exc:
            logger.warning(
                "Broadcast failed",
                extra={
                    "service": "collab",
                    "room_id": self.room_id,
                    "message_type": message.get("type"),
                    "error": str(exc),
                },
            )
