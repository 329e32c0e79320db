"""Relay hub: fans collaboration messages out to the other members of a room.

The hub never decodes document or presence blobs. It only knows room
membership (through :class:`RoomRegistry`) and how to address a client.
"""

from __future__ import annotations

import collections
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from supermd.collab import protocol
from supermd.collab.rooms import RoomRegistry
from supermd.documents.store import DocumentStore
from supermd.exceptions import RoomMembershipError

logger = logging.getLogger("collab")

SendToClient = Callable[[str, dict[str, Any]], Awaitable[bool]]


class RelayHub:
    """Room-scoped fan-out with point-to-point bootstrap replies."""

    def __init__(
        self,
        registry: RoomRegistry,
        send: SendToClient,
        document_store: DocumentStore | None = None,
        seed_from_store: bool = True,
    ) -> None:
        self.registry = registry
        self._send = send
        self._document_store = document_store
        self._seed_from_store = seed_from_store
        self._relayed_counts: collections.Counter[str] = collections.Counter()

    def get_metrics_snapshot(self) -> dict[str, Any]:
        return {
            "rooms": self.registry.room_count,
            "relayed_counts": dict(self._relayed_counts),
        }

    async def join(self, room_id: str, client_id: str, replica_id: str | None = None) -> int:
        """Add a client to a room and announce it.

        The joiner receives ``room.info``; when it is alone in the room the
        persisted text is attached as ``seed``. Everyone else receives
        ``room.user_joined``. ``replica_id`` is the document replica behind
        the connection; it outlives reconnects, unlike ``client_id``.
        """
        already_member = self.registry.is_member(room_id, client_id)
        count = self.registry.join(room_id, client_id, replica_id)

        seed: str | None = None
        if count == 1 and self._seed_from_store and self._document_store is not None:
            seed = await self._document_store.load_document_text(room_id) or None

        await self._send(
            client_id,
            protocol.envelope(
                protocol.ROOM_INFO,
                {"roomId": room_id, "clientId": client_id, "userCount": count, "seed": seed},
            ),
        )
        if not already_member:
            await self._fan_out(
                self.registry.members(room_id, exclude=client_id),
                protocol.envelope(
                    protocol.ROOM_USER_JOINED,
                    {
                        "roomId": room_id,
                        "clientId": client_id,
                        "replicaId": self.registry.replica_id(room_id, client_id),
                        "userCount": count,
                    },
                ),
            )

        logger.info(
            "Client joined room",
            extra={
                "service": "collab",
                "room_id": room_id,
                "client_id": client_id,
                "user_count": count,
            },
        )
        return count

    async def leave(self, room_id: str, client_id: str) -> int | None:
        """Remove a client from a room; returns the remaining count."""
        replica_id = self.registry.replica_id(room_id, client_id)
        remaining = self.registry.leave(room_id, client_id)
        if remaining is None:
            return None
        await self._announce_departure(room_id, client_id, replica_id, remaining)
        return remaining

    async def disconnect(self, client_id: str) -> list[str]:
        """Drop a client from every room it joined; returns those room ids."""
        replicas = {
            room_id: self.registry.replica_id(room_id, client_id)
            for room_id in self.registry.rooms_for(client_id)
        }
        left = self.registry.disconnect(client_id)
        for room_id, remaining in left:
            await self._announce_departure(room_id, client_id, replicas[room_id], remaining)
        return [room_id for room_id, _ in left]

    async def forward(self, room_id: str, sender_id: str, update: str) -> int:
        """Send an incremental document update to every other member."""
        self._require_member(room_id, sender_id)
        return await self._fan_out(
            self.registry.members(room_id, exclude=sender_id),
            protocol.envelope(
                protocol.SYNC_UPDATE,
                {"roomId": room_id, "senderId": sender_id, "update": update},
            ),
        )

    async def forward_presence(self, room_id: str, sender_id: str, update: str) -> int:
        self._require_member(room_id, sender_id)
        return await self._fan_out(
            self.registry.members(room_id, exclude=sender_id),
            protocol.envelope(
                protocol.AWARENESS_UPDATE,
                {"roomId": room_id, "senderId": sender_id, "update": update},
            ),
        )

    async def forward_bootstrap_request(self, room_id: str, requester_id: str) -> int:
        """Ask the other members for their full state.

        Returns the number of members asked; zero means the requester is
        alone and keeps its seeded or empty document.
        """
        self._require_member(room_id, requester_id)
        others = self.registry.members(room_id, exclude=requester_id)
        if not others:
            return 0
        self.registry.begin_bootstrap(room_id, requester_id)
        return await self._fan_out(
            others,
            protocol.envelope(
                protocol.SYNC_REQUEST,
                {"roomId": room_id, "requesterId": requester_id},
            ),
        )

    async def forward_bootstrap_response(
        self,
        room_id: str,
        sender_id: str,
        target_id: str,
        update: str,
        empty: bool = False,
    ) -> bool:
        """Deliver a full-state response to its requester only.

        An ``empty`` response comes from a member whose replica holds
        nothing; it does not close the request, so a member with content
        can still answer.
        """
        self._require_member(room_id, sender_id)
        if not self.registry.is_member(room_id, target_id):
            logger.debug(
                "Bootstrap target gone, dropping response",
                extra={"service": "collab", "room_id": room_id, "client_id": target_id},
            )
            return False
        if not self.registry.complete_bootstrap(room_id, target_id, final=not empty):
            self._relayed_counts["bootstrap_suppressed"] += 1
            return False
        self._relayed_counts[protocol.SYNC_RESPONSE] += 1
        return await self._send(
            target_id,
            protocol.envelope(
                protocol.SYNC_RESPONSE,
                {"roomId": room_id, "senderId": sender_id, "update": update},
            ),
        )

    async def save_document(self, room_id: str, client_id: str, text: str) -> None:
        self._require_member(room_id, client_id)
        if self._document_store is None:
            return
        await self._document_store.save_document_text(room_id, text)

    def _require_member(self, room_id: str, client_id: str) -> None:
        if not self.registry.is_member(room_id, client_id):
            raise RoomMembershipError(room_id, client_id)

    async def _announce_departure(
        self, room_id: str, client_id: str, replica_id: str, remaining: int
    ) -> None:
        others = self.registry.members(room_id)
        await self._fan_out(
            others,
            protocol.envelope(
                protocol.ROOM_USER_LEFT,
                {
                    "roomId": room_id,
                    "clientId": client_id,
                    "replicaId": replica_id,
                    "userCount": remaining,
                },
            ),
        )
        # Keep presence when the replica already came back on another connection
        if not self.registry.replica_present(room_id, replica_id):
            await self._fan_out(
                others,
                protocol.envelope(
                    protocol.AWARENESS_REMOVE,
                    {"roomId": room_id, "clientId": replica_id},
                ),
            )
        logger.info(
            "Client left room",
            extra={
                "service": "collab",
                "room_id": room_id,
                "client_id": client_id,
                "user_count": remaining,
            },
        )

    async def _fan_out(self, client_ids: Iterable[str], message: dict[str, Any]) -> int:
        sent = 0
        for client_id in client_ids:
            if await self._send(client_id, message):
                sent += 1
        self._relayed_counts[message["type"]] += sent
        return sent
