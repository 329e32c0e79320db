"""Room membership bookkeeping for the relay.

The registry is the single owner of "who is in which room". It is
process-local: running several relay processes requires sticky routing
of a room to one process.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

logger = logging.getLogger("collab")


@dataclass
class Room:
    room_id: str
    # dict keeps join order
    members: dict[str, datetime] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    # requesters still waiting for their first full-state response
    awaiting_bootstrap: set[str] = field(default_factory=set)
    # member -> replica id it announced; presence is keyed by replica id
    replicas: dict[str, str] = field(default_factory=dict)

    @property
    def member_count(self) -> int:
        return len(self.members)


class RoomRegistry:
    """Maps rooms to connected client ids and back."""

    def __init__(self, first_responder_only: bool = True) -> None:
        self.first_responder_only = first_responder_only
        self._rooms: dict[str, Room] = {}
        self._client_rooms: dict[str, set[str]] = {}

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    def get_room(self, room_id: str) -> Room | None:
        return self._rooms.get(room_id)

    def join(self, room_id: str, client_id: str, replica_id: str | None = None) -> int:
        """Add ``client_id`` to the room, creating it if needed.

        ``replica_id`` names the document replica behind the connection and
        defaults to the connection id. Joining twice is a no-op. Returns the
        member count after the join.
        """
        room = self._rooms.get(room_id)
        if room is None:
            room = self._rooms[room_id] = Room(room_id=room_id)
            logger.debug(
                "Room created",
                extra={"service": "collab", "room_id": room_id},
            )
        room.members.setdefault(client_id, datetime.now(UTC))
        room.replicas.setdefault(client_id, replica_id or client_id)
        self._client_rooms.setdefault(client_id, set()).add(room_id)
        return room.member_count

    def leave(self, room_id: str, client_id: str) -> int | None:
        """Remove ``client_id`` from the room.

        Returns the remaining member count, or ``None`` when the client was
        not a member. An emptied room is discarded.
        """
        room = self._rooms.get(room_id)
        if room is None or client_id not in room.members:
            return None

        del room.members[client_id]
        room.replicas.pop(client_id, None)
        room.awaiting_bootstrap.discard(client_id)
        rooms = self._client_rooms.get(client_id)
        if rooms is not None:
            rooms.discard(room_id)
            if not rooms:
                del self._client_rooms[client_id]

        remaining = room.member_count
        if remaining == 0:
            del self._rooms[room_id]
            logger.debug(
                "Room discarded",
                extra={"service": "collab", "room_id": room_id},
            )
        return remaining

    def disconnect(self, client_id: str) -> list[tuple[str, int]]:
        """Remove ``client_id`` from every room it joined.

        Returns ``(room_id, remaining_count)`` for each room left.
        """
        left = []
        for room_id in sorted(self._client_rooms.get(client_id, set())):
            remaining = self.leave(room_id, client_id)
            if remaining is not None:
                left.append((room_id, remaining))
        return left

    def is_member(self, room_id: str, client_id: str) -> bool:
        room = self._rooms.get(room_id)
        return room is not None and client_id in room.members

    def members(self, room_id: str, exclude: str | None = None) -> list[str]:
        room = self._rooms.get(room_id)
        if room is None:
            return []
        return [member for member in room.members if member != exclude]

    def member_count(self, room_id: str) -> int:
        room = self._rooms.get(room_id)
        return room.member_count if room else 0

    def rooms_for(self, client_id: str) -> set[str]:
        return set(self._client_rooms.get(client_id, set()))

    def begin_bootstrap(self, room_id: str, requester_id: str) -> None:
        room = self._rooms.get(room_id)
        if room is not None:
            room.awaiting_bootstrap.add(requester_id)

    def complete_bootstrap(self, room_id: str, requester_id: str, final: bool = True) -> bool:
        """Whether a full-state response for ``requester_id`` should be delivered.

        With ``first_responder_only`` only the first final response per
        request is delivered; later ones are redundant because the first
        carries the responder's whole state. A non-final response (from a
        member with an empty replica) is delivered while the request is
        open but leaves it open for a member that has content.
        """
        if not self.first_responder_only:
            return True
        room = self._rooms.get(room_id)
        if room is None or requester_id not in room.awaiting_bootstrap:
            return False
        if final:
            room.awaiting_bootstrap.discard(requester_id)
        return True

    def replica_id(self, room_id: str, client_id: str) -> str:
        room = self._rooms.get(room_id)
        if room is None:
            return client_id
        return room.replicas.get(client_id, client_id)

    def replica_present(self, room_id: str, replica_id: str) -> bool:
        """Whether some connection in the room still speaks for ``replica_id``."""
        room = self._rooms.get(room_id)
        return room is not None and replica_id in room.replicas.values()
