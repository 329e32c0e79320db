"""Ephemeral presence (cursor, selection, user label) for one room.

Each client owns one record. Records carry a per-client clock that the
owner bumps on every change, and a receiver keeps whichever record has
the highest clock. Removal is a record with ``state=None``.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from supermd.exceptions import MalformedPresenceError

logger = logging.getLogger("collab")

PresenceObserver = Callable[["PresenceChange", str], None]


@dataclass
class PresenceRecord:
    client_id: str
    clock: int
    state: dict[str, Any] | None
    updated_at: float = field(default_factory=time.monotonic)

    @property
    def is_removed(self) -> bool:
        return self.state is None


@dataclass
class PresenceChange:
    added: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.added or self.updated or self.removed)


class Awareness:
    """Last-write-wins presence map keyed by client id."""

    def __init__(self, client_id: str) -> None:
        self.client_id = client_id
        self._records: dict[str, PresenceRecord] = {}
        self._observers: list[PresenceObserver] = []

    def on_change(self, observer: PresenceObserver) -> Callable[[], None]:
        self._observers.append(observer)
        return lambda: self._observers.remove(observer)

    def get_local_state(self) -> dict[str, Any] | None:
        record = self._records.get(self.client_id)
        return record.state if record else None

    def get_states(self) -> dict[str, dict[str, Any]]:
        """Visible presence states of every known client, this one included."""
        return {
            client_id: record.state
            for client_id, record in self._records.items()
            if record.state is not None
        }

    def set_local_state(self, state: dict[str, Any] | None) -> bytes:
        """Replace this client's presence and return the update to broadcast."""
        current = self._records.get(self.client_id)
        clock = current.clock + 1 if current else 1
        self._records[self.client_id] = PresenceRecord(self.client_id, clock, state)

        change = PresenceChange()
        if state is None:
            change.removed.append(self.client_id)
        elif current is None or current.is_removed:
            change.added.append(self.client_id)
        else:
            change.updated.append(self.client_id)
        self._notify(change, "local")
        return self.encode_update([self.client_id])

    def apply_update(self, data: bytes, origin: str = "remote") -> PresenceChange:
        """Merge presence records from a peer.

        Raises:
            MalformedPresenceError: If ``data`` cannot be decoded.
        """
        change = PresenceChange()
        for incoming in _decode(data):
            current = self._records.get(incoming.client_id)
            if current is not None and not _supersedes(incoming, current):
                continue
            self._records[incoming.client_id] = incoming
            if incoming.is_removed:
                if current is not None and not current.is_removed:
                    change.removed.append(incoming.client_id)
            elif current is None or current.is_removed:
                change.added.append(incoming.client_id)
            else:
                change.updated.append(incoming.client_id)
        if change:
            self._notify(change, origin)
        return change

    def remove_client(self, client_id: str) -> bool:
        """Hide a client that the relay reported as gone.

        The record keeps its clock so a delayed update from before the
        disconnect cannot bring the client back.
        """
        record = self._records.get(client_id)
        if record is None or record.is_removed:
            return False
        record.state = None
        record.updated_at = time.monotonic()
        self._notify(PresenceChange(removed=[client_id]), "relay")
        return True

    def encode_update(self, client_ids: Iterable[str]) -> bytes:
        records = [
            {"client": r.client_id, "clock": r.clock, "state": r.state}
            for client_id in client_ids
            if (r := self._records.get(client_id)) is not None
        ]
        return json.dumps({"records": records}, separators=(",", ":")).encode("utf-8")

    def encode_full(self) -> bytes:
        return self.encode_update(list(self._records))

    def _notify(self, change: PresenceChange, origin: str) -> None:
        for observer in list(self._observers):
            observer(change, origin)


def _supersedes(incoming: PresenceRecord, current: PresenceRecord) -> bool:
    if incoming.clock != current.clock:
        return incoming.clock > current.clock
    # Same clock: a removal wins so a departed client stays departed
    return incoming.is_removed and not current.is_removed


def _decode(data: bytes) -> list[PresenceRecord]:
    try:
        body = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise MalformedPresenceError(details={"reason": "not JSON"}) from exc

    raw_records = body.get("records") if isinstance(body, dict) else None
    if not isinstance(raw_records, list):
        raise MalformedPresenceError(details={"reason": "records is not a list"})

    records = []
    for raw in raw_records:
        if not isinstance(raw, dict):
            raise MalformedPresenceError(details={"reason": "record is not an object"})
        client_id = raw.get("client")
        clock = raw.get("clock")
        state = raw.get("state")
        if (
            not isinstance(client_id, str)
            or not client_id
            or not isinstance(clock, int)
            or isinstance(clock, bool)
            or (state is not None and not isinstance(state, dict))
        ):
            raise MalformedPresenceError(details={"reason": "invalid record"})
        records.append(PresenceRecord(client_id, clock, state))
    return records


__all__ = ["Awareness", "PresenceRecord", "PresenceChange"]
