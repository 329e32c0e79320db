"""Real-time collaborative editing: replicated text, presence and the relay."""

from supermd.collab.awareness import Awareness
from supermd.collab.crdt import CRDTDocument, Update
from supermd.collab.provider import ConnectionState, SyncProvider, TextEdit
from supermd.collab.relay import RelayHub
from supermd.collab.rooms import RoomRegistry

__all__ = [
    "Awareness",
    "CRDTDocument",
    "Update",
    "ConnectionState",
    "SyncProvider",
    "TextEdit",
    "RelayHub",
    "RoomRegistry",
]
