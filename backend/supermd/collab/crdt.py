"""Replicated text sequence.

Every character is an item with a globally unique id ``(clock, client_id)``
and a pointer to the item it was typed after (its *origin*). Items are
never removed, deletes only set a tombstone, so a replica can always
resolve an origin it has seen once.

Concurrent inserts after the same origin are ordered by id, highest
first. Clocks are Lamport clocks: a replica's next clock is one more
than the largest clock it has integrated, so an item is always ordered
after everything its author could see. Together these make integration
commutative, associative and idempotent.

Updates are JSON documents encoded to bytes; the relay treats them as
opaque.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Literal

from supermd.exceptions import MalformedUpdateError

logger = logging.getLogger("collab")

# Prefix of the client id used for text loaded from the document store. The
# rest of the id is derived from the text, so replicas seeding the same text
# produce identical items and different texts never share ids.
SEED_CLIENT_PREFIX = "~seed:"

UPDATE_FORMAT_VERSION = 1

UpdateKind = Literal["incremental", "full"]
UpdateObserver = Callable[["Update", str], None]


@dataclass(frozen=True, order=True)
class ItemId:
    """Identity of one inserted character.

    Ordering compares the clock first and breaks ties by client id.
    """

    clock: int
    client_id: str

    def to_wire(self) -> list[Any]:
        return [self.client_id, self.clock]

    @classmethod
    def from_wire(cls, raw: Any) -> ItemId:
        if (
            not isinstance(raw, list)
            or len(raw) != 2
            or not isinstance(raw[0], str)
            or not raw[0]
            or not isinstance(raw[1], int)
            or isinstance(raw[1], bool)
            or raw[1] < 1
        ):
            raise MalformedUpdateError(details={"id": repr(raw)[:80]})
        return cls(clock=raw[1], client_id=raw[0])


@dataclass(eq=False)
class Item:
    id: ItemId
    origin: ItemId | None
    content: str
    deleted: bool = False


@dataclass(frozen=True)
class InsertOp:
    id: ItemId
    origin: ItemId | None
    content: str


@dataclass(frozen=True)
class DeleteOp:
    target: ItemId


Operation = InsertOp | DeleteOp


@dataclass(frozen=True)
class Update:
    """A batch of operations exchanged between replicas.

    ``kind`` is ``"full"`` when the update carries a replica's entire
    state (bootstrap responses and reconnect announcements).
    """

    ops: tuple[Operation, ...] = ()
    kind: UpdateKind = "incremental"

    @property
    def is_empty(self) -> bool:
        return not self.ops

    def encode(self) -> bytes:
        wire_ops: list[dict[str, Any]] = []
        for op in self.ops:
            if isinstance(op, InsertOp):
                wire_ops.append(
                    {
                        "t": "i",
                        "id": op.id.to_wire(),
                        "o": op.origin.to_wire() if op.origin else None,
                        "c": op.content,
                    }
                )
            else:
                wire_ops.append({"t": "d", "id": op.target.to_wire()})
        body = {"v": UPDATE_FORMAT_VERSION, "kind": self.kind, "ops": wire_ops}
        return json.dumps(body, ensure_ascii=False, separators=(",", ":")).encode("utf-8")

    @classmethod
    def decode(cls, data: bytes) -> Update:
        """Parse an encoded update.

        Raises:
            MalformedUpdateError: If ``data`` is not a well-formed update.
        """
        try:
            body = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise MalformedUpdateError(details={"reason": "not JSON"}) from exc

        if not isinstance(body, dict) or body.get("v") != UPDATE_FORMAT_VERSION:
            raise MalformedUpdateError(details={"reason": "unknown format version"})
        kind = body.get("kind")
        if kind not in ("incremental", "full"):
            raise MalformedUpdateError(details={"reason": f"unknown kind {kind!r}"})
        raw_ops = body.get("ops")
        if not isinstance(raw_ops, list):
            raise MalformedUpdateError(details={"reason": "ops is not a list"})

        ops: list[Operation] = []
        for raw in raw_ops:
            if not isinstance(raw, dict):
                raise MalformedUpdateError(details={"reason": "op is not an object"})
            op_type = raw.get("t")
            if op_type == "i":
                content = raw.get("c")
                if not isinstance(content, str) or len(content) != 1:
                    raise MalformedUpdateError(details={"reason": "insert content"})
                origin = raw.get("o")
                ops.append(
                    InsertOp(
                        id=ItemId.from_wire(raw.get("id")),
                        origin=ItemId.from_wire(origin) if origin is not None else None,
                        content=content,
                    )
                )
            elif op_type == "d":
                ops.append(DeleteOp(target=ItemId.from_wire(raw.get("id"))))
            else:
                raise MalformedUpdateError(details={"reason": f"unknown op {op_type!r}"})
        return cls(ops=tuple(ops), kind=kind)


def seed_client_id(text: str) -> str:
    digest = hashlib.sha1(text.encode("utf-8")).hexdigest()[:16]
    return f"{SEED_CLIENT_PREFIX}{digest}"


def merge_updates(updates: Iterable[Update]) -> Update:
    """Concatenate updates into one incremental update."""
    ops: list[Operation] = []
    for update in updates:
        ops.extend(update.ops)
    return Update(ops=tuple(ops))


@dataclass
class _PendingQueue:
    """Operations whose dependencies have not arrived yet."""

    # missing origin id -> inserts waiting on it, keyed by their own id
    inserts: dict[ItemId, dict[ItemId, InsertOp]] = field(default_factory=dict)
    deletes: set[ItemId] = field(default_factory=set)
    insert_ids: set[ItemId] = field(default_factory=set)

    def __len__(self) -> int:
        return len(self.insert_ids) + len(self.deletes)

    def has_insert(self, item_id: ItemId) -> bool:
        return item_id in self.insert_ids

    def park(self, op: InsertOp, missing: ItemId) -> None:
        self.inserts.setdefault(missing, {})[op.id] = op
        self.insert_ids.add(op.id)

    def release(self, origin: ItemId) -> list[InsertOp]:
        """Inserts that were waiting on ``origin``, now integrable."""
        waiting = self.inserts.pop(origin, None)
        if not waiting:
            return []
        self.insert_ids.difference_update(waiting)
        return list(waiting.values())


class CRDTDocument:
    """One replica of a shared text document."""

    def __init__(self, client_id: str) -> None:
        if not client_id or client_id.startswith(SEED_CLIENT_PREFIX):
            raise ValueError(f"invalid replica client id: {client_id!r}")
        self.client_id = client_id
        self._clock = 0
        self._items: list[Item] = []
        self._index: dict[ItemId, Item] = {}
        # Most recently integrated item and its position in _items
        self._last: tuple[Item, int] | None = None
        self._pending = _PendingQueue()
        self._observers: list[UpdateObserver] = []

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def text(self) -> str:
        return "".join(item.content for item in self._items if not item.deleted)

    def __len__(self) -> int:
        return sum(1 for item in self._items if not item.deleted)

    @property
    def clock(self) -> int:
        return self._clock

    @property
    def is_empty(self) -> bool:
        """True when the replica has never integrated any item."""
        return not self._items and not len(self._pending)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def on_update(self, observer: UpdateObserver) -> Callable[[], None]:
        """Register ``observer(update, origin)``; returns an unsubscribe callable.

        ``origin`` is ``"local"`` for edits made on this replica, ``"seed"``
        for store seeding and whatever the caller passed to ``apply_update``
        otherwise.
        """
        self._observers.append(observer)
        return lambda: self._observers.remove(observer)

    # ------------------------------------------------------------------
    # Local edits
    # ------------------------------------------------------------------

    def insert(self, index: int, text: str) -> Update:
        """Insert ``text`` so that it starts at visible position ``index``."""
        visible = self._visible_items()
        if index < 0 or index > len(visible):
            raise IndexError(f"insert position {index} out of range 0..{len(visible)}")
        if not text:
            return Update()

        origin = visible[index - 1].id if index > 0 else None
        ops: list[Operation] = []
        for char in text:
            self._clock += 1
            op = InsertOp(id=ItemId(self._clock, self.client_id), origin=origin, content=char)
            self._integrate(op)
            ops.append(op)
            origin = op.id

        update = Update(ops=tuple(ops))
        self._notify(update, "local")
        return update

    def delete(self, index: int, length: int = 1) -> Update:
        """Delete ``length`` visible characters starting at ``index``."""
        visible = self._visible_items()
        if length < 0 or index < 0 or index + length > len(visible):
            raise IndexError(
                f"delete range {index}..{index + length} out of range 0..{len(visible)}"
            )
        if length == 0:
            return Update()

        ops: list[Operation] = []
        for item in visible[index : index + length]:
            item.deleted = True
            ops.append(DeleteOp(target=item.id))

        update = Update(ops=tuple(ops))
        self._notify(update, "local")
        return update

    def replace(self, index: int, delete_count: int, text: str) -> Update:
        """Delete then insert at the same position, as one update."""
        removed = self.delete(index, delete_count) if delete_count else Update()
        added = self.insert(index, text) if text else Update()
        return merge_updates([removed, added])

    def seed(self, text: str) -> Update | None:
        """Load persisted text into an empty replica.

        Returns ``None`` when the replica already holds content.
        """
        if not self.is_empty or not text:
            return None

        seed_client = seed_client_id(text)
        ops: list[Operation] = []
        origin: ItemId | None = None
        for clock, char in enumerate(text, start=1):
            op = InsertOp(id=ItemId(clock, seed_client), origin=origin, content=char)
            ops.append(op)
            origin = op.id

        update = Update(ops=tuple(ops))
        self._apply(update)
        self._notify(update, "seed")
        return update

    # ------------------------------------------------------------------
    # Remote updates
    # ------------------------------------------------------------------

    def apply_update(self, update: Update, origin: str = "remote") -> int:
        """Merge a remote update; returns the number of operations applied.

        Operations already seen are ignored. Operations whose dependencies
        are missing wait until the dependency arrives.
        """
        applied = self._apply(update)
        if applied:
            self._notify(update, origin)
        return applied

    def encode_state_as_update(self) -> Update:
        """Everything this replica knows, in document order."""
        ops: list[Operation] = [
            InsertOp(id=item.id, origin=item.origin, content=item.content)
            for item in self._items
        ]
        for waiting in self._pending.inserts.values():
            ops.extend(waiting.values())
        ops.extend(DeleteOp(target=item.id) for item in self._items if item.deleted)
        ops.extend(DeleteOp(target=target) for target in self._pending.deletes)
        return Update(ops=tuple(ops), kind="full")

    # ------------------------------------------------------------------
    # Integration
    # ------------------------------------------------------------------

    def _visible_items(self) -> list[Item]:
        return [item for item in self._items if not item.deleted]

    def _apply(self, update: Update) -> int:
        applied = 0
        for op in update.ops:
            if isinstance(op, InsertOp):
                applied += self._apply_insert(op)
            else:
                applied += self._apply_delete(op)
        if len(self._pending):
            logger.debug(
                "Operations waiting on missing dependencies",
                extra={"service": "collab", "metadata": {"pending": len(self._pending)}},
            )
        return applied

    def _apply_insert(self, op: InsertOp) -> int:
        if op.id in self._index or self._pending.has_insert(op.id):
            return 0
        if op.origin is not None and op.origin not in self._index:
            self._pending.park(op, op.origin)
            return 0

        applied = 0
        ready = [op]
        while ready:
            current = ready.pop()
            self._integrate(current)
            applied += 1
            ready.extend(self._pending.release(current.id))
        return applied

    def _apply_delete(self, op: DeleteOp) -> int:
        item = self._index.get(op.target)
        if item is None:
            if op.target in self._pending.deletes:
                return 0
            self._pending.deletes.add(op.target)
            return 0
        if item.deleted:
            return 0
        item.deleted = True
        return 1

    def _integrate(self, op: InsertOp) -> None:
        if op.origin is None:
            position = 0
        else:
            position = self._position_of(self._index[op.origin]) + 1

        # Skip items that win over this one; they belong to the origin's
        # subtree, which is laid out highest id first.
        while position < len(self._items) and self._items[position].id > op.id:
            position += 1

        item = Item(id=op.id, origin=op.origin, content=op.content)
        if op.id in self._pending.deletes:
            self._pending.deletes.discard(op.id)
            item.deleted = True
        self._items.insert(position, item)
        self._index[op.id] = item
        self._last = (item, position)
        self._clock = max(self._clock, op.id.clock)

    def _position_of(self, item: Item) -> int:
        # Typing, seeding and full-state updates chain each item onto the
        # previous one, so the origin is usually the item integrated last.
        if self._last is not None:
            last, position = self._last
            if last is item:
                return position
        return self._items.index(item)

    def _notify(self, update: Update, origin: str) -> None:
        for observer in list(self._observers):
            observer(update, origin)


__all__ = [
    "SEED_CLIENT_PREFIX",
    "seed_client_id",
    "ItemId",
    "Item",
    "InsertOp",
    "DeleteOp",
    "Operation",
    "Update",
    "UpdateKind",
    "CRDTDocument",
    "merge_updates",
]
