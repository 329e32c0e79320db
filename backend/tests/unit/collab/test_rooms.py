"""Tests for room membership bookkeeping."""

from supermd.collab.rooms import RoomRegistry


class TestRoomRegistry:
    """Test RoomRegistry join/leave semantics."""

    def test_join_creates_room_and_counts_members(self):
        registry = RoomRegistry()

        assert registry.join("doc", "a") == 1
        assert registry.join("doc", "b") == 2
        assert registry.room_count == 1
        assert registry.members("doc") == ["a", "b"]
        assert registry.members("doc", exclude="a") == ["b"]

    def test_join_twice_is_noop(self):
        registry = RoomRegistry()
        registry.join("doc", "a")

        assert registry.join("doc", "a") == 1

    def test_leave_returns_remaining_and_discards_empty_room(self):
        registry = RoomRegistry()
        registry.join("doc", "a")
        registry.join("doc", "b")

        assert registry.leave("doc", "a") == 1
        assert registry.leave("doc", "b") == 0
        assert registry.get_room("doc") is None
        assert registry.room_count == 0

    def test_leave_non_member(self):
        registry = RoomRegistry()
        registry.join("doc", "a")

        assert registry.leave("doc", "b") is None
        assert registry.leave("other", "a") is None

    def test_disconnect_leaves_every_room(self):
        registry = RoomRegistry()
        registry.join("doc-1", "a")
        registry.join("doc-2", "a")
        registry.join("doc-2", "b")

        left = registry.disconnect("a")

        assert left == [("doc-1", 0), ("doc-2", 1)]
        assert registry.rooms_for("a") == set()
        assert registry.is_member("doc-2", "b")

    def test_bootstrap_first_responder_only(self):
        registry = RoomRegistry(first_responder_only=True)
        registry.join("doc", "a")
        registry.join("doc", "b")
        registry.begin_bootstrap("doc", "b")

        assert registry.complete_bootstrap("doc", "b") is True
        assert registry.complete_bootstrap("doc", "b") is False

    def test_bootstrap_every_responder(self):
        registry = RoomRegistry(first_responder_only=False)
        registry.join("doc", "a")

        assert registry.complete_bootstrap("doc", "a") is True
        assert registry.complete_bootstrap("doc", "a") is True

    def test_leaving_clears_pending_bootstrap(self):
        registry = RoomRegistry()
        registry.join("doc", "a")
        registry.join("doc", "b")
        registry.begin_bootstrap("doc", "b")
        registry.leave("doc", "b")
        registry.join("doc", "b")

        assert registry.complete_bootstrap("doc", "b") is False

    def test_non_final_response_keeps_request_open(self):
        registry = RoomRegistry()
        registry.join("doc", "a")
        registry.join("doc", "b")
        registry.begin_bootstrap("doc", "b")

        assert registry.complete_bootstrap("doc", "b", final=False) is True
        assert registry.complete_bootstrap("doc", "b") is True
        assert registry.complete_bootstrap("doc", "b", final=False) is False

    def test_replica_ids(self):
        registry = RoomRegistry()
        registry.join("doc", "a")
        registry.join("doc", "socket-1", replica_id="bob")

        assert registry.replica_id("doc", "a") == "a"
        assert registry.replica_id("doc", "socket-1") == "bob"
        assert registry.replica_present("doc", "bob")

        registry.leave("doc", "socket-1")

        assert not registry.replica_present("doc", "bob")
        assert registry.replica_id("doc", "socket-1") == "socket-1"
