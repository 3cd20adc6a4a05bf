"""Tests for room event fan-out."""

import asyncio

from src.contest_draft.events import DraftEvent, RoomBroadcaster


class FakeSocket:
    def __init__(self, fail=False):
        self.sent = []
        self.closed_with = None
        self.fail = fail

    async def send_json(self, payload):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(payload)

    async def close(self, code=1000):
        self.closed_with = code


class TestRoomBroadcaster:
    def test_emit_reaches_room_members_only(self):
        async def scenario():
            broadcaster = RoomBroadcaster()
            inside, outside = FakeSocket(), FakeSocket()
            await broadcaster.connect(inside, "u1", "user1")
            await broadcaster.connect(outside, "u2", "user2")
            broadcaster.join_room("room-1", "u1")
            delivered = await broadcaster.emit("room-1", DraftEvent.DRAFT_TURN, {"current_turn": 0})
            return delivered, inside, outside

        delivered, inside, outside = asyncio.run(scenario())
        assert delivered == 1
        assert inside.sent == [{"type": "draft-turn", "current_turn": 0}]
        assert outside.sent == []

    def test_member_without_socket_is_skipped(self):
        async def scenario():
            broadcaster = RoomBroadcaster()
            broadcaster.join_room("room-1", "u1")
            return await broadcaster.emit("room-1", DraftEvent.ROOM_JOINED, {})

        assert asyncio.run(scenario()) == 0

    def test_failed_socket_is_dropped(self):
        async def scenario():
            broadcaster = RoomBroadcaster()
            good, bad = FakeSocket(), FakeSocket(fail=True)
            await broadcaster.connect(good, "u1", "user1")
            await broadcaster.connect(bad, "u2", "user2")
            broadcaster.join_room("room-1", "u1")
            broadcaster.join_room("room-1", "u2")
            first = await broadcaster.emit("room-1", DraftEvent.PLAYER_PICKED, {"pick": 1})
            reached_u2 = await broadcaster.send_to_user("u2", {"type": "ping"})
            return first, reached_u2, good

        first, reached_u2, good = asyncio.run(scenario())
        assert first == 1
        assert reached_u2 is False
        assert good.sent == [{"type": "player-picked", "pick": 1}]

    def test_reconnect_closes_previous_socket(self):
        async def scenario():
            broadcaster = RoomBroadcaster()
            old, new = FakeSocket(), FakeSocket()
            await broadcaster.connect(old, "u1", "user1")
            await broadcaster.connect(new, "u1", "user1")
            await broadcaster.send_to_user("u1", {"type": "ping"})
            return old, new

        old, new = asyncio.run(scenario())
        assert old.closed_with == 4000
        assert old.sent == []
        assert new.sent == [{"type": "ping"}]

    def test_room_membership(self):
        broadcaster = RoomBroadcaster()
        broadcaster.join_room("room-1", "u2")
        broadcaster.join_room("room-1", "u1")
        assert broadcaster.members("room-1") == ["u1", "u2"]
        broadcaster.leave_room("room-1", "u1")
        assert broadcaster.members("room-1") == ["u2"]
        broadcaster.clear_room("room-1")
        assert broadcaster.members("room-1") == []
