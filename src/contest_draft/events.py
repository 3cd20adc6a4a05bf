"""Room event fan-out over WebSocket connections."""

import logging
from collections import defaultdict
from typing import Any, Dict, List, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class DraftEvent:
    """Event type names sent to room subscribers."""

    ROOM_JOINED = "room-joined"
    DRAFT_COUNTDOWN = "draft-countdown"
    DRAFT_STARTING = "draft-starting"
    DRAFT_TURN = "draft-turn"
    PLAYER_PICKED = "player-picked"
    TURN_SKIPPED = "turn-skipped"
    DRAFT_COMPLETE = "draft-complete"


class Connection:
    def __init__(self, ws: WebSocket, user_id: str, username: str):
        self.ws = ws
        self.user_id = user_id
        self.username = username


class RoomBroadcaster:
    """Tracks one socket per user and which users follow which rooms."""

    def __init__(self):
        self._by_user: Dict[str, Connection] = {}
        self._rooms: Dict[str, Set[str]] = defaultdict(set)

    async def connect(self, ws: WebSocket, user_id: str, username: str) -> None:
        """Register a socket, replacing (and closing) any previous one."""
        old = self._by_user.get(user_id)
        if old is not None:
            try:
                await old.ws.close(code=4000)
            except Exception as e:
                logger.debug("Closing replaced socket for %s failed: %s", user_id, e)
        self._by_user[user_id] = Connection(ws, user_id, username)

    def disconnect(self, user_id: str) -> None:
        self._by_user.pop(user_id, None)

    def join_room(self, room_id: str, user_id: str) -> None:
        self._rooms[room_id].add(user_id)

    def leave_room(self, room_id: str, user_id: str) -> None:
        members = self._rooms.get(room_id)
        if members is None:
            return
        members.discard(user_id)
        if not members:
            del self._rooms[room_id]

    def clear_room(self, room_id: str) -> None:
        self._rooms.pop(room_id, None)

    def members(self, room_id: str) -> List[str]:
        return sorted(self._rooms.get(room_id, ()))

    async def send_to_user(self, user_id: str, payload: Dict[str, Any]) -> bool:
        conn = self._by_user.get(user_id)
        if not conn:
            return False
        try:
            await conn.ws.send_json(payload)
            return True
        except Exception as e:
            logger.warning("send_to_user %s: %s", user_id, e)
            return False

    async def emit(self, room_id: str, event: str, data: Dict[str, Any]) -> int:
        """Send ``{"type": event, **data}`` to every connected room member.

        Returns:
            Number of sockets the event reached.
        """
        payload = {"type": event, **data}
        delivered = 0
        dead = []
        for user_id in self.members(room_id):
            conn = self._by_user.get(user_id)
            if conn is None:
                continue
            try:
                await conn.ws.send_json(payload)
                delivered += 1
            except Exception as e:
                logger.warning("Dropping socket for %s after %s failed: %s", user_id, event, e)
                dead.append(user_id)
        for user_id in dead:
            self.disconnect(user_id)
        logger.debug("%s -> room %s (%d sockets)", event, room_id, delivered)
        return delivered
