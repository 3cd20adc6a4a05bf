"""Room matchmaking - place a new entry into the fullest open room of its contest."""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from src.contest_draft.config import MATCHMAKER_MAX_ATTEMPTS, ROOM_CAPACITY
from src.contest_draft.db import (
    ACTIVE_ENTRY_STATUSES,
    CLOSED_ROOM_STATUSES,
    Contest,
    ContestEntry,
    Room,
)

logger = logging.getLogger(__name__)


@dataclass
class RoomCandidate:
    room_id: str
    number: int
    active_count: int


@dataclass
class RoomAssignment:
    room_id: str
    position: int
    created: bool = False


def room_id_for(contest_id: str, number: int) -> str:
    return f"{contest_id}_room_{number}"


def lowest_free_position(used: Iterable[Optional[int]], capacity: int) -> Optional[int]:
    taken = {p for p in used if p is not None}
    for position in range(capacity):
        if position not in taken:
            return position
    return None


def repair_room_positions(session: Session, room_id: str, capacity: int) -> int:
    """Give active entries with no draft position the lowest unused one.

    Entries are visited in the order they were created.

    Returns:
        Number of entries repaired.
    """
    entries = session.execute(
        select(ContestEntry)
        .where(
            ContestEntry.room_id == room_id,
            ContestEntry.status.in_(ACTIVE_ENTRY_STATUSES),
        )
        .order_by(ContestEntry.entered_at, ContestEntry.id)
    ).scalars().all()
    used = [e.draft_position for e in entries]
    repaired = 0
    for entry in entries:
        if entry.draft_position is not None:
            continue
        position = lowest_free_position(used, capacity)
        if position is None:
            logger.warning("No free position for entry %d in room %s", entry.id, room_id)
            continue
        entry.draft_position = position
        used.append(position)
        repaired += 1
    if repaired:
        session.flush()
        logger.warning("Repaired %d missing draft positions in room %s", repaired, room_id)
    return repaired


class RoomMatchmaker:
    """Assigns entries to rooms inside the caller's admission transaction.

    Two phases per attempt: ``scan_candidates`` ranks rooms without locks
    (fullest first, then lowest room number), and ``lock_and_verify``
    row-locks one candidate and re-checks it. A candidate that filled up
    between the phases is skipped for the next one; after
    ``max_attempts`` scans with no success a new room is allocated.
    """

    def __init__(
        self, capacity: int = ROOM_CAPACITY, max_attempts: int = MATCHMAKER_MAX_ATTEMPTS
    ):
        self.capacity = capacity
        self.max_attempts = max_attempts

    def assign(self, session: Session, contest_id: str, user_id: str) -> RoomAssignment:
        """Find (or create) a room seat for the user.

        Args:
            session: Open transaction of the admission in progress.
            contest_id: Contest being entered.
            user_id: User being placed; never put twice in one room.

        Returns:
            RoomAssignment with the room id and draft position.
        """
        for attempt in range(1, self.max_attempts + 1):
            candidates = self.scan_candidates(session, contest_id, user_id)
            if not candidates:
                break
            for candidate in candidates:
                position = self.lock_and_verify(session, candidate.room_id, user_id)
                if position is not None:
                    logger.info(
                        "Assigned %s to %s position %d (%d already seated)",
                        user_id,
                        candidate.room_id,
                        position,
                        candidate.active_count,
                    )
                    return RoomAssignment(candidate.room_id, position)
            logger.info(
                "All %d candidate rooms for %s changed under lock (attempt %d/%d)",
                len(candidates),
                contest_id,
                attempt,
                self.max_attempts,
            )

        room = self.allocate_room(session, contest_id)
        return RoomAssignment(room.id, 0, created=True)

    def scan_candidates(
        self, session: Session, contest_id: str, user_id: str
    ) -> List[RoomCandidate]:
        rooms = session.execute(
            select(Room)
            .where(Room.contest_id == contest_id, Room.status.not_in(CLOSED_ROOM_STATUSES))
            .order_by(Room.number)
        ).scalars().all()
        if not rooms:
            return []

        counts = self._active_counts(session, contest_id)
        user_rooms = set(
            session.execute(
                select(ContestEntry.room_id).where(
                    ContestEntry.contest_id == contest_id,
                    ContestEntry.user_id == user_id,
                    ContestEntry.status.in_(ACTIVE_ENTRY_STATUSES),
                )
            ).scalars()
        )
        candidates = [
            RoomCandidate(room.id, room.number, counts.get(room.id, 0))
            for room in rooms
            if counts.get(room.id, 0) < room.capacity and room.id not in user_rooms
        ]
        candidates.sort(key=lambda c: (-c.active_count, c.number))
        return candidates

    def lock_and_verify(self, session: Session, room_id: str, user_id: str) -> Optional[int]:
        """Row-lock the room and its seats; return a free position or None."""
        room = session.execute(
            select(Room).where(Room.id == room_id).with_for_update()
        ).scalar_one_or_none()
        if room is None or room.status in CLOSED_ROOM_STATUSES:
            return None
        entries = session.execute(
            select(ContestEntry)
            .where(
                ContestEntry.room_id == room_id,
                ContestEntry.status.in_(ACTIVE_ENTRY_STATUSES),
            )
            .with_for_update()
        ).scalars().all()
        if len(entries) >= room.capacity:
            return None
        if any(e.user_id == user_id for e in entries):
            return None
        return lowest_free_position([e.draft_position for e in entries], room.capacity)

    def allocate_room(self, session: Session, contest_id: str) -> Room:
        highest = session.execute(
            select(func.max(Room.number)).where(Room.contest_id == contest_id)
        ).scalar()
        number = (highest or 0) + 1
        room = Room(
            id=room_id_for(contest_id, number),
            contest_id=contest_id,
            number=number,
            capacity=self.capacity,
            status="waiting",
        )
        session.add(room)
        session.flush()
        logger.info("Created room %s", room.id)
        return room

    def mark_if_full(self, session: Session, room_id: str) -> bool:
        """Move a waiting room to ready once every seat is taken."""
        room = session.get(Room, room_id)
        if room is None:
            return False
        count = session.execute(
            select(func.count(ContestEntry.id)).where(
                ContestEntry.room_id == room_id,
                ContestEntry.status.in_(ACTIVE_ENTRY_STATUSES),
            )
        ).scalar_one()
        if count >= room.capacity and room.status == "waiting":
            room.status = "ready"
            logger.info("Room %s is full (%d/%d)", room_id, count, room.capacity)
        return count >= room.capacity

    def room_status(self, session: Session, room_id: str) -> Optional[Dict]:
        """Snapshot of a room and its seats, repairing missing positions first."""
        room = session.get(Room, room_id)
        if room is None:
            return None
        repair_room_positions(session, room_id, room.capacity)
        contest = session.get(Contest, room.contest_id)
        entries = session.execute(
            select(ContestEntry)
            .where(
                ContestEntry.room_id == room_id,
                ContestEntry.status != "cancelled",
            )
            .order_by(ContestEntry.draft_position, ContestEntry.id)
        ).scalars().all()
        return {
            "room_id": room.id,
            "contest_id": room.contest_id,
            "contest_type": contest.type if contest else None,
            "status": room.status,
            "capacity": room.capacity,
            "current_players": len(entries),
            "entries": [
                {
                    "entry_id": e.id,
                    "user_id": e.user_id,
                    "username": e.username,
                    "draft_position": e.draft_position,
                    "status": e.status,
                }
                for e in entries
            ],
        }

    @staticmethod
    def _active_counts(session: Session, contest_id: str) -> Dict[str, int]:
        rows = session.execute(
            select(ContestEntry.room_id, func.count(ContestEntry.id))
            .where(
                ContestEntry.contest_id == contest_id,
                ContestEntry.status.in_(ACTIVE_ENTRY_STATUSES),
            )
            .group_by(ContestEntry.room_id)
        ).all()
        return {room_id: count for room_id, count in rows}
