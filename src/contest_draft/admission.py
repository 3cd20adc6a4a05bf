"""Entry admission - pay the fee, take a room seat, and close contests that fill up."""

import copy
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from src.contest_draft.config import (
    ADMISSION_LOCK_SECONDS,
    CASH_GAME_NAME_PREFIX,
    DEFAULT_MAX_ENTRIES_PER_USER,
    MAX_ENTRIES_PER_USER,
    SINGLE_ROOM_CONTEST_TYPES,
    UNFILLED_ROOM_LIMIT,
)
from src.contest_draft.db import (
    ACTIVE_ENTRY_STATUSES,
    Contest,
    ContestEntry,
    Database,
    LedgerTransaction,
    Room,
    User,
    utcnow,
)
from src.contest_draft.errors import (
    ConflictError,
    NotFoundError,
    ResourceExhaustedError,
)
from src.contest_draft.locks import LockManager
from src.contest_draft.matchmaker import RoomMatchmaker

logger = logging.getLogger(__name__)

BoardFactory = Callable[[], List[List[Any]]]


@dataclass
class AdmissionResult:
    entry_id: int
    contest_id: str
    room_id: str
    draft_position: int
    new_balance_cents: int
    room_full: bool = False
    contest_full: bool = False
    replacement_contest_id: Optional[str] = None


@dataclass
class WithdrawalResult:
    entry_id: int
    contest_id: str
    room_id: str
    refund_cents: int
    new_balance_cents: int


class EntryAdmissionController:
    """Admits users into contests under a per-(contest, user) lease.

    Each admission runs in one SERIALIZABLE transaction: contest and user
    rows are locked, every precondition is re-checked under the lock, and
    the fee debit, ledger row, room seat, entry row and contest counter
    are written together or not at all.
    """

    def __init__(
        self,
        database: Database,
        locks: LockManager,
        matchmaker: Optional[RoomMatchmaker] = None,
        board_factory: Optional[BoardFactory] = None,
        lock_seconds: float = ADMISSION_LOCK_SECONDS,
        unfilled_room_limit: int = UNFILLED_ROOM_LIMIT,
    ):
        self.database = database
        self.locks = locks
        self.matchmaker = matchmaker or RoomMatchmaker()
        self.board_factory = board_factory
        self.lock_seconds = lock_seconds
        self.unfilled_room_limit = unfilled_room_limit

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def enter(self, contest_id: str, user_id: str, username: str) -> AdmissionResult:
        """Admit a user into a contest.

        Returns:
            AdmissionResult describing the new entry and seat.

        Raises:
            ConcurrencyBusyError: The user already has an admission in
                flight for this contest (retryable).
            NotFoundError: Unknown contest or user.
            ConflictError: Contest not open, full, already entered, or per-user
                entry limit reached.
            ResourceExhaustedError: Insufficient balance or too many
                unfilled rooms.
        """
        key = f"contest:{contest_id}:user:{user_id}"
        with self.locks.hold(key, self.lock_seconds):
            with self.database.serializable() as session:
                result = self._admit(session, contest_id, user_id, username)

        logger.info(
            "Admitted %s to %s: entry %d, room %s, position %d (balance %d)",
            username,
            contest_id,
            result.entry_id,
            result.room_id,
            result.draft_position,
            result.new_balance_cents,
        )
        return result

    def withdraw(self, entry_id: int, user_id: str) -> WithdrawalResult:
        """Cancel a pending entry and refund its fee.

        Raises:
            NotFoundError: No such entry for this user.
            ConflictError: The draft already started, or the entry was
                already withdrawn.
        """
        key = f"withdraw:{entry_id}:{user_id}"
        with self.locks.hold(key, self.lock_seconds):
            with self.database.serializable() as session:
                result = self._withdraw(session, entry_id, user_id)

        logger.info(
            "Withdrew entry %d from %s, refunded %d",
            entry_id,
            result.contest_id,
            result.refund_cents,
        )
        return result

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def _admit(
        self, session: Session, contest_id: str, user_id: str, username: str
    ) -> AdmissionResult:
        contest = session.execute(
            select(Contest).where(Contest.id == contest_id).with_for_update()
        ).scalar_one_or_none()
        if contest is None:
            raise NotFoundError("Contest not found", reason="not_found")
        if contest.status != "open":
            raise ConflictError("Contest is not open for entry", reason="not_open")
        if contest.current_entries >= contest.max_entries:
            raise ConflictError("Contest is full", reason="full")

        user = session.execute(
            select(User).where(User.id == user_id).with_for_update()
        ).scalar_one_or_none()
        if user is None:
            raise NotFoundError("User not found", reason="not_found")
        if user.balance_cents < contest.entry_fee_cents:
            raise ResourceExhaustedError(
                f"Insufficient balance. You need {contest.entry_fee_cents} "
                f"but only have {user.balance_cents}",
                reason="insufficient_balance",
            )

        self._check_entry_limits(session, contest, user_id)

        assignment = self.matchmaker.assign(session, contest.id, user_id)
        entry = ContestEntry(
            contest_id=contest.id,
            room_id=assignment.room_id,
            user_id=user_id,
            username=username,
            draft_position=assignment.position,
            status="pending",
            entered_at=utcnow(),
        )
        session.add(entry)

        user.balance_cents -= contest.entry_fee_cents
        session.add(
            LedgerTransaction(
                user_id=user_id,
                type="contest_entry",
                amount_cents=-contest.entry_fee_cents,
                balance_after_cents=user.balance_cents,
                contest_id=contest.id,
                description=f"Entry fee for {contest.name}",
            )
        )

        contest.current_entries += 1
        session.flush()
        room_full = self.matchmaker.mark_if_full(session, assignment.room_id)

        replacement_id = None
        contest_full = contest.current_entries >= contest.max_entries
        if contest_full:
            contest.status = "closed"
            logger.info("Contest %s is full and closed", contest.id)
            if contest.type in SINGLE_ROOM_CONTEST_TYPES:
                replacement_id = self._provision_replacement(session, contest)

        return AdmissionResult(
            entry_id=entry.id,
            contest_id=contest.id,
            room_id=assignment.room_id,
            draft_position=assignment.position,
            new_balance_cents=user.balance_cents,
            room_full=room_full,
            contest_full=contest_full,
            replacement_contest_id=replacement_id,
        )

    def _withdraw(self, session: Session, entry_id: int, user_id: str) -> WithdrawalResult:
        entry = session.execute(
            select(ContestEntry)
            .where(ContestEntry.id == entry_id, ContestEntry.user_id == user_id)
            .with_for_update()
        ).scalar_one_or_none()
        if entry is None:
            raise NotFoundError("Entry not found", reason="not_found")
        if entry.status in ("drafting", "completed"):
            raise ConflictError("Cannot withdraw after draft has started", reason="draft_started")
        if entry.status == "cancelled":
            raise ConflictError("Entry already withdrawn", reason="already_withdrawn")

        room = session.execute(
            select(Room).where(Room.id == entry.room_id).with_for_update()
        ).scalar_one_or_none()
        if room is not None and room.status in ("drafting", "completed"):
            raise ConflictError("Cannot withdraw after draft has started", reason="draft_started")

        contest = session.execute(
            select(Contest).where(Contest.id == entry.contest_id).with_for_update()
        ).scalar_one()
        user = session.execute(
            select(User).where(User.id == user_id).with_for_update()
        ).scalar_one()

        entry.status = "cancelled"
        refund = contest.entry_fee_cents
        user.balance_cents += refund
        session.add(
            LedgerTransaction(
                user_id=user_id,
                type="contest_refund",
                amount_cents=refund,
                balance_after_cents=user.balance_cents,
                contest_id=contest.id,
                description=f"Withdrew from {contest.name}",
            )
        )

        if contest.current_entries > 0:
            contest.current_entries -= 1
        if contest.status == "closed" and contest.current_entries < contest.max_entries:
            contest.status = "open"
            logger.info("Contest %s reopened after withdrawal", contest.id)
        if room is not None and room.status == "ready":
            room.status = "waiting"

        return WithdrawalResult(
            entry_id=entry.id,
            contest_id=contest.id,
            room_id=entry.room_id,
            refund_cents=refund,
            new_balance_cents=user.balance_cents,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_entry_limits(self, session: Session, contest: Contest, user_id: str):
        existing = session.execute(
            select(func.count(ContestEntry.id)).where(
                ContestEntry.contest_id == contest.id,
                ContestEntry.user_id == user_id,
                ContestEntry.status != "cancelled",
            )
        ).scalar_one()
        limit = contest.max_entries_per_user or MAX_ENTRIES_PER_USER.get(
            contest.type, DEFAULT_MAX_ENTRIES_PER_USER
        )
        if limit == 1 and existing:
            raise ConflictError(
                "You already have an entry in this contest", reason="already_entered"
            )
        if existing >= limit:
            raise ConflictError(
                f"Maximum entries ({limit}) reached for this contest",
                reason="entry_limit_reached",
            )

        if contest.type in SINGLE_ROOM_CONTEST_TYPES:
            return
        unfilled = self.count_unfilled_rooms(session, user_id)
        if unfilled >= self.unfilled_room_limit:
            raise ResourceExhaustedError(
                f"You have {unfilled} rooms waiting to fill "
                f"(limit {self.unfilled_room_limit})",
                reason="too_many_unfilled_rooms",
            )

    @staticmethod
    def count_unfilled_rooms(session: Session, user_id: str) -> int:
        """Rooms where the user holds a pending seat and seats remain open."""
        seated = (
            select(ContestEntry.room_id)
            .where(ContestEntry.user_id == user_id, ContestEntry.status == "pending")
            .distinct()
            .subquery()
        )
        counts = (
            select(ContestEntry.room_id, func.count(ContestEntry.id).label("seats"))
            .where(
                ContestEntry.room_id.in_(select(seated.c.room_id)),
                ContestEntry.status.in_(ACTIVE_ENTRY_STATUSES),
            )
            .group_by(ContestEntry.room_id)
            .subquery()
        )
        return session.execute(
            select(func.count())
            .select_from(counts)
            .join(Room, Room.id == counts.c.room_id)
            .where(counts.c.seats < Room.capacity)
        ).scalar_one()

    def _provision_replacement(self, session: Session, contest: Contest) -> str:
        names = session.execute(
            select(Contest.name).where(
                Contest.type == contest.type,
                Contest.name.like(f"{CASH_GAME_NAME_PREFIX}%"),
            )
        ).scalars()
        numbers = [
            int(m.group(1))
            for m in (re.match(rf"{re.escape(CASH_GAME_NAME_PREFIX)}(\d+)$", n) for n in names)
            if m
        ]
        next_number = max(numbers, default=0) + 1

        if self.board_factory is not None:
            board = self.board_factory()
        else:
            board = copy.deepcopy(contest.player_board)
        replacement = Contest(
            type=contest.type,
            name=f"{CASH_GAME_NAME_PREFIX}{next_number}",
            status="open",
            entry_fee_cents=contest.entry_fee_cents,
            prize_pool_cents=contest.prize_pool_cents,
            max_entries=contest.max_entries,
            current_entries=0,
            max_entries_per_user=contest.max_entries_per_user,
            player_board=board,
        )
        session.add(replacement)
        session.flush()
        logger.info("Provisioned replacement contest %s (%s)", replacement.id, replacement.name)
        return replacement.id
