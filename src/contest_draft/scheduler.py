"""Draft scheduler - launches rooms and drives the pick / auto-pick cycle to completion."""

import asyncio
import dataclasses
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func, select

from src.contest_draft.auto_pick import AutoPickSelector
from src.contest_draft.config import (
    BONUS_CONTEST_TYPES,
    COMPLETION_BONUS_TICKETS,
    DraftTiming,
)
from src.contest_draft.db import (
    ACTIVE_ENTRY_STATUSES,
    Contest,
    ContestEntry,
    Database,
    Lineup,
    Room,
    TicketTransaction,
    User,
    utcnow,
)
from src.contest_draft.errors import (
    ConcurrencyBusyError,
    ConflictError,
    CorruptedStateError,
    DraftError,
    NotFoundError,
    ValidationError,
)
from src.contest_draft.events import DraftEvent, RoomBroadcaster
from src.contest_draft.locks import LockManager
from src.contest_draft.matchmaker import repair_room_positions
from src.contest_draft.models import (
    DraftInstance,
    Pick,
    RoomEntry,
    Team,
    TurnMetadata,
    now_iso,
)
from src.contest_draft.registry import RoomRegistry, RoomRuntime
from src.contest_draft.roster_rules import RosterRules, stack_bonus
from src.contest_draft.state_store import DraftStateStore
from src.contest_draft.timers import TurnTimers

logger = logging.getLogger(__name__)

BoardFactory = Callable[[], List[List[Any]]]


def pick_lock_key(room_id: str, user_id: str) -> str:
    return f"pick:{room_id}:{user_id}"


class DraftScheduler:
    """Per-room draft state machine.

    waiting -> ready -> countdown -> picking -> completed. Everything that
    changes a room's draft after launch (first turn, manual picks, timer
    deadlines, stall recovery) runs as a job on that room's RoomRuntime, so
    a room never has two writers at once.
    """

    def __init__(
        self,
        database: Database,
        store: DraftStateStore,
        broadcaster: RoomBroadcaster,
        registry: RoomRegistry,
        locks: LockManager,
        timing: Optional[DraftTiming] = None,
        board_factory: Optional[BoardFactory] = None,
        selector: Optional[AutoPickSelector] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.database = database
        self.store = store
        self.broadcaster = broadcaster
        self.registry = registry
        self.locks = locks
        self.timing = timing or DraftTiming()
        self.board_factory = board_factory
        self.rules = RosterRules()
        self.selector = selector or AutoPickSelector(self.rules)
        self.clock = clock
        self.timers = TurnTimers(registry, self.timing.grace_seconds, self.handle_deadline)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def launch(self, room_id: str) -> bool:
        """Start a full room's draft, at most once.

        Builds and persists the DraftInstance, moves entries to drafting,
        runs both countdowns and starts the first turn.

        Returns:
            True if this call launched the draft.
        """
        if not self.registry.claim_launch(room_id):
            logger.info("Room %s already launching", room_id)
            return False
        try:
            draft = self._begin_draft(room_id)
        except Exception:
            self.registry.release_launch(room_id)
            raise
        if draft is None:
            self.registry.release_launch(room_id)
            return False

        self.store.save(draft)
        runtime = self.registry.ensure(room_id)
        logger.info(
            "Launched draft for room %s (%d teams, %d picks)",
            room_id,
            len(draft.teams),
            draft.total_picks,
        )
        runtime.counting_down = True
        try:
            try:
                await self._run_countdowns(draft)
            finally:
                runtime.counting_down = False
            if not runtime.closed:
                await runtime.submit(lambda: self._start_turn_job(room_id))
        except Exception:
            logger.exception("Launch of room %s failed", room_id)
            await self._force_complete(room_id, "launch_failed")
        return True

    async def start_turn(self, room_id: str):
        """(Re)start the current turn of a drafting room."""
        runtime = self._runtime_for(room_id)
        await runtime.submit(lambda: self._start_turn_job(room_id))

    async def handle_pick(
        self, room_id: str, user_id: str, row: int, col: int, roster_slot: str
    ) -> Pick:
        """Apply a manual pick for the user on the clock.

        Args:
            room_id: Drafting room.
            user_id: User submitting the pick.
            row: Board row of the chosen player.
            col: Board column of the chosen player.
            roster_slot: Slot to place the player in.

        Returns:
            The recorded Pick.

        Raises:
            ConcurrencyBusyError: If the user already has a pick in flight.
            ValidationError, ConflictError, ResourceExhaustedError: If the
                pick is rejected. The turn stays live.
            NotFoundError: If the room has no draft.
        """
        runtime = self._runtime_for(room_id)
        key = pick_lock_key(room_id, user_id)
        token = self.locks.acquire(key, self.timing.pick_lock_seconds)
        if token is None:
            raise ConcurrencyBusyError("Pick already in progress", reason="pick_in_flight")
        try:
            return await runtime.submit(
                lambda: self._manual_pick_job(room_id, user_id, row, col, roster_slot)
            )
        finally:
            self.locks.release(key, token)

    async def handle_auto_pick(self, room_id: str, user_id: str) -> Pick:
        """Auto-pick immediately for a user who is on the clock."""
        runtime = self._runtime_for(room_id)
        return await runtime.submit(lambda: self._auto_pick_request_job(room_id, user_id))

    async def handle_deadline(self, room_id: str, user_id: str, turn: int) -> Optional[Pick]:
        """Timer callback: auto-pick for ``turn`` unless it has moved on."""
        runtime = self.registry.get(room_id)
        if runtime is None or runtime.closed:
            logger.info("Deadline for room %s turn %d after room closed", room_id, turn)
            return None
        return await runtime.submit(lambda: self._deadline_job(room_id, user_id, turn))

    def set_pre_selection(self, room_id: str, user_id: str, row: int, col: int):
        """Remember a cell to auto-pick for the user if their timer runs out."""
        runtime = self._runtime_for(room_id)
        runtime.pre_selections[user_id] = (row, col)
        logger.debug("Pre-selection for %s in %s: (%d, %d)", user_id, room_id, row, col)

    def clear_pre_selection(self, room_id: str, user_id: str):
        runtime = self.registry.get(room_id)
        if runtime is not None:
            runtime.pre_selections.pop(user_id, None)

    async def recover_room(self, room_id: str) -> str:
        """Bring a drafting room without a timer back into motion.

        Returns:
            One of ``counting_down``, ``timer_active``, ``forced_completion``,
            ``completed``, ``auto_picked``, ``timer_resumed``, ``turn_restarted``.
        """
        runtime = self.registry.ensure(room_id)
        return await runtime.submit(lambda: self._recover_job(room_id))

    async def finalize(self, room_id: str) -> bool:
        """Complete a room's draft. Safe to call more than once.

        Returns:
            True if any entries were completed by this call.
        """
        draft = None
        try:
            draft = self.store.load(room_id)
        except CorruptedStateError:
            logger.exception("Finalizing room %s with unreadable draft state", room_id)

        if draft is not None and draft.status != "completed":
            draft.status = "completed"
            draft.completed_at = now_iso()
            self.store.save(draft, ttl_seconds=self.timing.completed_state_ttl_seconds)
        self.store.clear_turn(room_id)
        self.timers.cancel(room_id)

        completed = self._persist_results(room_id, draft)
        if completed:
            await self.broadcaster.emit(
                room_id,
                DraftEvent.DRAFT_COMPLETE,
                {
                    "room_id": room_id,
                    "contest_id": draft.contest_id if draft else None,
                    "teams": [dataclasses.asdict(t) for t in draft.teams] if draft else [],
                    "total_picks": len(draft.picks) if draft else 0,
                },
            )
            logger.info("Draft complete for room %s (%d entries)", room_id, completed)
        self.registry.discard(room_id)
        self.broadcaster.clear_room(room_id)
        return completed > 0

    def get_draft(self, room_id: str) -> Optional[DraftInstance]:
        return self.store.load(room_id)

    def drafting_room_ids(self) -> List[str]:
        with self.database.session() as session:
            rows = session.execute(
                select(ContestEntry.room_id)
                .where(ContestEntry.status == "drafting")
                .distinct()
            ).scalars()
            return sorted(rows)

    def room_entries(self, room_id: str) -> List[RoomEntry]:
        """Seats of a room from the entry table, ordered by draft position."""
        with self.database.session() as session:
            entries = session.execute(
                select(ContestEntry)
                .where(
                    ContestEntry.room_id == room_id,
                    ContestEntry.status != "cancelled",
                    ContestEntry.draft_position.is_not(None),
                )
                .order_by(ContestEntry.draft_position)
            ).scalars()
            return [
                RoomEntry(e.id, e.user_id, e.username, e.draft_position) for e in entries
            ]

    # ------------------------------------------------------------------
    # Launch
    # ------------------------------------------------------------------

    def _begin_draft(self, room_id: str) -> Optional[DraftInstance]:
        with self.database.serializable() as session:
            room = session.execute(
                select(Room).where(Room.id == room_id).with_for_update()
            ).scalar_one_or_none()
            if room is None:
                raise NotFoundError(f"Room {room_id} not found")
            if room.status != "ready":
                logger.info("Room %s is %s, not ready; skipping launch", room_id, room.status)
                return None

            repair_room_positions(session, room_id, room.capacity)
            entries = session.execute(
                select(ContestEntry)
                .where(
                    ContestEntry.room_id == room_id,
                    ContestEntry.status.in_(ACTIVE_ENTRY_STATUSES),
                )
                .order_by(ContestEntry.draft_position)
                .with_for_update()
            ).scalars().all()
            if len(entries) != room.capacity:
                logger.info(
                    "Room %s has %d/%d entries; skipping launch",
                    room_id,
                    len(entries),
                    room.capacity,
                )
                return None

            contest = session.get(Contest, room.contest_id)
            board = contest.player_board
            if not board and self.board_factory is not None:
                board = self.board_factory()
            if not board:
                raise ValidationError(
                    f"Contest {contest.id} has no player board", reason="no_board"
                )

            seats = [
                RoomEntry(e.id, e.user_id, e.username, e.draft_position) for e in entries
            ]
            draft = DraftInstance.create_new(room_id, contest.id, contest.type, seats, board)
            for entry in entries:
                entry.status = "drafting"
            room.status = "drafting"
        return draft

    async def _run_countdowns(self, draft: DraftInstance):
        timing = self.timing
        room_id = draft.room_id
        await self.broadcaster.emit(
            room_id,
            DraftEvent.DRAFT_COUNTDOWN,
            {
                "room_id": room_id,
                "contest_id": draft.contest_id,
                "seconds": timing.pre_launch_countdown_seconds,
                "message": f"Draft starting in {timing.pre_launch_countdown_seconds} seconds!",
            },
        )
        await asyncio.sleep(timing.pre_launch_countdown_seconds * timing.countdown_tick_seconds)

        await self.broadcaster.emit(room_id, DraftEvent.DRAFT_STARTING, self._state_payload(draft))
        for remaining in range(timing.first_pick_countdown_seconds, 0, -1):
            await self.broadcaster.emit(
                room_id,
                DraftEvent.DRAFT_COUNTDOWN,
                {
                    "room_id": room_id,
                    "seconds": remaining,
                    "message": f"First pick in {remaining}...",
                },
            )
            await asyncio.sleep(timing.countdown_tick_seconds)

    # ------------------------------------------------------------------
    # Room jobs (run on the room's queue)
    # ------------------------------------------------------------------

    async def _start_turn_job(self, room_id: str):
        draft = await self._load_for_job(room_id)
        if draft is None or draft.status == "completed":
            return
        await self._advance(draft)

    async def _manual_pick_job(
        self, room_id: str, user_id: str, row: int, col: int, roster_slot: str
    ) -> Pick:
        draft = self._require_active_draft(room_id)
        meta = self.store.load_turn(room_id)
        if meta is None or meta.turn != draft.current_turn:
            raise ConflictError("Draft turn has not started", reason="turn_not_started")

        pick = self._apply_pick(draft, user_id, row, col, roster_slot)
        self.timers.cancel(room_id)
        self.clear_pre_selection(room_id, user_id)
        await self._announce_pick(draft, pick)
        await self._advance(draft)
        return pick

    async def _auto_pick_request_job(self, room_id: str, user_id: str) -> Pick:
        draft = self._require_active_draft(room_id)
        team = draft.current_team()
        if team is None or team.user_id != user_id:
            raise ConflictError("Not your turn", reason="not_your_turn")
        return await self._auto_pick_current(draft)

    async def _deadline_job(self, room_id: str, user_id: str, turn: int) -> Optional[Pick]:
        try:
            draft = await self._load_for_job(room_id)
            if draft is None or draft.status == "completed":
                return None
            if draft.current_turn != turn:
                logger.info(
                    "Auto-pick for turn %d in %s suppressed; draft is on turn %d",
                    turn,
                    room_id,
                    draft.current_turn,
                )
                return None
            team = draft.current_team()
            if team is None or team.user_id != user_id:
                logger.warning("Deadline for %s in %s does not match the clock", user_id, room_id)
                return None
            if self.locks.is_held(pick_lock_key(room_id, user_id)):
                logger.info("Pick in flight for %s in %s; deferring auto-pick", user_id, room_id)
                self.timers.arm(room_id, user_id, turn, 0)
                return None
            return await self._auto_pick_current(draft)
        except Exception:
            logger.exception("Auto-pick for room %s turn %d failed", room_id, turn)
            await self._force_complete(room_id, "autopick_failed")
            return None

    async def _recover_job(self, room_id: str) -> str:
        if self.registry.is_counting_down(room_id):
            return "counting_down"
        if self.registry.has_timer(room_id):
            return "timer_active"
        draft = await self._load_for_job(room_id)
        if draft is None:
            return "forced_completion"
        if draft.status == "completed" or draft.is_finished:
            await self.finalize(room_id)
            return "completed"
        team = draft.current_team()
        if team is None:
            await self._force_complete(room_id, "invalid_team")
            return "forced_completion"

        meta = self.store.load_turn(room_id)
        if meta is None or meta.turn != draft.current_turn:
            logger.warning("Room %s turn %d has no timer record; restarting turn", room_id, draft.current_turn)
            await self._advance(draft)
            return "turn_restarted"

        elapsed = self.clock() - meta.started_at
        if elapsed > meta.time_limit + self.timing.stall_buffer_seconds:
            logger.warning(
                "Room %s stalled %.1fs on turn %d; auto-picking for %s",
                room_id,
                elapsed,
                draft.current_turn,
                team.username,
            )
            await self._auto_pick_current(draft)
            return "auto_picked"

        remaining = max(0.0, meta.time_limit - elapsed)
        self.timers.arm(room_id, team.user_id, draft.current_turn, remaining)
        logger.info("Resumed timer for room %s turn %d (%.1fs left)", room_id, draft.current_turn, remaining)
        return "timer_resumed"

    # ------------------------------------------------------------------
    # Turn cycle
    # ------------------------------------------------------------------

    async def _advance(self, draft: DraftInstance):
        try:
            await self._start_turn(draft)
        except Exception:
            logger.exception("Advancing room %s failed", draft.room_id)
            await self._force_complete(draft.room_id, "advance_failed")

    async def _start_turn(self, draft: DraftInstance):
        room_id = draft.room_id
        if draft.is_finished:
            await self.finalize(room_id)
            return
        team_index = draft.current_team_index()
        if team_index is None or not draft.teams[team_index].user_id:
            logger.error("Room %s turn %d has no valid team", room_id, draft.current_turn)
            await self._force_complete(room_id, "invalid_team")
            return

        team = draft.teams[team_index]
        if team.budget <= 0:
            time_limit = self.timing.quick_skip_seconds
        else:
            time_limit = self.timing.turn_seconds
        self.store.save_turn(
            TurnMetadata(
                room_id=room_id,
                turn=draft.current_turn,
                user_id=team.user_id,
                time_limit=time_limit,
                started_at=self.clock(),
            )
        )
        await self.broadcaster.emit(
            room_id,
            DraftEvent.DRAFT_TURN,
            {
                "room_id": room_id,
                "current_turn": draft.current_turn,
                "current_pick": draft.current_turn + 1,
                "current_round": draft.current_round,
                "total_picks": draft.total_picks,
                "team_index": team_index,
                "user_id": team.user_id,
                "username": team.username,
                "time_limit": time_limit,
                "remaining_budget": team.budget,
            },
        )
        self.timers.arm(room_id, team.user_id, draft.current_turn, time_limit)
        logger.info(
            "Turn %d/%d in %s: %s ($%d left, %.0fs)",
            draft.current_turn + 1,
            draft.total_picks,
            room_id,
            team.username,
            team.budget,
            time_limit,
        )

    def _apply_pick(
        self,
        draft: DraftInstance,
        user_id: str,
        row: int,
        col: int,
        roster_slot: str,
        is_auto_pick: bool = False,
        was_pre_selected: bool = False,
    ) -> Pick:
        """Validate and record a pick, then persist the draft.

        Nothing is mutated unless every check passes.
        """
        team_index = draft.current_team_index()
        if team_index is None:
            raise ConflictError("Draft has no turn in progress", reason="draft_finished")
        team = draft.teams[team_index]
        if team.user_id != user_id:
            raise ConflictError("Not your turn", reason="not_your_turn")

        player = draft.player_at(row, col)
        error = self.rules.pick_error(team, player, roster_slot)
        if error is not None:
            logger.warning("Rejected pick by %s in %s: %s", team.username, draft.room_id, error)
            raise error

        bonus = stack_bonus(team, player) if draft.contest_type in BONUS_CONTEST_TYPES else 0
        player.drafted = True
        player.drafted_by = team_index
        team.add_player(player.snapshot(), roster_slot)
        team.bonus += bonus

        pick = Pick.create(
            team_index=team_index,
            pick_number=draft.current_turn + 1,
            player=player.snapshot(),
            roster_slot=roster_slot,
            row=row,
            col=col,
            is_auto_pick=is_auto_pick,
            was_pre_selected=was_pre_selected,
        )
        draft.picks.append(pick)
        draft.current_turn += 1
        self.store.save(draft)

        logger.info(
            "Pick %d in %s: %s selects %s (%s, $%d) -> %s%s",
            pick.pick_number,
            draft.room_id,
            team.username,
            player.name,
            player.original_position,
            player.price,
            roster_slot,
            " [auto]" if is_auto_pick else "",
        )
        return pick

    def _skip_turn(self, draft: DraftInstance, reason: str) -> Pick:
        team_index = draft.current_team_index()
        pick = Pick.skip(team_index, draft.current_turn + 1, reason)
        draft.picks.append(pick)
        draft.current_turn += 1
        self.store.save(draft)
        logger.info(
            "Pick %d in %s skipped for %s (%s)",
            pick.pick_number,
            draft.room_id,
            draft.teams[team_index].username,
            reason,
        )
        return pick

    async def _auto_pick_current(self, draft: DraftInstance) -> Pick:
        room_id = draft.room_id
        team = draft.current_team()
        runtime = self.registry.get(room_id)

        selection = None
        pre_selected = runtime.pre_selections.pop(team.user_id, None) if runtime else None
        if pre_selected is not None:
            selection = self.selector.resolve_pre_selection(draft.board, team, *pre_selected)
            if selection is None:
                logger.info("Pre-selection %s for %s is no longer legal", pre_selected, team.username)
        if selection is None:
            selection = self.selector.select_pick(draft.board, team)

        if selection is None:
            if not team.empty_slots():
                reason = "roster_full"
            elif team.budget <= 0:
                reason = "insufficient_budget"
            else:
                reason = "no_valid_pick"
            pick = self._skip_turn(draft, reason)
            await self._announce_skip(draft, pick)
        else:
            try:
                pick = self._apply_pick(
                    draft,
                    team.user_id,
                    selection.row,
                    selection.col,
                    selection.roster_slot,
                    is_auto_pick=True,
                    was_pre_selected=selection.was_pre_selected,
                )
            except DraftError as e:
                logger.error("Auto-pick selection for %s rejected: %s", team.username, e)
                pick = self._skip_turn(draft, "autopick_error")
                await self._announce_skip(draft, pick)
            else:
                await self._announce_pick(draft, pick)

        self.timers.cancel(room_id)
        await self._advance(draft)
        return pick

    async def _announce_pick(self, draft: DraftInstance, pick: Pick):
        team = draft.teams[pick.team_index]
        await self.broadcaster.emit(
            draft.room_id,
            DraftEvent.PLAYER_PICKED,
            {
                "room_id": draft.room_id,
                "pick": dataclasses.asdict(pick),
                "team_index": pick.team_index,
                "user_id": team.user_id,
                "username": team.username,
                "remaining_budget": team.budget,
                "bonus": team.bonus,
                "current_turn": draft.current_turn,
            },
        )

    async def _announce_skip(self, draft: DraftInstance, pick: Pick):
        team = draft.teams[pick.team_index]
        await self.broadcaster.emit(
            draft.room_id,
            DraftEvent.TURN_SKIPPED,
            {
                "room_id": draft.room_id,
                "pick_number": pick.pick_number,
                "team_index": pick.team_index,
                "user_id": team.user_id,
                "username": team.username,
                "reason": pick.reason,
                "current_turn": draft.current_turn,
            },
        )

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def _force_complete(self, room_id: str, reason: str):
        logger.error("Forcing completion of room %s (%s)", room_id, reason)
        try:
            await self.finalize(room_id)
        except Exception:
            logger.exception("Forced completion of room %s failed", room_id)
            self.registry.discard(room_id)

    def _persist_results(self, room_id: str, draft: Optional[DraftInstance]) -> int:
        teams = {t.entry_id: t for t in draft.teams} if draft else {}
        with self.database.serializable() as session:
            room = session.execute(
                select(Room).where(Room.id == room_id).with_for_update()
            ).scalar_one_or_none()
            entries = session.execute(
                select(ContestEntry)
                .where(ContestEntry.room_id == room_id, ContestEntry.status == "drafting")
                .with_for_update()
            ).scalars().all()

            for entry in entries:
                team = teams.get(entry.id)
                entry.status = "completed"
                entry.completed_at = utcnow()
                entry.roster = clean_roster(team)
                entry.total_spent = team.spent() if team else 0
                if team is None:
                    logger.warning("Entry %d in %s has no team; no lineup or bonus", entry.id, room_id)
                    continue
                if team.players():
                    self._save_lineup(session, entry, draft.contest_type)
                self._award_completion_bonus(session, entry)

            if room is not None:
                room.status = "completed"
                self._resync_entry_count(session, room.contest_id)
            return len(entries)

    @staticmethod
    def _save_lineup(session, entry: ContestEntry, contest_type: str):
        lineup = session.execute(
            select(Lineup).where(Lineup.entry_id == entry.id)
        ).scalar_one_or_none()
        if lineup is None:
            session.add(
                Lineup(
                    user_id=entry.user_id,
                    entry_id=entry.id,
                    contest_id=entry.contest_id,
                    contest_type=contest_type,
                    roster=entry.roster,
                )
            )
        else:
            lineup.roster = entry.roster
            lineup.updated_at = utcnow()

    @staticmethod
    def _award_completion_bonus(session, entry: ContestEntry) -> bool:
        already = session.execute(
            select(TicketTransaction.id).where(TicketTransaction.reference_entry_id == entry.id)
        ).first()
        if already is not None:
            logger.info("Completion bonus for entry %d already awarded", entry.id)
            return False
        user = session.execute(
            select(User).where(User.id == entry.user_id).with_for_update()
        ).scalar_one_or_none()
        if user is None:
            logger.warning("Entry %d belongs to unknown user %s", entry.id, entry.user_id)
            return False
        user.tickets += COMPLETION_BONUS_TICKETS
        session.add(
            TicketTransaction(
                user_id=user.id,
                type="draft_completion",
                amount=COMPLETION_BONUS_TICKETS,
                balance_after=user.tickets,
                reference_entry_id=entry.id,
                reason="Completed draft",
            )
        )
        return True

    @staticmethod
    def _resync_entry_count(session, contest_id: str):
        contest = session.execute(
            select(Contest).where(Contest.id == contest_id).with_for_update()
        ).scalar_one_or_none()
        if contest is None:
            return
        actual = session.execute(
            select(func.count(ContestEntry.id)).where(
                ContestEntry.contest_id == contest_id,
                ContestEntry.status != "cancelled",
            )
        ).scalar_one()
        if contest.current_entries != actual:
            logger.warning(
                "Contest %s entry count %d resynced to %d",
                contest_id,
                contest.current_entries,
                actual,
            )
            contest.current_entries = actual

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _runtime_for(self, room_id: str) -> RoomRuntime:
        runtime = self.registry.get(room_id)
        if runtime is not None and not runtime.closed:
            return runtime
        if room_id in self.drafting_room_ids():
            return self.registry.ensure(room_id)
        raise NotFoundError(f"No active draft for room {room_id}", reason="draft_not_found")

    def _require_active_draft(self, room_id: str) -> DraftInstance:
        draft = self.store.load(room_id)
        if draft is None:
            raise NotFoundError(f"No draft state for room {room_id}", reason="draft_not_found")
        if draft.status == "completed":
            raise ConflictError("Draft already completed", reason="draft_completed")
        return draft

    async def _load_for_job(self, room_id: str) -> Optional[DraftInstance]:
        try:
            draft = self.store.load(room_id)
        except CorruptedStateError:
            logger.exception("Draft state for room %s is unrecoverable", room_id)
            await self._force_complete(room_id, "corrupted_state")
            return None
        if draft is None:
            await self._force_complete(room_id, "missing_state")
        return draft

    @staticmethod
    def _state_payload(draft: DraftInstance) -> Dict[str, Any]:
        state = dataclasses.asdict(draft)
        state.pop("entries", None)
        state["total_picks"] = draft.total_picks
        return state


def clean_roster(team: Optional[Team]) -> Dict[str, Optional[Dict[str, Any]]]:
    """Final roster as stored on the entry: slot -> essentials or None."""
    if team is None:
        return {}
    roster = {}
    for slot, player in team.roster.items():
        if player is None:
            roster[slot] = None
            continue
        roster[slot] = {
            "name": player.name,
            "team": player.team,
            "position": player.original_position,
            "price": player.price,
        }
    return roster
