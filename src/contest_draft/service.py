"""Contest draft service - the surface the transport layer talks to."""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Set

from src.contest_draft.admission import (
    AdmissionResult,
    EntryAdmissionController,
    WithdrawalResult,
)
from src.contest_draft.config import DraftTiming
from src.contest_draft.db import Database
from src.contest_draft.events import DraftEvent, RoomBroadcaster
from src.contest_draft.locks import LockManager
from src.contest_draft.matchmaker import RoomMatchmaker
from src.contest_draft.models import Pick
from src.contest_draft.registry import RoomRegistry
from src.contest_draft.scheduler import DraftScheduler
from src.contest_draft.state_store import DraftStateStore
from src.contest_draft.timers import StallSweeper

logger = logging.getLogger(__name__)

BoardFactory = Callable[[], List[List[Any]]]


class ContestDraftService:
    """Wires admission, matchmaking, the scheduler and the stall sweep.

    Admission is synchronous database work; launching a room that filled up
    is scheduled afterwards as a background task so it never runs inside the
    admission transaction.
    """

    def __init__(
        self,
        database: Database,
        broadcaster: Optional[RoomBroadcaster] = None,
        timing: Optional[DraftTiming] = None,
        board_factory: Optional[BoardFactory] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.database = database
        self.timing = timing or DraftTiming()
        self.broadcaster = broadcaster or RoomBroadcaster()
        self.locks = LockManager(database, clock=clock)
        self.matchmaker = RoomMatchmaker()
        self.registry = RoomRegistry()
        self.store = DraftStateStore(
            database, entry_source=self._room_entries, clock=clock
        )
        self.scheduler = DraftScheduler(
            database,
            self.store,
            self.broadcaster,
            self.registry,
            self.locks,
            timing=self.timing,
            board_factory=board_factory,
            clock=clock,
        )
        self.admission = EntryAdmissionController(
            database,
            self.locks,
            self.matchmaker,
            board_factory=board_factory,
            lock_seconds=self.timing.admission_lock_seconds,
        )
        self.sweeper = StallSweeper(self.scheduler, self.timing.stall_sweep_seconds)
        self._background: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """Start the stall sweep. Call from inside the running event loop."""
        self.sweeper.start()

    async def stop(self):
        """Stop the sweep, cancel pending launches, and drop every room runtime."""
        await self.sweeper.stop()
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.registry.shutdown()
        logger.info("Contest draft service stopped")

    async def wait_for_launches(self):
        """Wait until every scheduled launch check has run."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    async def enter(self, contest_id: str, user_id: str, username: str) -> AdmissionResult:
        result = self.admission.enter(contest_id, user_id, username)
        self.broadcaster.join_room(result.room_id, user_id)
        await self.broadcaster.emit(
            result.room_id,
            DraftEvent.ROOM_JOINED,
            {
                "room_id": result.room_id,
                "contest_id": result.contest_id,
                "user_id": user_id,
                "username": username,
                "draft_position": result.draft_position,
            },
        )
        if result.room_full:
            self._schedule_launch_check(result.room_id)
        return result

    async def withdraw(self, entry_id: int, user_id: str) -> WithdrawalResult:
        result = self.admission.withdraw(entry_id, user_id)
        self.broadcaster.leave_room(result.room_id, user_id)
        return result

    def get_room_status(self, room_id: str) -> Optional[Dict[str, Any]]:
        """Room snapshot; includes live draft progress once drafting."""
        with self.database.session() as session:
            status = self.matchmaker.room_status(session, room_id)
        if status is None:
            return None
        if status["status"] in ("drafting", "completed"):
            draft = self.store.load(room_id)
            if draft is not None:
                team = draft.current_team()
                status["draft"] = {
                    "status": draft.status,
                    "current_turn": draft.current_turn,
                    "total_picks": draft.total_picks,
                    "current_user_id": team.user_id if team else None,
                    "draft_order": draft.draft_order,
                }
        return status

    # ------------------------------------------------------------------
    # Drafting
    # ------------------------------------------------------------------

    async def check_and_launch(self, room_id: str) -> bool:
        """Launch the room's draft if it is full and not yet launched."""
        status = self.get_room_status(room_id)
        if status is None:
            logger.warning("Launch check for unknown room %s", room_id)
            return False
        if status["status"] != "ready" or status["current_players"] < status["capacity"]:
            logger.info(
                "Room %s not launching (%s, %d/%d)",
                room_id,
                status["status"],
                status["current_players"],
                status["capacity"],
            )
            return False
        return await self.scheduler.launch(room_id)

    async def handle_pick(
        self, room_id: str, user_id: str, row: int, col: int, roster_slot: str
    ) -> Pick:
        return await self.scheduler.handle_pick(room_id, user_id, row, col, roster_slot)

    async def handle_auto_pick(self, room_id: str, user_id: str) -> Pick:
        return await self.scheduler.handle_auto_pick(room_id, user_id)

    def set_pre_selection(self, room_id: str, user_id: str, row: int, col: int):
        self.scheduler.set_pre_selection(room_id, user_id, row, col)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _room_entries(self, room_id: str):
        return self.scheduler.room_entries(room_id)

    def _schedule_launch_check(self, room_id: str):
        task = asyncio.create_task(
            self._delayed_launch_check(room_id), name=f"launch-check-{room_id}"
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _delayed_launch_check(self, room_id: str):
        await asyncio.sleep(self.timing.launch_check_delay_seconds)
        try:
            await self.check_and_launch(room_id)
        except Exception:
            logger.exception("Launch check for room %s failed", room_id)
