"""Turn timers and the stall sweep that recovers rooms without one."""

import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, Optional

from src.contest_draft.registry import RoomRegistry

if TYPE_CHECKING:
    from src.contest_draft.scheduler import DraftScheduler

logger = logging.getLogger(__name__)

DeadlineHandler = Callable[[str, str, int], Awaitable[object]]


class TurnTimers:
    """One pending timer task per room.

    A timer sleeps for the turn limit, then for the grace period, and only
    then hands ``(room_id, user_id, turn)`` to the deadline handler. Re-arming
    or cancelling the room's timer during either sleep drops the deadline.
    """

    def __init__(
        self,
        registry: RoomRegistry,
        grace_seconds: float,
        on_deadline: DeadlineHandler,
    ):
        self.registry = registry
        self.grace_seconds = grace_seconds
        self.on_deadline = on_deadline

    def arm(self, room_id: str, user_id: str, turn: int, seconds: float):
        runtime = self.registry.ensure(room_id)
        runtime.cancel_timer()
        runtime.timer = asyncio.create_task(
            self._run(room_id, user_id, turn, seconds),
            name=f"turn-timer-{room_id}-{turn}",
        )
        runtime.timer_turn = turn
        logger.debug(
            "Armed %.1fs timer for turn %d (%s) in room %s", seconds, turn, user_id, room_id
        )

    def cancel(self, room_id: str):
        runtime = self.registry.get(room_id)
        if runtime is not None:
            runtime.cancel_timer()

    def has_timer(self, room_id: str) -> bool:
        return self.registry.has_timer(room_id)

    async def _run(self, room_id: str, user_id: str, turn: int, seconds: float):
        await asyncio.sleep(max(0.0, seconds))
        logger.info(
            "Timer expired for %s on turn %d in room %s; grace %.1fs",
            user_id,
            turn,
            room_id,
            self.grace_seconds,
        )
        await asyncio.sleep(self.grace_seconds)

        runtime = self.registry.get(room_id)
        if runtime is not None and runtime.timer is asyncio.current_task():
            runtime.timer = None
            runtime.timer_turn = None
        try:
            await self.on_deadline(room_id, user_id, turn)
        except Exception:
            logger.exception("Deadline handling failed for room %s turn %d", room_id, turn)


class StallSweeper:
    """Periodic recovery for drafting rooms that have no live timer.

    Covers process restarts and lost timers. Each room check is delegated to
    ``DraftScheduler.recover_room``, which runs on the room's job queue.
    """

    def __init__(self, scheduler: "DraftScheduler", interval_seconds: float):
        self.scheduler = scheduler
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    def start(self):
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop(), name="stall-sweeper")
            logger.info("Stall sweep running every %.0fs", self.interval_seconds)

    async def stop(self):
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def _loop(self):
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("Stall sweep failed")

    async def sweep_once(self) -> Dict[str, str]:
        """Check every drafting room that has no timer and is past its countdown.

        Returns:
            Mapping of room id to the action taken.
        """
        actions = {}
        registry = self.scheduler.registry
        for room_id in self.scheduler.drafting_room_ids():
            if registry.has_timer(room_id) or registry.is_counting_down(room_id):
                continue
            try:
                actions[room_id] = await self.scheduler.recover_room(room_id)
            except Exception:
                logger.exception("Recovery of room %s failed", room_id)
                actions[room_id] = "error"
        self.scheduler.store.purge_expired()
        self.scheduler.locks.purge_expired()
        if actions:
            logger.info("Stall sweep: %s", actions)
        return actions
