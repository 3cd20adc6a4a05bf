"""In-process room registry - per-room runtime with a single-consumer job queue."""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Set, Tuple, TypeVar

from src.contest_draft.errors import ConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Job = Callable[[], Awaitable[T]]


class RoomRuntime:
    """Live, process-local state for one drafting room.

    All mutations of the room's draft run as jobs submitted here; a single
    consumer task executes them one at a time in submission order.
    """

    def __init__(self, room_id: str):
        self.room_id = room_id
        self.timer: Optional[asyncio.Task] = None
        self.timer_turn: Optional[int] = None
        self.pre_selections: Dict[str, Tuple[int, int]] = {}
        self.counting_down = False
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None

    async def submit(self, job: Job) -> T:
        """Queue ``job`` and wait for its result (or exception)."""
        if self.closed:
            raise ConflictError(f"Draft room {self.room_id} is closed", reason="draft_completed")
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((job, future))
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(
                self._consume(), name=f"room-{self.room_id}"
            )
        return await future

    async def _consume(self):
        while True:
            item = await self._queue.get()
            if item is None:
                break
            job, future = item
            try:
                result = await job()
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
                else:
                    logger.warning("Room %s job failed after caller left: %s", self.room_id, e)
            else:
                if not future.done():
                    future.set_result(result)

    def has_live_timer(self) -> bool:
        return self.timer is not None and not self.timer.done()

    def cancel_timer(self):
        timer = self.timer
        self.timer = None
        self.timer_turn = None
        if timer is not None and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()

    def close(self):
        """Stop accepting jobs; queued jobs still run before the consumer exits."""
        if self.closed:
            return
        self.closed = True
        self.cancel_timer()
        self.pre_selections.clear()
        if self._consumer is not None and not self._consumer.done():
            self._queue.put_nowait(None)

    async def shutdown(self):
        """Close and cancel the consumer outright, failing any queued jobs."""
        self.close()
        consumer = self._consumer
        if consumer is not None and not consumer.done() and consumer is not asyncio.current_task():
            consumer.cancel()
            await asyncio.gather(consumer, return_exceptions=True)
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is not None and not item[1].done():
                item[1].cancel()


class RoomRegistry:
    """Owns every RoomRuntime in the process.

    Runtimes are created at launch or recovery and removed through
    ``discard`` on completion, which also cancels the room's timer.
    """

    def __init__(self):
        self._rooms: Dict[str, RoomRuntime] = {}
        self._launching: Set[str] = set()

    def claim_launch(self, room_id: str) -> bool:
        """Mark a room as launching. False if it already was."""
        if room_id in self._launching:
            return False
        self._launching.add(room_id)
        return True

    def release_launch(self, room_id: str):
        self._launching.discard(room_id)

    def get(self, room_id: str) -> Optional[RoomRuntime]:
        return self._rooms.get(room_id)

    def ensure(self, room_id: str) -> RoomRuntime:
        runtime = self._rooms.get(room_id)
        if runtime is None or runtime.closed:
            runtime = RoomRuntime(room_id)
            self._rooms[room_id] = runtime
            logger.debug("Registered runtime for room %s", room_id)
        return runtime

    def has_timer(self, room_id: str) -> bool:
        runtime = self._rooms.get(room_id)
        return runtime is not None and runtime.has_live_timer()

    def is_counting_down(self, room_id: str) -> bool:
        runtime = self._rooms.get(room_id)
        return runtime is not None and not runtime.closed and runtime.counting_down

    def discard(self, room_id: str):
        runtime = self._rooms.pop(room_id, None)
        self._launching.discard(room_id)
        if runtime is not None:
            runtime.close()
            logger.debug("Discarded runtime for room %s", room_id)

    async def shutdown(self):
        rooms = list(self._rooms.values())
        self._rooms.clear()
        self._launching.clear()
        for runtime in rooms:
            await runtime.shutdown()
