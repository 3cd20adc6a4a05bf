"""Tests for turn timers and the stall sweep."""

import asyncio
import dataclasses
import json
import time

import pytest
from sqlalchemy import func, select

from src.contest_draft.db import ContestEntry, DraftStateRecord, LockLease, Room, User
from src.contest_draft.events import DraftEvent
from src.contest_draft.models import Pick
from src.contest_draft.registry import RoomRegistry
from src.contest_draft.seed import seed_contest, seed_users
from src.contest_draft.service import ContestDraftService
from src.contest_draft.timers import TurnTimers


# ── Helpers ──────────────────────────────────────────────────────────


async def _fill_room(service, contest_id):
    results = [await service.enter(contest_id, f"user-{i}", f"user{i}") for i in range(1, 6)]
    await service.wait_for_launches()
    return results[0].room_id


async def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(0.02)
    return False


def _entry_statuses(database, room_id):
    with database.session() as session:
        return set(
            session.execute(
                select(ContestEntry.status).where(ContestEntry.room_id == room_id)
            ).scalars()
        )


def _corrupt(database, room_id):
    with database.session() as session:
        session.get(DraftStateRecord, room_id).payload = "{broken"


def _rewrite_teams(database, room_id, teams):
    with database.session() as session:
        record = session.get(DraftStateRecord, room_id)
        raw = json.loads(record.payload)
        raw["teams"] = teams
        record.payload = json.dumps(raw)


def _recorder():
    fired = []

    async def on_deadline(room_id, user_id, turn):
        fired.append((room_id, user_id, turn))

    return fired, on_deadline


@pytest.fixture
def contest_id(database, board):
    seed_users(database, 5)
    return seed_contest(database, board)


# ── TurnTimers ───────────────────────────────────────────────────────


class TestTurnTimers:
    def test_deadline_after_limit_plus_grace(self):
        fired, on_deadline = _recorder()

        async def scenario():
            timers = TurnTimers(RoomRegistry(), 0.05, on_deadline)
            timers.arm("room-1", "u1", 3, 0.05)
            armed = timers.has_timer("room-1")
            await asyncio.sleep(0.07)
            during_grace = list(fired)
            await asyncio.sleep(0.2)
            return armed, during_grace, timers.has_timer("room-1")

        armed, during_grace, still_armed = asyncio.run(scenario())
        assert armed
        assert during_grace == []
        assert fired == [("room-1", "u1", 3)]
        assert not still_armed

    def test_cancel_drops_deadline(self):
        fired, on_deadline = _recorder()

        async def scenario():
            timers = TurnTimers(RoomRegistry(), 0.01, on_deadline)
            timers.arm("room-1", "u1", 0, 0.02)
            await asyncio.sleep(0.01)
            timers.cancel("room-1")
            await asyncio.sleep(0.1)

        asyncio.run(scenario())
        assert fired == []

    def test_rearm_replaces_previous_timer(self):
        fired, on_deadline = _recorder()

        async def scenario():
            timers = TurnTimers(RoomRegistry(), 0.01, on_deadline)
            timers.arm("room-1", "u1", 0, 0.05)
            timers.arm("room-1", "u2", 1, 0.01)
            await asyncio.sleep(0.15)

        asyncio.run(scenario())
        assert fired == [("room-1", "u2", 1)]

    def test_handler_failure_does_not_escape(self):
        async def on_deadline(room_id, user_id, turn):
            raise RuntimeError("handler broke")

        async def scenario():
            registry = RoomRegistry()
            timers = TurnTimers(registry, 0, on_deadline)
            timers.arm("room-1", "u1", 0, 0)
            task = registry.get("room-1").timer
            await asyncio.gather(task)
            return task

        task = asyncio.run(scenario())
        assert task.exception() is None


# ── Stall sweep ──────────────────────────────────────────────────────


class TestStallSweep:
    def _service(self, database, broadcaster, timing, clock):
        return ContestDraftService(database, broadcaster=broadcaster, timing=timing, clock=clock)

    def test_room_with_timer_is_left_alone(self, database, broadcaster, fast_timing, clock, contest_id):
        async def scenario():
            service = self._service(database, broadcaster, fast_timing, clock)
            await _fill_room(service, contest_id)
            try:
                return await service.sweeper.sweep_once()
            finally:
                await service.stop()

        assert asyncio.run(scenario()) == {}

    def test_lost_timer_is_resumed(self, database, broadcaster, fast_timing, clock, contest_id):
        async def scenario():
            service = self._service(database, broadcaster, fast_timing, clock)
            room_id = await _fill_room(service, contest_id)
            try:
                service.registry.discard(room_id)
                clock.advance(10)
                first = await service.sweeper.sweep_once()
                has_timer = service.registry.has_timer(room_id)
                second = await service.sweeper.sweep_once()
                return room_id, first, has_timer, second, service.scheduler.get_draft(room_id)
            finally:
                await service.stop()

        room_id, first, has_timer, second, draft = asyncio.run(scenario())
        assert first == {room_id: "timer_resumed"}
        assert has_timer
        assert second == {}
        assert draft.picks == []

    def test_stalled_turn_is_auto_picked(self, database, broadcaster, fast_timing, clock, contest_id):
        async def scenario():
            service = self._service(database, broadcaster, fast_timing, clock)
            room_id = await _fill_room(service, contest_id)
            try:
                service.registry.discard(room_id)
                clock.advance(fast_timing.turn_seconds + fast_timing.stall_buffer_seconds + 1)
                actions = await service.sweeper.sweep_once()
                return room_id, actions, service.scheduler.get_draft(room_id), service.store.load_turn(room_id)
            finally:
                await service.stop()

        room_id, actions, draft, meta = asyncio.run(scenario())
        assert actions == {room_id: "auto_picked"}
        assert draft.picks[0].is_auto_pick is True
        assert draft.picks[0].player.name == "QB-5"
        assert meta.turn == 1

    def test_missing_turn_record_restarts_turn(self, database, broadcaster, fast_timing, clock, contest_id):
        async def scenario():
            service = self._service(database, broadcaster, fast_timing, clock)
            room_id = await _fill_room(service, contest_id)
            try:
                service.registry.discard(room_id)
                service.store.clear_turn(room_id)
                actions = await service.sweeper.sweep_once()
                return room_id, actions, service.store.load_turn(room_id), service.registry.has_timer(room_id)
            finally:
                await service.stop()

        room_id, actions, meta, has_timer = asyncio.run(scenario())
        assert actions == {room_id: "turn_restarted"}
        assert meta.turn == 0
        assert meta.started_at == pytest.approx(clock())
        assert has_timer

    def test_unreadable_state_forces_completion(self, database, broadcaster, fast_timing, clock, contest_id):
        async def scenario():
            service = self._service(database, broadcaster, fast_timing, clock)
            room_id = await _fill_room(service, contest_id)
            try:
                service.registry.discard(room_id)
                _corrupt(database, room_id)
                return room_id, await service.sweeper.sweep_once()
            finally:
                await service.stop()

        room_id, actions = asyncio.run(scenario())
        assert actions == {room_id: "forced_completion"}
        assert _entry_statuses(database, room_id) == {"completed"}
        with database.session() as session:
            assert session.get(Room, room_id).status == "completed"
            # no draft state means no rosters to reward
            assert all(u.tickets == 0 for u in session.execute(select(User)).scalars())

    def test_unreplayable_picks_force_completion(self, database, broadcaster, fast_timing, clock, contest_id):
        def overspend(draft):
            for row, col in [(0, 0), (0, 1), (0, 2), (1, 3)]:
                player = draft.player_at(row, col)
                draft.picks.append(Pick.create(0, len(draft.picks) + 1, player.snapshot(), "QB", row, col))

        async def scenario():
            service = self._service(database, broadcaster, fast_timing, clock)
            room_id = await _fill_room(service, contest_id)
            try:
                service.registry.discard(room_id)
                service.store.update(room_id, overspend)
                _rewrite_teams(database, room_id, 3)
                return room_id, await service.sweeper.sweep_once()
            finally:
                await service.stop()

        room_id, actions = asyncio.run(scenario())
        assert actions == {room_id: "forced_completion"}
        assert _entry_statuses(database, room_id) == {"completed"}

    def test_finished_draft_is_completed(self, database, broadcaster, fast_timing, clock, contest_id):
        async def scenario():
            service = self._service(database, broadcaster, fast_timing, clock)
            room_id = await _fill_room(service, contest_id)
            try:
                service.registry.discard(room_id)
                service.store.update(room_id, lambda d: setattr(d, "current_turn", d.total_picks))
                return room_id, await service.sweeper.sweep_once()
            finally:
                await service.stop()

        room_id, actions = asyncio.run(scenario())
        assert actions == {room_id: "completed"}
        assert _entry_statuses(database, room_id) == {"completed"}
        with database.session() as session:
            assert all(u.tickets == 1 for u in session.execute(select(User)).scalars())

    def test_sweep_purges_expired_leases(self, database, broadcaster, fast_timing, clock, contest_id):
        async def scenario():
            service = self._service(database, broadcaster, fast_timing, clock)
            try:
                service.locks.acquire("stale", 1)
                clock.advance(2)
                await service.sweeper.sweep_once()
            finally:
                await service.stop()

        asyncio.run(scenario())
        with database.session() as session:
            assert session.execute(select(func.count()).select_from(LockLease)).scalar_one() == 0

    def test_sweep_skips_room_in_launch_countdown(self, database, broadcaster, fast_timing, clock, contest_id):
        timing = dataclasses.replace(
            fast_timing,
            pre_launch_countdown_seconds=1,
            first_pick_countdown_seconds=2,
            countdown_tick_seconds=0.1,
        )

        async def scenario():
            service = self._service(database, broadcaster, timing, clock)
            try:
                for i in range(1, 6):
                    await service.enter(contest_id, f"user-{i}", f"user{i}")
                await asyncio.sleep(0.05)
                room_id = service.scheduler.drafting_room_ids()[0]
                swept = await service.sweeper.sweep_once()
                recovered = await service.scheduler.recover_room(room_id)
                await service.wait_for_launches()
                return swept, recovered, service.store.load_turn(room_id)
            finally:
                await service.stop()

        swept, recovered, meta = asyncio.run(scenario())
        assert swept == {}
        assert recovered == "counting_down"
        assert meta.turn == 0
        names = [name for _, name, _ in broadcaster.events]
        assert names.count(DraftEvent.DRAFT_TURN) == 1
        assert names.index(DraftEvent.DRAFT_STARTING) < names.index(DraftEvent.DRAFT_TURN)

    def test_background_sweep_recovers_room(self, database, broadcaster, fast_timing, clock, contest_id):
        timing = dataclasses.replace(fast_timing, stall_sweep_seconds=0.05)

        async def scenario():
            service = self._service(database, broadcaster, timing, clock)
            room_id = await _fill_room(service, contest_id)
            try:
                service.registry.discard(room_id)
                clock.advance(60)
                service.start()
                recovered = await _wait_for(lambda: service.scheduler.get_draft(room_id).picks)
                return recovered
            finally:
                await service.stop()

        assert asyncio.run(scenario())


# ── Deadline failures ────────────────────────────────────────────────


class TestDeadlineFailure:
    def test_unreadable_state_at_deadline_forces_completion(
        self, database, broadcaster, fast_timing, contest_id
    ):
        async def scenario():
            service = ContestDraftService(database, broadcaster=broadcaster, timing=fast_timing)
            room_id = await _fill_room(service, contest_id)
            try:
                _corrupt(database, room_id)
                result = await service.scheduler.handle_deadline(room_id, "user-1", 0)
                return room_id, result, service.registry.get(room_id)
            finally:
                await service.stop()

        room_id, result, runtime = asyncio.run(scenario())
        assert result is None
        assert runtime is None
        assert _entry_statuses(database, room_id) == {"completed"}
