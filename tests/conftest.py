"""Shared fixtures for the contest draft test suite."""

import pytest

from src.contest_draft.config import DraftTiming
from src.contest_draft.db import Database
from src.contest_draft.events import RoomBroadcaster


class RecordingBroadcaster(RoomBroadcaster):
    """RoomBroadcaster that also keeps every emitted event."""

    def __init__(self):
        super().__init__()
        self.events = []

    async def emit(self, room_id, event, data):
        self.events.append((room_id, event, data))
        return await super().emit(room_id, event, data)

    def of_type(self, event):
        return [data for _, name, data in self.events if name == event]


class FakeClock:
    """Wall clock the tests move by hand."""

    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def _cell(name, team, position, original_position, price):
    return {
        "name": name,
        "team": team,
        "position": position,
        "original_position": original_position,
        "price": price,
        "drafted": False,
        "drafted_by": None,
    }


def make_board():
    """Deterministic 6x5 board.

    Row r (0-4) costs $5-r with QB, RB, WR, TE in columns 0-3 and a FLEX
    cell in column 4. Row 5 is the wildcard row, QB first.
    """
    board = []
    flex_positions = ["WR", "RB", "TE", "RB", "WR"]
    for row, price in enumerate([5, 4, 3, 2, 1]):
        cells = [
            _cell(f"{pos}-{price}", f"T{row}{col}", pos, pos, price)
            for col, pos in enumerate(["QB", "RB", "WR", "TE"])
        ]
        flex = flex_positions[row]
        cells.append(_cell(f"FLEX-{flex}-{price}", f"T{row}4", "FLEX", flex, price))
        board.append(cells)
    board.append([
        _cell("WILD-QB", "T5W", "FLEX", "QB", 2),
        _cell("WILD-RB", "T51", "FLEX", "RB", 1),
        _cell("WILD-WR", "T52", "FLEX", "WR", 1),
        _cell("WILD-TE", "T53", "FLEX", "TE", 1),
        _cell("STACK-WR", "T00", "FLEX", "WR", 3),
    ])
    return board


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture
def database(tmp_path):
    """Fresh SQLite database per test."""
    db = Database(f"sqlite:///{tmp_path / 'contest_draft.db'}")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def board():
    return make_board()


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fast_timing():
    """No countdowns, a long turn timer, short quick-skip and grace."""
    return DraftTiming(
        turn_seconds=30,
        quick_skip_seconds=0.05,
        grace_seconds=0.05,
        stall_buffer_seconds=3,
        stall_sweep_seconds=60,
        launch_check_delay_seconds=0,
        pre_launch_countdown_seconds=0,
        first_pick_countdown_seconds=0,
        countdown_tick_seconds=0,
    )
