import os
from dataclasses import dataclass
from pathlib import Path

# Base project directory
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Data directory
DATA_DIR = PROJECT_ROOT / "data"

# Storage
DATABASE_URL = os.environ.get(
    "CONTEST_DRAFT_DATABASE_URL", f"sqlite:///{DATA_DIR / 'contest_draft.db'}"
)

# Room and draft shape
ROOM_CAPACITY = 5
DRAFT_ROUNDS = 5
STARTING_BUDGET = 15
MIN_PLAYER_PRICE = 1
MAX_PLAYER_PRICE = 5

ROSTER_SLOTS = ["QB", "RB", "WR", "TE", "FLEX"]
FLEX_ELIGIBLE_POSITIONS = {"RB", "WR", "TE"}
AUTO_PICK_SLOT_PRIORITY = ["QB", "RB", "WR", "TE", "FLEX"]

# Turn timing (seconds)
TURN_SECONDS = 30
QUICK_SKIP_SECONDS = 3
GRACE_SECONDS = 2
STALL_BUFFER_SECONDS = 3
STALL_SWEEP_SECONDS = 15
LAUNCH_CHECK_DELAY_SECONDS = 1
PRE_LAUNCH_COUNTDOWN_SECONDS = 5
FIRST_PICK_COUNTDOWN_SECONDS = 5

# Lease and expiry windows (seconds)
ADMISSION_LOCK_SECONDS = 5
PICK_LOCK_SECONDS = 10
DRAFT_STATE_TTL_SECONDS = 24 * 60 * 60
COMPLETED_DRAFT_TTL_SECONDS = 60 * 60
TURN_META_TTL_SECONDS = 60 * 60

# Matchmaking
MATCHMAKER_MAX_ATTEMPTS = 3
UNFILLED_ROOM_LIMIT = 20

# Contest rules
COMPLETION_BONUS_TICKETS = 1
SINGLE_ROOM_CONTEST_TYPES = {"cash"}
BONUS_CONTEST_TYPES = {"kingpin", "firesale"}
MAX_ENTRIES_PER_USER = {
    "cash": 1,
    "market": 150,
    "bash": 150,
    "firesale": 150,
    "kingpin": 150,
}
DEFAULT_MAX_ENTRIES_PER_USER = 150
CASH_GAME_NAME_PREFIX = "Cash Game #"


@dataclass(frozen=True)
class DraftTiming:
    """Timer and countdown settings for a running service."""

    turn_seconds: float = TURN_SECONDS
    quick_skip_seconds: float = QUICK_SKIP_SECONDS
    grace_seconds: float = GRACE_SECONDS
    stall_buffer_seconds: float = STALL_BUFFER_SECONDS
    stall_sweep_seconds: float = STALL_SWEEP_SECONDS
    launch_check_delay_seconds: float = LAUNCH_CHECK_DELAY_SECONDS
    pre_launch_countdown_seconds: int = PRE_LAUNCH_COUNTDOWN_SECONDS
    first_pick_countdown_seconds: int = FIRST_PICK_COUNTDOWN_SECONDS
    countdown_tick_seconds: float = 1.0
    admission_lock_seconds: float = ADMISSION_LOCK_SECONDS
    pick_lock_seconds: float = PICK_LOCK_SECONDS
    completed_state_ttl_seconds: float = COMPLETED_DRAFT_TTL_SECONDS
