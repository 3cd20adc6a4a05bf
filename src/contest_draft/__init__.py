from src.contest_draft.admission import (
    AdmissionResult,
    EntryAdmissionController,
    WithdrawalResult,
)
from src.contest_draft.auto_pick import AutoPickSelector, Selection
from src.contest_draft.config import DraftTiming
from src.contest_draft.db import Database
from src.contest_draft.errors import (
    ConcurrencyBusyError,
    ConflictError,
    CorruptedStateError,
    DraftError,
    NotFoundError,
    ResourceExhaustedError,
    ValidationError,
)
from src.contest_draft.events import DraftEvent, RoomBroadcaster
from src.contest_draft.locks import LockManager
from src.contest_draft.matchmaker import RoomAssignment, RoomMatchmaker
from src.contest_draft.models import (
    DraftInstance,
    Pick,
    Player,
    RoomEntry,
    Team,
    TurnMetadata,
    build_snake_order,
)
from src.contest_draft.registry import RoomRegistry, RoomRuntime
from src.contest_draft.roster_rules import RosterRules
from src.contest_draft.scheduler import DraftScheduler
from src.contest_draft.service import ContestDraftService
from src.contest_draft.state_store import DraftStateStore
from src.contest_draft.timers import StallSweeper, TurnTimers

__all__ = [
    "AdmissionResult",
    "AutoPickSelector",
    "ConcurrencyBusyError",
    "ConflictError",
    "ContestDraftService",
    "CorruptedStateError",
    "Database",
    "DraftError",
    "DraftEvent",
    "DraftInstance",
    "DraftScheduler",
    "DraftStateStore",
    "DraftTiming",
    "EntryAdmissionController",
    "LockManager",
    "NotFoundError",
    "Pick",
    "Player",
    "ResourceExhaustedError",
    "RoomAssignment",
    "RoomBroadcaster",
    "RoomEntry",
    "RoomMatchmaker",
    "RoomRegistry",
    "RoomRuntime",
    "RosterRules",
    "Selection",
    "StallSweeper",
    "Team",
    "TurnMetadata",
    "TurnTimers",
    "ValidationError",
    "WithdrawalResult",
    "build_snake_order",
]
