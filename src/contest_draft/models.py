"""Draft data models - board cells, teams, picks and the per-room draft instance."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from src.contest_draft.config import (
    DRAFT_ROUNDS,
    MAX_PLAYER_PRICE,
    MIN_PLAYER_PRICE,
    ROSTER_SLOTS,
    STARTING_BUDGET,
)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_snake_order(team_count: int, rounds: int = DRAFT_ROUNDS) -> List[int]:
    """Flattened snake order: even rounds ascend, odd rounds descend.

    >>> build_snake_order(3, 2)
    [0, 1, 2, 2, 1, 0]
    """
    if team_count <= 0:
        raise ValueError(f"team_count must be positive, got {team_count}")
    order = []
    for round_index in range(rounds):
        seats = list(range(team_count))
        if round_index % 2 == 1:
            seats.reverse()
        order.extend(seats)
    return order


@dataclass
class Player:
    """A single board cell.

    ``position`` is the label of the board column the player sits in
    (``FLEX`` for wildcard cells). ``original_position`` is the player's real
    position and is the only field slot legality looks at.
    """

    name: str
    team: str
    position: str
    original_position: str
    price: int
    drafted: bool = False
    drafted_by: Optional[int] = None

    @classmethod
    def from_cell(cls, cell: Dict[str, Any]) -> "Player":
        """Build a Player from a board-collaborator cell dict.

        Accepts both ``original_position`` and ``originalPosition``. Cells
        without one fall back to the display position, which must then be a
        real position rather than ``FLEX``.
        """
        display = cell.get("position")
        true_position = (
            cell.get("original_position") or cell.get("originalPosition") or display
        )
        if not true_position or true_position == "FLEX":
            raise ValueError(
                f"Board cell {cell.get('name')!r} has no true position"
            )
        price = int(cell.get("price", 0))
        if not MIN_PLAYER_PRICE <= price <= MAX_PLAYER_PRICE:
            raise ValueError(
                f"Board cell {cell.get('name')!r} has price {price} outside "
                f"[{MIN_PLAYER_PRICE}, {MAX_PLAYER_PRICE}]"
            )
        drafted_by = cell.get("drafted_by", cell.get("draftedBy"))
        return cls(
            name=cell["name"],
            team=cell.get("team", ""),
            position=display or true_position,
            original_position=true_position,
            price=price,
            drafted=bool(cell.get("drafted", False)),
            drafted_by=drafted_by,
        )

    def snapshot(self) -> "Player":
        return replace(self)


def empty_roster() -> Dict[str, Optional[Player]]:
    return {slot: None for slot in ROSTER_SLOTS}


@dataclass
class RoomEntry:
    """Seat in a draft room, retained so teams can be rebuilt."""

    entry_id: int
    user_id: str
    username: str
    draft_position: int


@dataclass
class Team:
    """One participant's roster and remaining budget."""

    entry_id: int
    user_id: str
    username: str
    draft_position: int
    roster: Dict[str, Optional[Player]] = field(default_factory=empty_roster)
    budget: int = STARTING_BUDGET
    bonus: int = 0

    @classmethod
    def from_entry(cls, entry: RoomEntry) -> "Team":
        return cls(
            entry_id=entry.entry_id,
            user_id=entry.user_id,
            username=entry.username,
            draft_position=entry.draft_position,
        )

    def empty_slots(self) -> List[str]:
        """Unfilled slots in roster order."""
        return [slot for slot in ROSTER_SLOTS if self.roster.get(slot) is None]

    def players(self) -> List[Player]:
        return [p for p in self.roster.values() if p is not None]

    def spent(self) -> int:
        return sum(p.price for p in self.players())

    def add_player(self, player: Player, slot: str):
        """Place player in slot and charge its price against the budget."""
        if player.price > self.budget:
            raise ValueError(
                f"{self.username} cannot afford {player.name} "
                f"(${player.price} > ${self.budget})"
            )
        self.roster[slot] = player
        self.budget -= player.price


@dataclass
class Pick:
    """Represents a single draft pick, or a skipped turn."""

    team_index: int
    pick_number: int
    timestamp: str
    player: Optional[Player] = None
    roster_slot: Optional[str] = None
    row: Optional[int] = None
    col: Optional[int] = None
    is_auto_pick: bool = False
    was_pre_selected: bool = False
    skipped: bool = False
    reason: Optional[str] = None

    @classmethod
    def create(
        cls,
        team_index: int,
        pick_number: int,
        player: Player,
        roster_slot: str,
        row: int,
        col: int,
        is_auto_pick: bool = False,
        was_pre_selected: bool = False,
    ) -> "Pick":
        return cls(
            team_index=team_index,
            pick_number=pick_number,
            timestamp=now_iso(),
            player=player,
            roster_slot=roster_slot,
            row=row,
            col=col,
            is_auto_pick=is_auto_pick,
            was_pre_selected=was_pre_selected,
        )

    @classmethod
    def skip(cls, team_index: int, pick_number: int, reason: str) -> "Pick":
        return cls(
            team_index=team_index,
            pick_number=pick_number,
            timestamp=now_iso(),
            is_auto_pick=True,
            skipped=True,
            reason=reason,
        )


@dataclass
class TurnMetadata:
    """Who is on the clock, with how long, since when (epoch seconds)."""

    room_id: str
    turn: int
    user_id: str
    time_limit: float
    started_at: float


@dataclass
class DraftInstance:
    """Complete state of one room's draft."""

    room_id: str
    contest_id: str
    contest_type: str
    board: List[List[Optional[Player]]]
    entries: List[RoomEntry]
    teams: List[Team]
    draft_order: List[int]
    current_turn: int = 0
    picks: List[Pick] = field(default_factory=list)
    status: str = "active"
    started_at: str = field(default_factory=now_iso)
    completed_at: Optional[str] = None

    @classmethod
    def create_new(
        cls,
        room_id: str,
        contest_id: str,
        contest_type: str,
        entries: List[RoomEntry],
        board: List[List[Any]],
        rounds: int = DRAFT_ROUNDS,
    ) -> "DraftInstance":
        """Factory method to create a new draft from a room's seats.

        Teams are ordered by draft position. Board cells may be Player
        instances, cell dicts, or None for empty cells.
        """
        if not entries:
            raise ValueError(f"Room {room_id} has no entries to draft")
        seats = sorted(entries, key=lambda e: e.draft_position)
        grid = [
            [
                cell if cell is None or isinstance(cell, Player)
                else Player.from_cell(cell)
                for cell in row
            ]
            for row in board
        ]
        return cls(
            room_id=room_id,
            contest_id=contest_id,
            contest_type=contest_type,
            board=grid,
            entries=seats,
            teams=[Team.from_entry(seat) for seat in seats],
            draft_order=build_snake_order(len(seats), rounds),
        )

    @property
    def total_picks(self) -> int:
        return len(self.draft_order)

    @property
    def is_finished(self) -> bool:
        return self.current_turn >= len(self.draft_order)

    @property
    def current_round(self) -> int:
        if not self.teams:
            return 0
        return self.current_turn // len(self.teams) + 1

    def current_team_index(self) -> Optional[int]:
        if self.is_finished:
            return None
        index = self.draft_order[self.current_turn]
        if not 0 <= index < len(self.teams):
            return None
        return index

    def current_team(self) -> Optional[Team]:
        index = self.current_team_index()
        return None if index is None else self.teams[index]

    def player_at(self, row: int, col: int) -> Optional[Player]:
        if not 0 <= row < len(self.board):
            return None
        cells = self.board[row]
        if not 0 <= col < len(cells):
            return None
        return cells[col]
