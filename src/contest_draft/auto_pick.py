"""Auto-pick selection for users whose turn timer expired."""

import logging
from dataclasses import dataclass
from typing import List, Optional

from src.contest_draft.config import AUTO_PICK_SLOT_PRIORITY
from src.contest_draft.models import Player, Team
from src.contest_draft.roster_rules import RosterRules

logger = logging.getLogger(__name__)


@dataclass
class Selection:
    """A board cell chosen for a team, with the slot it will fill."""

    row: int
    col: int
    player: Player
    roster_slot: str
    was_pre_selected: bool = False


class AutoPickSelector:
    """Chooses picks on a user's behalf.

    Every candidate is checked with the same ``RosterRules.pick_error`` the
    scheduler applies to manual picks, so a selection is never one the
    scheduler would reject.
    """

    def __init__(
        self,
        rules: Optional[RosterRules] = None,
        slot_priority: Optional[List[str]] = None,
    ):
        self.rules = rules or RosterRules()
        self.slot_priority = list(slot_priority or AUTO_PICK_SLOT_PRIORITY)

    def select_pick(
        self, board: List[List[Optional[Player]]], team: Team
    ) -> Optional[Selection]:
        """Most expensive affordable player for the first fillable slot.

        Slots are tried in priority order (QB, RB, WR, TE, FLEX). Within a
        slot the highest price wins; ties go to the first cell in row-major
        order.

        Returns:
            The Selection, or None if no legal pick exists.
        """
        empty = set(team.empty_slots())
        for slot in self.slot_priority:
            if slot not in empty:
                continue
            best = None
            for row_index, row in enumerate(board):
                for col_index, player in enumerate(row):
                    if player is None:
                        continue
                    if not self.rules.is_legal_pick(team, player, slot):
                        continue
                    if best is None or player.price > best.player.price:
                        best = Selection(row_index, col_index, player, slot)
            if best is not None:
                logger.debug(
                    "Auto-pick for %s: %s ($%d) -> %s",
                    team.username,
                    best.player.name,
                    best.player.price,
                    slot,
                )
                return best
        return None

    def resolve_pre_selection(
        self, board: List[List[Optional[Player]]], team: Team, row: int, col: int
    ) -> Optional[Selection]:
        """The user's pre-selected cell if it is still a legal pick."""
        if not 0 <= row < len(board) or not 0 <= col < len(board[row]):
            return None
        player = board[row][col]
        if player is None:
            return None
        slot = self.rules.best_slot_for(player, team)
        if slot is None or not self.rules.is_legal_pick(team, player, slot):
            return None
        return Selection(row, col, player, slot, was_pre_selected=True)
