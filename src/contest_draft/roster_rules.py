"""Roster slot legality - the single predicate shared by manual and auto picks."""

from typing import List, Optional

from src.contest_draft.config import FLEX_ELIGIBLE_POSITIONS, ROSTER_SLOTS
from src.contest_draft.errors import (
    ConflictError,
    DraftError,
    ResourceExhaustedError,
    ValidationError,
)
from src.contest_draft.models import Player, Team


class RosterRules:
    """Decides which players may go into which roster slots.

    Legality always uses a player's ``original_position``; the board label in
    ``position`` is display only, so a quarterback placed in a FLEX board cell
    is still a quarterback.
    """

    FLEX_ELIGIBLE_POSITIONS = FLEX_ELIGIBLE_POSITIONS

    def __init__(self, slots: Optional[List[str]] = None):
        self.slots = list(slots or ROSTER_SLOTS)

    def can_fill_slot(self, original_position: str, slot: str) -> bool:
        if slot not in self.slots:
            return False
        if original_position == "QB":
            return slot == "QB"
        if original_position in self.FLEX_ELIGIBLE_POSITIONS:
            return slot in (original_position, "FLEX")
        return slot == original_position

    def eligible_slots(self, original_position: str) -> List[str]:
        """Slots the position may fill, own slot first."""
        return [s for s in self.slots if self.can_fill_slot(original_position, s)]

    def best_slot_for(self, player: Player, team: Team) -> Optional[str]:
        """First empty slot the player may legally fill (own slot, then FLEX)."""
        for slot in self.eligible_slots(player.original_position):
            if team.roster.get(slot) is None:
                return slot
        return None

    def pick_error(
        self, team: Team, player: Optional[Player], slot: str
    ) -> Optional[DraftError]:
        """Return the error that rejects this pick, or None when it is legal.

        Checks, in order: slot name, cell occupied, player still available,
        position legality, slot empty, price within budget.
        """
        if slot not in self.slots:
            return ValidationError(f"Invalid roster slot: {slot}", reason="invalid_slot")
        if player is None:
            return ValidationError("No player at that board position", reason="no_player")
        if player.drafted:
            return ConflictError(
                f"{player.name} has already been drafted", reason="already_drafted"
            )
        if not self.can_fill_slot(player.original_position, slot):
            return ValidationError(
                f"{player.name} ({player.original_position}) cannot be placed "
                f"in {slot} slot",
                reason="illegal_position",
            )
        if team.roster.get(slot) is not None:
            return ConflictError(f"{slot} slot is already filled", reason="slot_filled")
        if player.price > team.budget:
            return ResourceExhaustedError(
                f"Not enough budget. Player costs ${player.price}, "
                f"you have ${team.budget}",
                reason="insufficient_budget",
            )
        return None

    def is_legal_pick(self, team: Team, player: Optional[Player], slot: str) -> bool:
        return self.pick_error(team, player, slot) is None


def stack_bonus(team: Team, player: Player) -> int:
    """Bonus earned by adding ``player`` to ``team`` in bonus contests.

    One point for a duplicate of a rostered player, one for pairing a QB with
    a WR/TE from the same NFL team. Computed before the player is added.
    """
    bonus = 0
    rostered = team.players()

    if any(p.name == player.name and p.team == player.team for p in rostered):
        bonus += 1

    if player.original_position == "QB":
        if any(
            p.original_position in ("WR", "TE") and p.team == player.team
            for p in rostered
        ):
            bonus += 1
    elif player.original_position in ("WR", "TE"):
        if any(
            p.original_position == "QB" and p.team == player.team for p in rostered
        ):
            bonus += 1

    return bonus
