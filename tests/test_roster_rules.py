"""Tests for roster slot legality, pick validation order and stack bonuses."""

import pytest

from src.contest_draft.errors import (
    ConflictError,
    ResourceExhaustedError,
    ValidationError,
)
from src.contest_draft.models import Player, RoomEntry, Team
from src.contest_draft.roster_rules import RosterRules, stack_bonus


# ── Helpers ──────────────────────────────────────────────────────────


def _make_team(budget=15):
    team = Team.from_entry(RoomEntry(entry_id=1, user_id="u0", username="user0", draft_position=0))
    team.budget = budget
    return team


def _make_player(original="RB", position=None, price=2, name=None, team="KC"):
    return Player(
        name=name or f"{original}-{price}",
        team=team,
        position=position or original,
        original_position=original,
        price=price,
    )


LEGAL = {
    ("QB", "QB"),
    ("RB", "RB"), ("RB", "FLEX"),
    ("WR", "WR"), ("WR", "FLEX"),
    ("TE", "TE"), ("TE", "FLEX"),
}


# ── Slot legality ────────────────────────────────────────────────────


class TestCanFillSlot:
    @pytest.mark.parametrize("position", ["QB", "RB", "WR", "TE"])
    @pytest.mark.parametrize("slot", ["QB", "RB", "WR", "TE", "FLEX"])
    def test_legality_table(self, position, slot):
        rules = RosterRules()
        assert rules.can_fill_slot(position, slot) == ((position, slot) in LEGAL)

    def test_unknown_slot_never_legal(self):
        assert not RosterRules().can_fill_slot("RB", "K")

    def test_eligible_slots_lists_own_slot_first(self):
        rules = RosterRules()
        assert rules.eligible_slots("WR") == ["WR", "FLEX"]
        assert rules.eligible_slots("QB") == ["QB"]

    def test_best_slot_falls_back_to_flex(self):
        rules = RosterRules()
        team = _make_team()
        team.add_player(_make_player("TE", price=1), "TE")
        assert rules.best_slot_for(_make_player("TE", price=1, name="other"), team) == "FLEX"

    def test_best_slot_for_qb_with_qb_filled_is_none(self):
        rules = RosterRules()
        team = _make_team()
        team.add_player(_make_player("QB", price=1), "QB")
        assert rules.best_slot_for(_make_player("QB", position="FLEX", price=1), team) is None


# ── Pick validation ──────────────────────────────────────────────────


class TestPickError:
    def test_legal_pick_returns_none(self):
        assert RosterRules().pick_error(_make_team(), _make_player("RB"), "RB") is None

    def test_invalid_slot(self):
        error = RosterRules().pick_error(_make_team(), _make_player("RB"), "K")
        assert isinstance(error, ValidationError)
        assert error.reason == "invalid_slot"

    def test_empty_cell(self):
        error = RosterRules().pick_error(_make_team(), None, "RB")
        assert isinstance(error, ValidationError)
        assert error.reason == "no_player"

    def test_already_drafted(self):
        player = _make_player("RB")
        player.drafted = True
        error = RosterRules().pick_error(_make_team(), player, "RB")
        assert isinstance(error, ConflictError)
        assert error.reason == "already_drafted"

    def test_qb_shown_as_flex_cannot_fill_flex(self):
        wildcard_qb = _make_player("QB", position="FLEX")
        error = RosterRules().pick_error(_make_team(), wildcard_qb, "FLEX")
        assert isinstance(error, ValidationError)
        assert error.reason == "illegal_position"

    def test_qb_shown_as_flex_fills_qb(self):
        wildcard_qb = _make_player("QB", position="FLEX")
        assert RosterRules().pick_error(_make_team(), wildcard_qb, "QB") is None

    def test_slot_filled(self):
        team = _make_team()
        team.add_player(_make_player("RB", price=1), "RB")
        error = RosterRules().pick_error(team, _make_player("RB", name="second"), "RB")
        assert isinstance(error, ConflictError)
        assert error.reason == "slot_filled"

    def test_insufficient_budget(self):
        error = RosterRules().pick_error(_make_team(budget=2), _make_player("RB", price=3), "RB")
        assert isinstance(error, ResourceExhaustedError)
        assert error.reason == "insufficient_budget"

    def test_exact_budget_is_affordable(self):
        assert RosterRules().is_legal_pick(_make_team(budget=3), _make_player("RB", price=3), "RB")

    def test_position_checked_before_budget(self):
        error = RosterRules().pick_error(_make_team(budget=0), _make_player("QB", price=5), "RB")
        assert error.reason == "illegal_position"


# ── Stack bonus ──────────────────────────────────────────────────────


class TestStackBonus:
    def test_no_bonus_for_unrelated_player(self):
        team = _make_team()
        team.add_player(_make_player("QB", team="KC", price=1), "QB")
        assert stack_bonus(team, _make_player("RB", team="KC")) == 0

    def test_qb_with_same_team_receiver(self):
        team = _make_team()
        team.add_player(_make_player("WR", team="BUF", price=1), "WR")
        assert stack_bonus(team, _make_player("QB", team="BUF")) == 1

    def test_tight_end_after_same_team_qb(self):
        team = _make_team()
        team.add_player(_make_player("QB", team="PHI", price=1), "QB")
        assert stack_bonus(team, _make_player("TE", team="PHI")) == 1

    def test_other_team_does_not_stack(self):
        team = _make_team()
        team.add_player(_make_player("QB", team="PHI", price=1), "QB")
        assert stack_bonus(team, _make_player("WR", team="DAL")) == 0

    def test_duplicate_player(self):
        team = _make_team()
        team.add_player(_make_player("WR", team="MIA", name="Same Guy", price=1), "WR")
        duplicate = _make_player("WR", team="MIA", name="Same Guy", price=1)
        assert stack_bonus(team, duplicate) == 1

    def test_empty_roster_has_no_bonus(self):
        assert stack_bonus(_make_team(), _make_player("QB")) == 0
