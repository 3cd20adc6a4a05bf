"""Tests for draft data models - snake order, board cells, teams, draft instance."""

import pytest

from src.contest_draft.models import (
    DraftInstance,
    Pick,
    Player,
    RoomEntry,
    Team,
    build_snake_order,
)


# ── Helpers ──────────────────────────────────────────────────────────


def _make_entries(count=5, positions=None):
    positions = positions if positions is not None else list(range(count))
    return [
        RoomEntry(entry_id=100 + i, user_id=f"u{i}", username=f"user{i}", draft_position=pos)
        for i, pos in enumerate(positions)
    ]


def _make_player(name="RB-3", position="RB", original=None, price=3):
    return Player(
        name=name,
        team="KC",
        position=position,
        original_position=original or position,
        price=price,
    )


# ── Snake order ──────────────────────────────────────────────────────


class TestSnakeOrder:
    def test_five_teams_five_rounds(self):
        order = build_snake_order(5, 5)
        assert len(order) == 25
        assert order[:10] == [0, 1, 2, 3, 4, 4, 3, 2, 1, 0]
        assert order[20:] == [0, 1, 2, 3, 4]

    def test_every_team_picks_once_per_round(self):
        order = build_snake_order(5, 5)
        for r in range(5):
            assert sorted(order[r * 5:(r + 1) * 5]) == [0, 1, 2, 3, 4]

    def test_round_direction_alternates(self):
        order = build_snake_order(4, 3)
        assert order[0:4] == [0, 1, 2, 3]
        assert order[4:8] == [3, 2, 1, 0]
        assert order[8:12] == [0, 1, 2, 3]

    def test_rejects_zero_teams(self):
        with pytest.raises(ValueError):
            build_snake_order(0, 5)


# ── Player cells ─────────────────────────────────────────────────────


class TestPlayerFromCell:
    def test_snake_case_original_position(self):
        player = Player.from_cell(
            {"name": "A", "team": "KC", "position": "FLEX", "original_position": "QB", "price": 2}
        )
        assert player.position == "FLEX"
        assert player.original_position == "QB"

    def test_camel_case_original_position(self):
        player = Player.from_cell(
            {"name": "A", "team": "KC", "position": "FLEX", "originalPosition": "TE", "price": 1}
        )
        assert player.original_position == "TE"

    def test_missing_original_uses_display_position(self):
        player = Player.from_cell({"name": "A", "team": "KC", "position": "WR", "price": 4})
        assert player.original_position == "WR"
        assert player.drafted is False

    def test_flex_without_true_position_rejected(self):
        with pytest.raises(ValueError, match="no true position"):
            Player.from_cell({"name": "A", "position": "FLEX", "price": 3})

    def test_price_out_of_range_rejected(self):
        with pytest.raises(ValueError, match="price"):
            Player.from_cell({"name": "A", "position": "RB", "price": 7})

    def test_drafted_by_accepts_camel_case(self):
        player = Player.from_cell(
            {"name": "A", "position": "RB", "price": 1, "drafted": True, "draftedBy": 3}
        )
        assert player.drafted is True
        assert player.drafted_by == 3


# ── Team ─────────────────────────────────────────────────────────────


class TestTeam:
    def test_new_team_has_full_budget_and_empty_roster(self):
        team = Team.from_entry(_make_entries(1)[0])
        assert team.budget == 15
        assert team.empty_slots() == ["QB", "RB", "WR", "TE", "FLEX"]

    def test_add_player_charges_budget(self):
        team = Team.from_entry(_make_entries(1)[0])
        team.add_player(_make_player(price=4), "RB")
        assert team.budget == 11
        assert team.spent() == 4
        assert "RB" not in team.empty_slots()

    def test_add_player_over_budget_raises(self):
        team = Team.from_entry(_make_entries(1)[0])
        team.budget = 2
        with pytest.raises(ValueError):
            team.add_player(_make_player(price=3), "RB")
        assert team.roster["RB"] is None


# ── Draft instance ───────────────────────────────────────────────────


class TestDraftInstance:
    def test_create_new_orders_teams_by_position(self, board):
        entries = _make_entries(5, positions=[3, 0, 4, 1, 2])
        draft = DraftInstance.create_new("room", "contest", "cash", entries, board)
        assert [t.draft_position for t in draft.teams] == [0, 1, 2, 3, 4]
        assert draft.teams[0].user_id == "u1"
        assert len(draft.draft_order) == 25

    def test_board_cells_become_players(self, board):
        draft = DraftInstance.create_new("room", "contest", "cash", _make_entries(), board)
        wildcard = draft.player_at(5, 0)
        assert isinstance(wildcard, Player)
        assert wildcard.position == "FLEX"
        assert wildcard.original_position == "QB"

    def test_empty_cells_preserved(self, board):
        board[2][3] = None
        draft = DraftInstance.create_new("room", "contest", "cash", _make_entries(), board)
        assert draft.player_at(2, 3) is None

    def test_player_at_out_of_range(self, board):
        draft = DraftInstance.create_new("room", "contest", "cash", _make_entries(), board)
        assert draft.player_at(6, 0) is None
        assert draft.player_at(0, 5) is None
        assert draft.player_at(-1, 0) is None

    def test_current_team_follows_snake(self, board):
        draft = DraftInstance.create_new("room", "contest", "cash", _make_entries(), board)
        assert draft.current_team().user_id == "u0"
        draft.current_turn = 5
        assert draft.current_team().user_id == "u4"
        assert draft.current_round == 2

    def test_finished_draft_has_no_current_team(self, board):
        draft = DraftInstance.create_new("room", "contest", "cash", _make_entries(), board)
        draft.current_turn = 25
        assert draft.is_finished
        assert draft.current_team() is None

    def test_requires_entries(self, board):
        with pytest.raises(ValueError):
            DraftInstance.create_new("room", "contest", "cash", [], board)


class TestPick:
    def test_skip_is_flagged(self):
        pick = Pick.skip(team_index=2, pick_number=7, reason="no_valid_pick")
        assert pick.skipped is True
        assert pick.is_auto_pick is True
        assert pick.player is None
        assert pick.reason == "no_valid_pick"
