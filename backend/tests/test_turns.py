"""Tests for turn pointer movement: forward scan, wrap, passing."""

import random

import pytest

from tabledraft.engine import DraftEngine
from tabledraft.models import Game, Player, SessionSnapshot, Table, SessionMode
from tabledraft.turns import is_permutation, next_turn_index, rotate, settle_index


# ── Helpers ──────────────────────────────────────────────────────────

def _make_engine(n_players: int = 3) -> DraftEngine:
    """Engine with n_players, two picks each, and the Pick table pair."""
    games = [Game(id=f"g{i}", title=f"Game{i}", max_players=4) for i in range(2 * n_players)]
    players = [
        Player(id=f"p{i}", name=f"Player{i}", picks=[f"g{i}", f"g{i + n_players}"])
        for i in range(n_players)
    ]
    return DraftEngine(
        SessionSnapshot(
            players=players,
            all_games=games,
            available_games=list(games),
            tables=[
                Table(id="pick-table-1", mode=SessionMode.PICK),
                Table(id="pick-table-2", mode=SessionMode.PICK),
            ],
            turn_order=[p.id for p in players],
        )
    )


# ── next_turn_index ──────────────────────────────────────────────────

class TestNextTurnIndex:
    def test_moves_forward(self):
        assert next_turn_index(["a", "b", "c"], set(), 0) == 1

    def test_wraps_to_front(self):
        assert next_turn_index(["a", "b", "c"], set(), 2) == 0

    def test_skips_acted_player(self):
        assert next_turn_index(["a", "b", "c"], {"b"}, 0) == 2

    def test_skipped_player_does_not_send_pointer_back(self):
        # A acted, B acted, C has not: C is next, not A.
        assert next_turn_index(["A", "B", "C"], {"A", "B"}, 0) == 2

    def test_returns_current_when_only_it_remains(self):
        assert next_turn_index(["a", "b", "c"], {"a", "c"}, 1) == 1

    def test_exhausted_round(self):
        assert next_turn_index(["a", "b"], {"a", "b"}, 0) is None

    def test_empty_order(self):
        assert next_turn_index([], set(), 0) is None

    def test_out_of_range_current_wraps(self):
        assert next_turn_index(["a", "b", "c"], set(), 5) == 0

    @pytest.mark.parametrize("seed", range(20))
    def test_randomized_pass_and_act(self, seed):
        """Random act/pass sequences never land on a done player."""
        rng = random.Random(seed)
        n = rng.randint(1, 7)
        order = [f"p{i}" for i in range(n)]
        done: set[str] = set()
        current = 0
        for _ in range(4 * n):
            if rng.random() < 0.5:
                done.add(order[current])
            nxt = next_turn_index(order, done, current)
            if len(done) == n:
                assert nxt is None
                break
            assert nxt is not None
            assert order[nxt] not in done
            # The first not-done player scanning forward from current + 1.
            expected = next(
                (current + k) % n
                for k in range(1, n + 1)
                if order[(current + k) % n] not in done
            )
            assert nxt == expected
            current = nxt


class TestHelpers:
    def test_settle_keeps_undone_index(self):
        assert settle_index(["a", "b"], set(), 1) == 1

    def test_settle_clamps(self):
        assert settle_index(["a", "b"], set(), 9) == 1

    def test_settle_moves_off_done_player(self):
        assert settle_index(["a", "b", "c"], {"b"}, 1) == 2

    def test_settle_all_done_unchanged(self):
        assert settle_index(["a", "b"], {"a", "b"}, 1) == 1

    def test_permutation(self):
        assert is_permutation(["b", "a"], ["a", "b"])
        assert not is_permutation(["a", "a"], ["a", "b"])
        assert not is_permutation(["a"], ["a", "b"])
        assert not is_permutation(["a", "c"], ["a", "b"])

    def test_rotate(self):
        assert rotate(["a", "b", "c"]) == ["b", "c", "a"]
        assert rotate([]) == []


# ── Engine turn operations ───────────────────────────────────────────

class TestPassTurn:
    def test_pass_moves_pointer_without_acting(self):
        e = _make_engine(3)
        assert e.pass_turn() is True
        assert e.state.current_player_turn_index == 1
        assert not any(p.action_taken_in_current_round for p in e.state.players)

    def test_pass_wraps(self):
        e = _make_engine(3)
        e.state.current_player_turn_index = 2
        assert e.pass_turn()
        assert e.current_player_id == "p0"

    def test_passed_player_comes_back(self):
        e = _make_engine(3)
        e.pass_turn()  # p0 passes
        e.state.players[1].action_taken_in_current_round = True
        e.advance_turn()  # p1 acted -> p2
        assert e.current_player_id == "p2"
        e.pass_turn()  # p2 passes -> back to p0
        assert e.current_player_id == "p0"

    def test_pass_rejected_when_everyone_acted(self):
        e = _make_engine(2)
        for p in e.state.players:
            p.action_taken_in_current_round = True
        assert e.pass_turn() is False
        assert e.state.current_player_turn_index == 0
        assert e.last_error

    def test_advance_rejected_without_players(self):
        e = DraftEngine()
        assert e.advance_turn() is False
        assert "No players" in e.last_error

    def test_advance_skips_opted_out(self):
        e = _make_engine(3)
        e.state.players[1].opted_out_of_round = True
        assert e.advance_turn()
        assert e.current_player_id == "p2"


class TestUpdateTurnOrder:
    def test_reorder(self):
        e = _make_engine(3)
        assert e.update_turn_order(["p2", "p0", "p1"])
        assert e.state.turn_order == ["p2", "p0", "p1"]
        assert e.current_player_id == "p2"

    def test_pointer_moves_off_acted_player(self):
        e = _make_engine(3)
        e.state.players[0].action_taken_in_current_round = True
        assert e.update_turn_order(["p0", "p2", "p1"])
        assert e.current_player_id == "p2"

    def test_pointer_clamped(self):
        e = _make_engine(3)
        e.state.current_player_turn_index = 2
        e.state.players[2].action_taken_in_current_round = True
        assert e.update_turn_order(["p1", "p0", "p2"])
        # Index 2 is p2 who has acted; next not-done wraps to p1.
        assert e.current_player_id == "p1"

    def test_rejects_missing_player(self):
        e = _make_engine(3)
        assert e.update_turn_order(["p0", "p1"]) is False
        assert e.state.turn_order == ["p0", "p1", "p2"]

    def test_rejects_duplicates(self):
        e = _make_engine(3)
        assert e.update_turn_order(["p0", "p0", "p1"]) is False

    def test_rejects_unknown_player(self):
        e = _make_engine(2)
        assert e.update_turn_order(["p0", "zz"]) is False


class TestOptOut:
    def test_opting_out_current_player_moves_turn(self):
        e = _make_engine(3)
        assert e.set_opt_out("p0", True)
        assert e.state.players[0].opted_out_of_round
        assert e.current_player_id == "p1"

    def test_opting_out_other_player_keeps_turn(self):
        e = _make_engine(3)
        assert e.set_opt_out("p2", True)
        assert e.current_player_id == "p0"

    def test_opt_back_in(self):
        e = _make_engine(2)
        e.set_opt_out("p1", True)
        assert e.set_opt_out("p1", False)
        assert not e.state.players[1].opted_out_of_round

    def test_unknown_player(self):
        e = _make_engine(2)
        assert e.set_opt_out("nope", True) is False
        assert e.last_error == "Player not found"
