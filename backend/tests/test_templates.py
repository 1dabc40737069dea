"""Tests for building sessions from templates and copies."""

from tabledraft.engine import DraftEngine
from tabledraft.models import (
    SessionMode,
    SessionTemplate,
    SessionType,
    Stage,
    TemplateGame,
    TemplatePlayer,
)
from tabledraft.templates import (
    default_template,
    metadata_from_state,
    reset_copy,
    snapshot_from_template,
)


def _template(**kwargs) -> SessionTemplate:
    data = dict(
        name="Game night",
        players=[TemplatePlayer(name="Ann"), TemplatePlayer(name="Bo")],
        games=[
            TemplateGame(title="Azul", max_players=4),
            TemplateGame(title="Dune", max_players=6),
            TemplateGame(title="Root", max_players=4),
        ],
        player_picks={"Ann": [0, 1], "Bo": [1, 1]},
    )
    data.update(kwargs)
    return SessionTemplate(**data)


class TestSnapshotFromTemplate:
    def test_players_games_and_picks(self):
        state = snapshot_from_template(_template())
        titles = {g.id: g.title for g in state.all_games}
        ann, bo = state.players
        assert [titles[g] for g in ann.picks] == ["Azul", "Dune"]
        assert [titles[g] for g in bo.picks] == ["Dune", "Dune"]
        assert state.turn_order == [ann.id, bo.id]

    def test_available_games_are_picked_games(self):
        state = snapshot_from_template(_template())
        assert [g.title for g in state.available_games] == ["Azul", "Dune"]

    def test_setup_with_pick_pair_and_initial_round(self):
        state = snapshot_from_template(_template())
        assert state.stage == Stage.SETUP
        assert state.mode == SessionMode.PICK
        assert [t.id for t in state.tables] == ["pick-table-1", "pick-table-2"]
        assert len(state.rounds) == 1
        assert len(state.rounds[0].table_states) == 2

    def test_bad_pick_indexes_and_names_ignored(self):
        state = snapshot_from_template(
            _template(player_picks={"Ann": [0, 7], "Nobody": [0, 1]})
        )
        assert len(state.players[0].picks) == 1
        assert state.players[1].picks == []

    def test_template_session_is_ready_to_play(self):
        e = DraftEngine(snapshot_from_template(_template()))
        assert e.can_start_first_round()
        ann = e.state.players[0]
        assert e.place_game(ann.picks[0], "pick-table-1", ann.id)

    def test_freeform_starts_in_adhoc_mode(self):
        state = snapshot_from_template(_template(session_type=SessionType.FREEFORM))
        assert state.mode == SessionMode.ADHOC
        assert all(p.picks == [] for p in state.players)
        assert [t.id for t in state.tables if t.mode == SessionMode.ADHOC] == [
            "adhoc-table-1"
        ]

    def test_default_template(self):
        tpl = default_template("Friday")
        assert tpl.name == "Friday"
        assert len(tpl.players) == 4
        assert len(tpl.games) == 4
        assert tpl.player_picks == {}


class TestResetCopy:
    def test_copy_goes_back_to_setup(self):
        e = DraftEngine(snapshot_from_template(_template()))
        ann, bo = e.state.players
        e.place_game(ann.picks[0], "pick-table-1", ann.id)
        e.place_game(bo.picks[0], "pick-table-2", bo.id)
        e.create_new_round()

        state = reset_copy(e.state)
        assert state.stage == Stage.SETUP
        assert len(state.rounds) == 1
        assert state.current_round_index == 0
        assert all(t.is_empty for t in state.tables)
        assert all(p.selections_made == 0 for p in state.players)
        # Source is untouched.
        assert len(e.state.rounds) == 2


class TestMetadata:
    def test_counts(self):
        state = snapshot_from_template(_template())
        meta = metadata_from_state("s1", "Game night", state, created_at=10.0)
        assert meta.player_count == 2
        assert meta.game_count == 3
        assert meta.current_round == 1
        assert meta.created_at == 10.0
        assert not meta.is_completed
