"""Building new session snapshots from templates and existing sessions."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Optional

from tabledraft.engine import PICK_TABLE_COUNT
from tabledraft.models import (
    Game,
    Player,
    Round,
    SessionMetadata,
    SessionMode,
    SessionSnapshot,
    SessionTemplate,
    SessionType,
    Stage,
    Table,
    TableState,
    TemplateGame,
    TemplatePlayer,
)

logger = logging.getLogger(__name__)

DEFAULT_SESSION_NAME = "New Session"


def default_template(
    name: str = DEFAULT_SESSION_NAME,
    description: Optional[str] = None,
    session_type: SessionType = SessionType.PICKS,
) -> SessionTemplate:
    """Four players and four games, nobody has picked yet."""
    return SessionTemplate(
        name=name,
        description=description or "A new drafting session",
        session_type=session_type,
        players=[
            TemplatePlayer(name="Player 1", icon="🐯"),
            TemplatePlayer(name="Player 2", icon="🐼"),
            TemplatePlayer(name="Player 3", icon="🦁"),
            TemplatePlayer(name="Player 4", icon="🦊"),
        ],
        games=[
            TemplateGame(
                title="Bloodstones",
                max_players=4,
                link="https://boardgamegeek.com/boardgame/284587/bloodstones",
            ),
            TemplateGame(
                title="SETI",
                max_players=4,
                link="https://boardgamegeek.com/boardgame/418059/seti-search-for-extraterrestrial-intelligence",
            ),
            TemplateGame(
                title="Dune",
                max_players=6,
                link="https://boardgamegeek.com/boardgame/283355/dune",
            ),
            TemplateGame(
                title="Kemet",
                max_players=5,
                link="https://boardgamegeek.com/boardgame/297562/kemet-blood-and-sand",
            ),
        ],
    )


def _initial_round(tables: list[Table]) -> Round:
    return Round(
        id=str(uuid.uuid4()),
        table_states=[TableState.from_table(t) for t in tables],
    )


def snapshot_from_template(template: SessionTemplate) -> SessionSnapshot:
    """Create a SETUP-stage snapshot from a template.

    Picks are given as indexes into ``template.games`` keyed by player name;
    unknown names and out-of-range indexes are skipped.  Freeform sessions
    start in Ad-hoc mode with one empty Ad-hoc table next to the Pick pair.
    """
    players = [
        Player(id=str(uuid.uuid4()), name=p.name, icon=p.icon)
        for p in template.players
    ]
    games = [
        Game(
            id=str(uuid.uuid4()),
            title=g.title,
            max_players=g.max_players,
            link=g.link,
            image=g.image,
        )
        for g in template.games
    ]

    freeform = template.session_type == SessionType.FREEFORM
    if not freeform:
        by_name = {p.name: p for p in players}
        for player_name, indexes in template.player_picks.items():
            player = by_name.get(player_name)
            if player is None:
                logger.debug("Template picks for unknown player %r ignored", player_name)
                continue
            player.picks = [games[i].id for i in indexes if 0 <= i < len(games)]

    tables = [
        Table(id=f"pick-table-{i + 1}", mode=SessionMode.PICK)
        for i in range(PICK_TABLE_COUNT)
    ]
    if freeform:
        tables.append(Table(id="adhoc-table-1", mode=SessionMode.ADHOC))

    held = {gid for p in players for gid in p.picks}
    return SessionSnapshot(
        players=players,
        available_games=[g for g in games if g.id in held],
        all_games=games,
        tables=tables,
        rounds=[_initial_round(tables)],
        turn_order=[p.id for p in players],
        stage=Stage.SETUP,
        mode=SessionMode.ADHOC if freeform else SessionMode.PICK,
        session_type=template.session_type,
    )


def reset_copy(source: SessionSnapshot) -> SessionSnapshot:
    """Copy a session back to SETUP, keeping its roster, games and picks."""
    state = source.model_copy(deep=True)
    for table in state.tables:
        table.clear()
    for player in state.players:
        player.selections_made = 0
        player.action_taken_in_current_round = False
        player.opted_out_of_round = False
    state.rounds = [_initial_round(state.tables)]
    state.current_round_index = 0
    state.viewing_round_index = 0
    state.is_viewing_history = False
    state.current_player_turn_index = 0
    state.drafting_complete = False
    state.stage = Stage.SETUP
    return state


def metadata_from_state(
    session_id: str,
    name: str,
    state: SessionSnapshot,
    description: Optional[str] = None,
    created_at: Optional[float] = None,
) -> SessionMetadata:
    """Summarize a snapshot for session listings."""
    now = time.time()
    return SessionMetadata(
        id=session_id,
        name=name,
        description=description,
        created_at=created_at if created_at is not None else now,
        last_modified=now,
        player_count=len(state.players),
        game_count=len(state.all_games),
        current_round=state.current_round_index + 1,
        is_completed=state.drafting_complete,
        session_type=state.session_type,
    )
