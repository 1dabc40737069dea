"""Core draft engine for table-drafting sessions.

Owns the authoritative session snapshot and every state transition on it:
turn order, game placement and seating, the round lifecycle, and the two
table arenas (fixed Pick tables and free Ad-hoc tables).

Every public mutating method runs as a transaction: it works on a deep copy
of the snapshot and only replaces ``self.state`` when it succeeds.  Rule
violations never escape as exceptions; the method returns ``False`` (or
``None`` for methods that return a new id) and ``last_error`` says why.
"""

from __future__ import annotations

import functools
import logging
import random
import time
import uuid
from typing import Any, Callable, Optional

from tabledraft import turns
from tabledraft.models import (
    Game,
    GameSessionRecord,
    LibraryGame,
    Player,
    Round,
    SessionMode,
    SessionSnapshot,
    SessionType,
    Stage,
    Table,
    TableState,
)

logger = logging.getLogger(__name__)

PICK_TABLE_COUNT = 2
PICKS_PER_PLAYER = 2
DEFAULT_MAX_PLAYERS = 4  # used when a seated game's record is missing

PLAYER_ICONS: list[str] = [
    "🐯", "🐼", "🦁", "🦊", "🐸", "🐱", "🐶", "🐺",
    "🐻", "🐰", "🐹", "🐭", "🐷", "🐮", "🐵",
]

_UNSET: Any = object()


class RuleViolation(ValueError):
    """A precondition of an engine operation does not hold."""


def operation(failure: Any = False) -> Callable:
    """Run an engine method against a working copy of the snapshot.

    On success the live round is re-mirrored from the tables and the copy
    becomes the new state.  A ``RuleViolation`` discards the copy and
    returns *failure* instead.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(self: DraftEngine, *args: Any, **kwargs: Any) -> Any:
            original = self.state
            self.state = original.model_copy(deep=True)
            try:
                result = func(self, *args, **kwargs)
            except RuleViolation as exc:
                self.state = original
                self.last_error = str(exc)
                logger.debug("%s rejected: %s", func.__name__, exc)
                return failure
            except Exception:
                self.state = original
                raise
            self._sync_live_round()
            self.last_error = None
            return True if result is None else result

        return wrapper

    return decorator


class DraftEngine:
    """Manages a single drafting session."""

    def __init__(self, state: Optional[SessionSnapshot] = None) -> None:
        self.state: SessionSnapshot = state if state is not None else SessionSnapshot()
        self.last_error: Optional[str] = None

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def _find_player(self, player_id: str) -> Optional[Player]:
        for p in self.state.players:
            if p.id == player_id:
                return p
        return None

    def _find_table(self, table_id: str) -> Optional[Table]:
        for t in self.state.tables:
            if t.id == table_id:
                return t
        return None

    def _find_game(self, game_id: Optional[str]) -> Optional[Game]:
        for g in self.state.all_games:
            if g.id == game_id:
                return g
        return None

    def _require_player(self, player_id: str) -> Player:
        player = self._find_player(player_id)
        if player is None:
            raise RuleViolation("Player not found")
        return player

    def _require_table(self, table_id: str) -> Table:
        table = self._find_table(table_id)
        if table is None:
            raise RuleViolation("Table not found")
        return table

    def _require_playable(self, table: Table) -> None:
        if table.mode != self.state.mode:
            raise RuleViolation(f"Table belongs to {table.mode.value} mode")

    def tables_in(self, mode: SessionMode) -> list[Table]:
        return [t for t in self.state.tables if t.mode == mode]

    @property
    def pick_tables(self) -> list[Table]:
        return self.tables_in(SessionMode.PICK)

    @property
    def adhoc_tables(self) -> list[Table]:
        return self.tables_in(SessionMode.ADHOC)

    def current_mode_tables(self) -> list[Table]:
        return self.tables_in(self.state.mode)

    def _seated_table(self, player_id: str, mode: SessionMode) -> Optional[Table]:
        """The table in *mode*'s arena where the player sits, if any."""
        for t in self.tables_in(mode):
            if player_id in t.seated_player_ids:
                return t
        return None

    def _max_players(self, table: Table) -> int:
        game = self._find_game(table.game_id)
        return game.max_players if game else DEFAULT_MAX_PLAYERS

    def _done_ids(self) -> set[str]:
        return {p.id for p in self.state.players if p.is_done_for_round}

    @property
    def live_round(self) -> Optional[Round]:
        idx = self.state.current_round_index
        if 0 <= idx < len(self.state.rounds):
            return self.state.rounds[idx]
        return None

    @property
    def current_player_id(self) -> Optional[str]:
        order = self.state.turn_order
        idx = self.state.current_player_turn_index
        if 0 <= idx < len(order):
            return order[idx]
        return None

    def _any_picks_left(self) -> bool:
        return any(p.picks for p in self.state.players)

    def is_round_complete(self) -> bool:
        """Every Pick table has a game and every active player is seated."""
        tables = self.pick_tables
        if not tables or not self.state.players:
            return False
        if any(t.game_id is None for t in tables):
            return False
        seated = {pid for t in tables for pid in t.seated_player_ids}
        return all(
            p.id in seated for p in self.state.players if not p.opted_out_of_round
        )

    def can_start_first_round(self) -> bool:
        s = self.state
        if s.stage != Stage.SETUP:
            return False
        if s.session_type == SessionType.FREEFORM or s.mode == SessionMode.ADHOC:
            return len(s.players) >= 1
        return len(s.players) >= 2 and all(
            len(p.picks) == PICKS_PER_PLAYER for p in s.players
        )

    def can_create_next_round(self) -> bool:
        live = self.live_round
        return (
            live is not None
            and live.completed
            and self.state.stage != Stage.COMPLETE
        )

    # ------------------------------------------------------------------
    # Internal state helpers
    # ------------------------------------------------------------------

    def _sync_live_round(self) -> None:
        """Regenerate the live round's table states from ``tables``."""
        live = self.live_round
        if live is not None:
            live.table_states = [TableState.from_table(t) for t in self.state.tables]

    def _new_round(self) -> Round:
        return Round(
            id=str(uuid.uuid4()),
            table_states=[TableState.from_table(t) for t in self.state.tables],
        )

    def _ensure_live_round(self) -> Round:
        live = self.live_round
        if live is None:
            if self.state.rounds:
                raise RuleViolation("No round in progress")
            self.state.rounds = [self._new_round()]
            self.state.current_round_index = 0
            self.state.viewing_round_index = 0
            self.state.is_viewing_history = False
            live = self.state.rounds[0]
        return live

    def _advance_turn(self) -> bool:
        s = self.state
        nxt = turns.next_turn_index(
            s.turn_order, self._done_ids(), s.current_player_turn_index
        )
        if nxt is None:
            logger.debug("Every player has acted; turn pointer stays at %d",
                         s.current_player_turn_index)
            return False
        s.current_player_turn_index = nxt
        return True

    def _check_round_complete(self) -> None:
        live = self.live_round
        if live is None or live.completed or not self.is_round_complete():
            return
        live.completed = True
        logger.info("Round %d complete", self.state.current_round_index + 1)

    def _finish_drafting(self) -> None:
        self.state.stage = Stage.COMPLETE
        self.state.drafting_complete = True
        logger.info("All picks exhausted; drafting complete")

    def _refresh_available_games(self) -> None:
        """Rebuild ``available_games`` from the picks still held by players."""
        held = {gid for p in self.state.players for gid in p.picks}
        self.state.available_games = [
            g for g in self.state.all_games if g.id in held
        ]

    def _reconcile_pick_tables(self) -> bool:
        """Hold the Pick arena at exactly PICK_TABLE_COUNT tables."""
        pick = self.pick_tables
        if len(pick) == PICK_TABLE_COUNT:
            return False
        if any(not t.is_empty for t in pick):
            logger.warning(
                "Discarding %d pick table(s) with games to restore the fixed pair",
                sum(1 for t in pick if not t.is_empty),
            )
        fresh = [
            Table(id=f"pick-table-{i + 1}", mode=SessionMode.PICK)
            for i in range(PICK_TABLE_COUNT)
        ]
        self.state.tables = fresh + self.adhoc_tables
        return True

    # ------------------------------------------------------------------
    # Turn Engine
    # ------------------------------------------------------------------

    @operation()
    def advance_turn(self) -> None:
        """Move the pointer to the next player who has not acted yet."""
        if not self.state.turn_order:
            raise RuleViolation("No players in turn order")
        if not self._advance_turn():
            raise RuleViolation("Every player has acted this round")

    @operation()
    def pass_turn(self) -> None:
        """Hand the turn on without marking the current player as acted."""
        if not self.state.turn_order:
            raise RuleViolation("No players in turn order")
        if not self._advance_turn():
            raise RuleViolation("Every player has acted this round")

    @operation()
    def update_turn_order(self, new_order: list[str]) -> None:
        s = self.state
        if not turns.is_permutation(new_order, [p.id for p in s.players]):
            raise RuleViolation("Turn order must contain every player exactly once")
        s.turn_order = list(new_order)
        s.current_player_turn_index = turns.settle_index(
            s.turn_order, self._done_ids(), s.current_player_turn_index
        )
        self._check_round_complete()

    # ------------------------------------------------------------------
    # Placement Rules
    # ------------------------------------------------------------------

    @operation()
    def place_game(
        self,
        game_id: str,
        table_id: str,
        player_id: str,
        pick_index: Optional[int] = None,
    ) -> None:
        """Place one of the player's picks on an empty Pick table."""
        s = self.state
        game = self._find_game(game_id)
        if game is None:
            raise RuleViolation("Game not found")
        table = self._require_table(table_id)
        player = self._require_player(player_id)

        if table.mode != SessionMode.PICK:
            raise RuleViolation("Picks can only be placed on pick tables")
        self._require_playable(table)
        if table.game_id is not None:
            raise RuleViolation("Table already has a game")
        if any(t.placed_by_player_id == player_id for t in self.pick_tables):
            raise RuleViolation("Player has already placed a game this round")
        seated_at = self._seated_table(player_id, SessionMode.PICK)
        if seated_at is not None and seated_at.id != table_id:
            raise RuleViolation("Player is already seated at another table")

        if pick_index is None:
            if game_id not in player.picks:
                raise RuleViolation("Game is not one of the player's picks")
            pick_index = player.picks.index(game_id)
        elif not 0 <= pick_index < len(player.picks) or player.picks[pick_index] != game_id:
            raise RuleViolation("Pick index does not match the game")

        if s.stage == Stage.SETUP and not all(
            len(p.picks) == PICKS_PER_PLAYER for p in s.players
        ):
            raise RuleViolation(
                f"Every player needs exactly {PICKS_PER_PLAYER} picks before placing"
            )

        live = self._ensure_live_round()
        if s.stage == Stage.SETUP:
            s.stage = Stage.FIRST_ROUND
            logger.info("First placement; round 1 under way")

        table.game_id = game_id
        table.seated_player_ids = [player_id]
        table.placed_by_player_id = player_id
        table.game_session = GameSessionRecord(game_picked_at=time.time())

        del player.picks[pick_index]
        player.selections_made += 1
        player.action_taken_in_current_round = True

        if not any(game_id in p.picks for p in s.players):
            s.available_games = [g for g in s.available_games if g.id != game_id]

        self._advance_turn()
        self._check_round_complete()

    @operation()
    def join_game(self, table_id: str, player_id: str) -> None:
        """Seat a player at a table that already has a game."""
        table = self._require_table(table_id)
        player = self._require_player(player_id)
        self._require_playable(table)

        if table.game_id is None:
            raise RuleViolation("Table has no game")
        if player_id in table.seated_player_ids:
            raise RuleViolation("Player is already seated at this table")
        if self._seated_table(player_id, table.mode) is not None:
            raise RuleViolation("Player is already seated at another table")
        if len(table.seated_player_ids) >= self._max_players(table):
            raise RuleViolation("Table is full")

        table.seated_player_ids.append(player_id)
        if table.mode == SessionMode.ADHOC:
            return

        player.selections_made += 1
        player.action_taken_in_current_round = True
        self._check_round_complete()
        self._advance_turn()

    @operation()
    def reset_round(self) -> None:
        """Undo every placement of the live round and hand picks back."""
        s = self.state
        if s.stage == Stage.COMPLETE:
            raise RuleViolation("Session is complete")
        live = self.live_round
        if live is None:
            raise RuleViolation("No round in progress")

        for table in self.pick_tables:
            if table.game_id is not None and table.placed_by_player_id:
                placer = self._find_player(table.placed_by_player_id)
                if placer is not None:
                    placer.picks.append(table.game_id)
                game = self._find_game(table.game_id)
                if game is not None and all(g.id != game.id for g in s.available_games):
                    s.available_games.append(game)
            table.clear()

        for p in s.players:
            p.action_taken_in_current_round = False
            p.opted_out_of_round = False
            p.selections_made = 0

        live.completed = False
        s.current_player_turn_index = 0
        s.viewing_round_index = s.current_round_index
        s.is_viewing_history = False

    @operation()
    def place_library_game(
        self, library_game: Optional[LibraryGame], table_id: str
    ) -> None:
        """Put a catalog game straight onto an empty Ad-hoc table."""
        if library_game is None:
            raise RuleViolation("Game not found in library")
        if not library_game.is_active:
            raise RuleViolation("Game is not active in the library")
        table = self._require_table(table_id)
        if table.mode != SessionMode.ADHOC:
            raise RuleViolation("Library games can only be placed on ad-hoc tables")
        self._require_playable(table)
        if table.game_id is not None:
            raise RuleViolation("Table already has a game")

        if self._find_game(library_game.id) is None:
            self.state.all_games.append(library_game.to_game())
        table.game_id = library_game.id
        table.seated_player_ids = []
        table.placed_by_player_id = None
        table.game_session = GameSessionRecord(game_picked_at=time.time())

    # ------------------------------------------------------------------
    # Round Lifecycle
    # ------------------------------------------------------------------

    @operation()
    def start_first_round(self) -> None:
        s = self.state
        if not self.can_start_first_round():
            raise RuleViolation("Session is not ready to start")
        for t in self.pick_tables:
            t.clear()
        s.rounds = [self._new_round()]
        s.current_round_index = 0
        s.viewing_round_index = 0
        s.is_viewing_history = False
        s.current_player_turn_index = turns.settle_index(s.turn_order, self._done_ids(), 0)
        s.stage = Stage.FIRST_ROUND
        logger.info("Round 1 started with %d player(s)", len(s.players))

    @operation()
    def create_new_round(self) -> None:
        s = self.state
        if s.stage not in (Stage.FIRST_ROUND, Stage.SUBSEQUENT_ROUNDS):
            raise RuleViolation(f"Cannot create a round during {s.stage.value}")
        if not self.can_create_next_round():
            raise RuleViolation("Current round is not complete")

        self.live_round.completed = True
        if not self._any_picks_left():
            # Last round stays live with its tables as the final record.
            self._finish_drafting()
            return

        for t in self.pick_tables:
            t.clear()
        for p in s.players:
            p.action_taken_in_current_round = False
            p.opted_out_of_round = False

        s.turn_order = turns.rotate(s.turn_order)
        s.current_player_turn_index = 0
        s.rounds.append(self._new_round())
        s.current_round_index += 1
        s.viewing_round_index = s.current_round_index
        s.is_viewing_history = False
        s.stage = Stage.SUBSEQUENT_ROUNDS
        logger.info("Round %d started", s.current_round_index + 1)

    # ------------------------------------------------------------------
    # History navigation
    # ------------------------------------------------------------------

    def _view(self, index: int) -> None:
        s = self.state
        if not 0 <= index < len(s.rounds):
            raise RuleViolation("Invalid round index")
        s.viewing_round_index = index
        s.is_viewing_history = index != s.current_round_index

    @operation()
    def view_round(self, round_index: int) -> None:
        self._view(round_index)

    @operation()
    def view_previous_round(self) -> None:
        self._view(self.state.viewing_round_index - 1)

    @operation()
    def view_next_round(self) -> None:
        self._view(self.state.viewing_round_index + 1)

    @operation()
    def return_to_current_round(self) -> None:
        self.state.viewing_round_index = self.state.current_round_index
        self.state.is_viewing_history = False

    # ------------------------------------------------------------------
    # Mode Partitioning
    # ------------------------------------------------------------------

    @operation()
    def ensure_pick_mode_tables(self) -> None:
        self._reconcile_pick_tables()

    @operation()
    def set_mode(self, mode: SessionMode) -> None:
        try:
            self.state.mode = SessionMode(mode)
        except ValueError:
            raise RuleViolation("Unknown mode")
        self._reconcile_pick_tables()

    @operation()
    def toggle_mode(self) -> None:
        if self.state.mode == SessionMode.PICK:
            self.state.mode = SessionMode.ADHOC
        else:
            self.state.mode = SessionMode.PICK
        self._reconcile_pick_tables()

    @operation(failure=None)
    def add_table(self) -> str:
        """Add an empty Ad-hoc table and return its id."""
        table = Table(id=f"adhoc-table-{uuid.uuid4().hex[:8]}", mode=SessionMode.ADHOC)
        self.state.tables.append(table)
        return table.id

    @operation()
    def remove_table(self, table_id: str) -> None:
        table = self._require_table(table_id)
        if table.mode != SessionMode.ADHOC:
            raise RuleViolation("Pick tables cannot be removed")
        if table.seated_player_ids:
            raise RuleViolation("Table still has seated players")
        if len(self.state.tables) <= 1:
            raise RuleViolation("Cannot remove the last table")
        self.state.tables = [t for t in self.state.tables if t.id != table_id]

    # ------------------------------------------------------------------
    # Player roster
    # ------------------------------------------------------------------

    def _check_name(self, name: str, player_id: Optional[str] = None) -> str:
        name = name.strip()
        if not name:
            raise RuleViolation("Player name cannot be empty")
        for p in self.state.players:
            if p.id != player_id and p.name.lower() == name.lower():
                raise RuleViolation("A player with this name already exists")
        return name

    @operation(failure=None)
    def add_player(self, name: str, icon: Optional[str] = None) -> str:
        s = self.state
        name = self._check_name(name)
        if not icon:
            used = {p.icon for p in s.players}
            unused = [i for i in PLAYER_ICONS if i not in used]
            icon = unused[0] if unused else random.choice(PLAYER_ICONS)
        player = Player(id=str(uuid.uuid4()), name=name, icon=icon)
        s.players.append(player)
        s.turn_order.append(player.id)
        return player.id

    @operation()
    def remove_player(self, player_id: str) -> None:
        s = self.state
        self._require_player(player_id)
        if any(player_id in t.seated_player_ids for t in s.tables):
            raise RuleViolation("Cannot remove a player who is seated at a table")
        if len(s.players) <= 1:
            raise RuleViolation("Cannot remove the last player")

        removed_idx = s.turn_order.index(player_id) if player_id in s.turn_order else -1
        s.players = [p for p in s.players if p.id != player_id]
        s.turn_order = [pid for pid in s.turn_order if pid != player_id]

        current = s.current_player_turn_index
        if 0 <= removed_idx <= current and current > 0:
            current -= 1
        if current >= len(s.turn_order):
            current = 0
        s.current_player_turn_index = current
        self._refresh_available_games()

    @operation()
    def update_player(
        self, player_id: str, name: Optional[str] = None, icon: Optional[str] = None
    ) -> None:
        player = self._require_player(player_id)
        if name is not None:
            player.name = self._check_name(name, player_id)
        if icon:
            player.icon = icon

    @operation()
    def update_player_picks(self, player_id: str, games: list[Game]) -> None:
        """Replace a player's picks with the given game records."""
        player = self._require_player(player_id)
        if len(games) != PICKS_PER_PLAYER:
            raise RuleViolation(f"Player must have exactly {PICKS_PER_PLAYER} picks")
        for game in games:
            if self._find_game(game.id) is None:
                self.state.all_games.append(game)
        player.picks = [g.id for g in games]
        self._refresh_available_games()

    @operation()
    def set_opt_out(self, player_id: str, opted_out: bool = True) -> None:
        """Sit a player out of (or back into) the live round."""
        player = self._require_player(player_id)
        player.opted_out_of_round = opted_out
        if opted_out and self.current_player_id == player_id:
            self._advance_turn()
        self._check_round_complete()

    # ------------------------------------------------------------------
    # Game session records
    # ------------------------------------------------------------------

    @operation()
    def update_game_session(
        self,
        table_id: str,
        round_index: int,
        winner_id: Optional[str] = _UNSET,
        game_started_at: Optional[float] = _UNSET,
        game_ended_at: Optional[float] = _UNSET,
    ) -> None:
        """Edit the winner and play times recorded for a table in a round."""
        s = self.state
        if not 0 <= round_index < len(s.rounds):
            raise RuleViolation("Invalid round index")

        if round_index == s.current_round_index:
            target: Any = self._require_table(table_id)
        else:
            target = next(
                (ts for ts in s.rounds[round_index].table_states if ts.id == table_id),
                None,
            )
            if target is None:
                raise RuleViolation("Table not found in that round")

        if target.game_id is None:
            raise RuleViolation("Table has no game")

        record = (target.game_session or GameSessionRecord()).model_copy()
        if winner_id is not _UNSET:
            if winner_id is not None and winner_id not in target.seated_player_ids:
                raise RuleViolation("Winner must be seated at the table")
            record.winner_id = winner_id
        if game_started_at is not _UNSET:
            record.game_started_at = game_started_at
        if game_ended_at is not _UNSET:
            record.game_ended_at = game_ended_at
        if (
            record.game_started_at is not None
            and record.game_ended_at is not None
            and record.game_ended_at < record.game_started_at
        ):
            raise RuleViolation("Game cannot end before it starts")
        target.game_session = record

    # ------------------------------------------------------------------
    # Views & serialization
    # ------------------------------------------------------------------

    def build_view(self) -> dict[str, Any]:
        """Snapshot plus the derived values a client needs to render it."""
        data = self.to_dict()
        data.update(
            {
                "current_player_id": self.current_player_id,
                "current_mode_table_ids": [t.id for t in self.current_mode_tables()],
                "round_complete": self.is_round_complete(),
                "can_start_first_round": self.can_start_first_round(),
                "can_create_next_round": self.can_create_next_round(),
            }
        )
        return data

    def to_dict(self) -> dict[str, Any]:
        """Serialize the snapshot for Redis storage."""
        return self.state.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DraftEngine:
        """Restore an engine from storage and reconcile the Pick arena."""
        engine = cls(SessionSnapshot.model_validate(data))
        if engine._reconcile_pick_tables():
            engine._sync_live_round()
        return engine
