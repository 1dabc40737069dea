"""Pydantic models for draft sessions: the entity snapshot and API payloads."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Stage(str, Enum):
    SETUP = "setup"
    FIRST_ROUND = "first_round"
    SUBSEQUENT_ROUNDS = "subsequent_rounds"
    COMPLETE = "complete"


class SessionMode(str, Enum):
    PICK = "pick"
    ADHOC = "adhoc"


class SessionType(str, Enum):
    PICKS = "picks"
    FREEFORM = "freeform"


# --- Entity models ---


class Game(BaseModel):
    id: str
    title: str
    max_players: int = Field(..., ge=1)
    link: Optional[str] = None
    image: Optional[str] = None


class Player(BaseModel):
    id: str
    name: str
    icon: str = ""
    picks: list[str] = Field(default_factory=list)  # game ids, duplicates allowed
    selections_made: int = 0
    action_taken_in_current_round: bool = False
    opted_out_of_round: bool = False

    @property
    def is_done_for_round(self) -> bool:
        """Acted or opted out; the turn engine skips these players."""
        return self.action_taken_in_current_round or self.opted_out_of_round


class GameSessionRecord(BaseModel):
    game_picked_at: Optional[float] = None  # Unix timestamps
    game_started_at: Optional[float] = None
    game_ended_at: Optional[float] = None
    winner_id: Optional[str] = None


class Table(BaseModel):
    id: str
    game_id: Optional[str] = None
    seated_player_ids: list[str] = Field(default_factory=list)
    placed_by_player_id: Optional[str] = None
    game_session: Optional[GameSessionRecord] = None
    mode: SessionMode = SessionMode.PICK

    @property
    def is_empty(self) -> bool:
        return self.game_id is None

    def clear(self) -> None:
        self.game_id = None
        self.seated_player_ids = []
        self.placed_by_player_id = None
        self.game_session = None


class TableState(BaseModel):
    """Point-in-time copy of a table, stored on a Round."""

    id: str
    game_id: Optional[str] = None
    seated_player_ids: list[str] = Field(default_factory=list)
    placed_by_player_id: Optional[str] = None
    game_session: Optional[GameSessionRecord] = None

    @classmethod
    def from_table(cls, table: Table) -> TableState:
        return cls(
            id=table.id,
            game_id=table.game_id,
            seated_player_ids=list(table.seated_player_ids),
            placed_by_player_id=table.placed_by_player_id,
            game_session=(
                table.game_session.model_copy() if table.game_session else None
            ),
        )


class Round(BaseModel):
    id: str
    table_states: list[TableState] = Field(default_factory=list)
    completed: bool = False


class SessionSnapshot(BaseModel):
    """The whole state of one drafting session."""

    players: list[Player] = Field(default_factory=list)
    available_games: list[Game] = Field(default_factory=list)
    all_games: list[Game] = Field(default_factory=list)
    tables: list[Table] = Field(default_factory=list)
    rounds: list[Round] = Field(default_factory=list)
    current_round_index: int = 0
    viewing_round_index: int = 0
    is_viewing_history: bool = False
    turn_order: list[str] = Field(default_factory=list)
    current_player_turn_index: int = 0
    drafting_complete: bool = False
    stage: Stage = Stage.SETUP
    mode: SessionMode = SessionMode.PICK
    session_type: SessionType = SessionType.PICKS


class SessionMetadata(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    created_at: float
    last_modified: float
    player_count: int = 0
    game_count: int = 0
    current_round: int = 1
    is_completed: bool = False
    session_type: SessionType = SessionType.PICKS


class Session(BaseModel):
    metadata: SessionMetadata
    state: SessionSnapshot


class LibraryGame(Game):
    """Catalog entry; only active games can be placed or picked."""

    is_active: bool = True
    date_added: Optional[float] = None
    min_players: Optional[int] = None
    description: Optional[str] = None
    tags: list[str] = Field(default_factory=list)

    def to_game(self) -> Game:
        return Game(
            id=self.id,
            title=self.title,
            max_players=self.max_players,
            link=self.link,
            image=self.image,
        )


# --- Templates ---


class TemplatePlayer(BaseModel):
    name: str = Field(..., min_length=1, max_length=40)
    icon: str = ""


class TemplateGame(BaseModel):
    title: str = Field(..., min_length=1)
    max_players: int = Field(..., ge=1)
    link: Optional[str] = None
    image: Optional[str] = None


class SessionTemplate(BaseModel):
    name: str = Field(..., min_length=1, max_length=80)
    description: Optional[str] = None
    session_type: SessionType = SessionType.PICKS
    players: list[TemplatePlayer] = Field(default_factory=list)
    games: list[TemplateGame] = Field(default_factory=list)
    # player name -> indexes into ``games``
    player_picks: dict[str, list[int]] = Field(default_factory=dict)


# --- Request models ---


class CreateSessionRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=80)
    description: Optional[str] = None
    session_type: SessionType = SessionType.PICKS
    template: Optional[SessionTemplate] = None
    copy_from_session_id: Optional[str] = None


class DuplicateSessionRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=80)


class ImportSessionRequest(BaseModel):
    data: str
    name: Optional[str] = Field(default=None, max_length=80)


class AddPlayerRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=40)
    icon: Optional[str] = None


class UpdatePlayerRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=40)
    icon: Optional[str] = None


class UpdatePicksRequest(BaseModel):
    game_ids: list[str]


class OptOutRequest(BaseModel):
    opted_out: bool = True


class TurnOrderRequest(BaseModel):
    turn_order: list[str]


class PlaceGameRequest(BaseModel):
    game_id: str
    table_id: str
    player_id: str
    pick_index: Optional[int] = Field(default=None, ge=0)


class JoinTableRequest(BaseModel):
    table_id: str
    player_id: str


class ViewRoundRequest(BaseModel):
    round_index: int


class SetModeRequest(BaseModel):
    mode: SessionMode


class PlaceLibraryGameRequest(BaseModel):
    game_id: str
    table_id: str


class GameSessionUpdateRequest(BaseModel):
    round_index: int = Field(..., ge=0)
    winner_id: Optional[str] = None
    game_started_at: Optional[float] = None
    game_ended_at: Optional[float] = None


class AddLibraryGameRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=120)
    max_players: int = Field(..., ge=1, le=100)
    min_players: Optional[int] = Field(default=None, ge=1)
    link: Optional[str] = None
    image: Optional[str] = None
    description: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    is_active: bool = True


# --- Response models ---


class CreateSessionResponse(BaseModel):
    session_id: str
    session: Session
