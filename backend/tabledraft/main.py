"""FastAPI application: REST endpoints for table-drafting sessions."""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from tabledraft import redis_client, session_manager
from tabledraft.models import (
    AddLibraryGameRequest,
    AddPlayerRequest,
    CreateSessionRequest,
    CreateSessionResponse,
    DuplicateSessionRequest,
    GameSessionUpdateRequest,
    ImportSessionRequest,
    JoinTableRequest,
    OptOutRequest,
    PlaceGameRequest,
    PlaceLibraryGameRequest,
    SetModeRequest,
    TurnOrderRequest,
    UpdatePicksRequest,
    UpdatePlayerRequest,
    ViewRoundRequest,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await redis_client.close()


app = FastAPI(title="Table Draft API", lifespan=lifespan)

# ---------- Rate Limiting ----------

_rate_limit_enabled = os.getenv("RATE_LIMIT_ENABLED", "1") != "0"

limiter = Limiter(
    key_func=get_remote_address,
    enabled=_rate_limit_enabled,
)
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"detail": "Rate limit exceeded. Please slow down."},
    )


CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(e: ValueError) -> HTTPException:
    msg = str(e)
    status = 404 if msg.endswith("not found") else 400
    return HTTPException(status_code=status, detail=msg)


async def _apply(session_id: str, operation: str, **params: Any) -> dict[str, Any]:
    try:
        result, view = await session_manager.apply_operation(
            session_id, operation, **params
        )
    except ValueError as e:
        raise _error(e)
    return {
        "ok": True,
        "result": result if isinstance(result, str) else None,
        "state": view,
    }


# ---------- Sessions ----------


@app.post("/api/sessions", response_model=CreateSessionResponse)
@limiter.limit("10/minute")
async def create_session(request: Request, req: CreateSessionRequest):
    try:
        session_id, session = await session_manager.create_session(
            name=req.name,
            description=req.description,
            template=req.template,
            session_type=req.session_type,
            copy_from_session_id=req.copy_from_session_id,
        )
    except ValueError as e:
        raise _error(e)
    return CreateSessionResponse(session_id=session_id, session=session)


@app.get("/api/sessions")
@limiter.limit("30/minute")
async def list_sessions(request: Request):
    return {"sessions": await session_manager.list_sessions()}


@app.get("/api/sessions/current")
@limiter.limit("60/minute")
async def get_current_session(request: Request):
    session = await session_manager.get_current_session()
    if session is None:
        raise HTTPException(status_code=404, detail="No current session")
    return session


@app.post("/api/sessions/import", response_model=CreateSessionResponse)
@limiter.limit("10/minute")
async def import_session(request: Request, req: ImportSessionRequest):
    try:
        session_id, session = await session_manager.import_session(req.data, req.name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return CreateSessionResponse(session_id=session_id, session=session)


@app.get("/api/sessions/{session_id}")
@limiter.limit("60/minute")
async def get_session(request: Request, session_id: str):
    session = await session_manager.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


@app.get("/api/sessions/{session_id}/view")
@limiter.limit("60/minute")
async def get_session_view(request: Request, session_id: str):
    """Session state plus derived values (current player, round completion)."""
    try:
        return await session_manager.get_session_view(session_id)
    except ValueError as e:
        raise _error(e)


@app.delete("/api/sessions/{session_id}")
@limiter.limit("10/minute")
async def delete_session(request: Request, session_id: str):
    try:
        await session_manager.delete_session(session_id)
    except ValueError as e:
        raise _error(e)
    return {"ok": True}


@app.post("/api/sessions/{session_id}/current")
@limiter.limit("30/minute")
async def set_current_session(request: Request, session_id: str):
    try:
        return await session_manager.set_current_session(session_id)
    except ValueError as e:
        raise _error(e)


@app.post("/api/sessions/{session_id}/duplicate", response_model=CreateSessionResponse)
@limiter.limit("10/minute")
async def duplicate_session(request: Request, session_id: str, req: DuplicateSessionRequest):
    try:
        new_id, session = await session_manager.duplicate_session(session_id, req.name)
    except ValueError as e:
        raise _error(e)
    return CreateSessionResponse(session_id=new_id, session=session)


@app.get("/api/sessions/{session_id}/export", response_class=PlainTextResponse)
@limiter.limit("10/minute")
async def export_session(request: Request, session_id: str):
    try:
        return await session_manager.export_session(session_id)
    except ValueError as e:
        raise _error(e)


# ---------- Players ----------


@app.post("/api/sessions/{session_id}/players")
@limiter.limit("30/minute")
async def add_player(request: Request, session_id: str, req: AddPlayerRequest):
    return await _apply(session_id, "add_player", name=req.name, icon=req.icon)


@app.patch("/api/sessions/{session_id}/players/{player_id}")
@limiter.limit("30/minute")
async def update_player(
    request: Request, session_id: str, player_id: str, req: UpdatePlayerRequest
):
    return await _apply(
        session_id, "update_player", player_id=player_id, name=req.name, icon=req.icon
    )


@app.delete("/api/sessions/{session_id}/players/{player_id}")
@limiter.limit("30/minute")
async def remove_player(request: Request, session_id: str, player_id: str):
    return await _apply(session_id, "remove_player", player_id=player_id)


@app.put("/api/sessions/{session_id}/players/{player_id}/picks")
@limiter.limit("30/minute")
async def update_player_picks(
    request: Request, session_id: str, player_id: str, req: UpdatePicksRequest
):
    return await _apply(
        session_id, "update_player_picks", player_id=player_id, game_ids=req.game_ids
    )


@app.post("/api/sessions/{session_id}/players/{player_id}/opt-out")
@limiter.limit("30/minute")
async def set_opt_out(
    request: Request, session_id: str, player_id: str, req: OptOutRequest
):
    return await _apply(
        session_id, "set_opt_out", player_id=player_id, opted_out=req.opted_out
    )


# ---------- Turns ----------


@app.put("/api/sessions/{session_id}/turn-order")
@limiter.limit("30/minute")
async def update_turn_order(request: Request, session_id: str, req: TurnOrderRequest):
    return await _apply(session_id, "update_turn_order", new_order=req.turn_order)


@app.post("/api/sessions/{session_id}/pass")
@limiter.limit("60/minute")
async def pass_turn(request: Request, session_id: str):
    return await _apply(session_id, "pass_turn")


@app.post("/api/sessions/{session_id}/advance")
@limiter.limit("60/minute")
async def advance_turn(request: Request, session_id: str):
    return await _apply(session_id, "advance_turn")


# ---------- Placement ----------


@app.post("/api/sessions/{session_id}/place")
@limiter.limit("60/minute")
async def place_game(request: Request, session_id: str, req: PlaceGameRequest):
    """Place one of a player's picks on an empty Pick table."""
    return await _apply(
        session_id,
        "place_game",
        game_id=req.game_id,
        table_id=req.table_id,
        player_id=req.player_id,
        pick_index=req.pick_index,
    )


@app.post("/api/sessions/{session_id}/join")
@limiter.limit("60/minute")
async def join_game(request: Request, session_id: str, req: JoinTableRequest):
    return await _apply(
        session_id, "join_game", table_id=req.table_id, player_id=req.player_id
    )


@app.post("/api/sessions/{session_id}/place-library-game")
@limiter.limit("60/minute")
async def place_library_game(
    request: Request, session_id: str, req: PlaceLibraryGameRequest
):
    return await _apply(
        session_id, "place_library_game", game_id=req.game_id, table_id=req.table_id
    )


@app.put("/api/sessions/{session_id}/tables/{table_id}/game-session")
@limiter.limit("30/minute")
async def update_game_session(
    request: Request, session_id: str, table_id: str, req: GameSessionUpdateRequest
):
    """Record the winner and play times; omitted fields stay unchanged."""
    changes = req.model_dump(exclude_unset=True, exclude={"round_index"})
    return await _apply(
        session_id,
        "update_game_session",
        table_id=table_id,
        round_index=req.round_index,
        **changes,
    )


# ---------- Rounds ----------


@app.post("/api/sessions/{session_id}/start")
@limiter.limit("10/minute")
async def start_first_round(request: Request, session_id: str):
    return await _apply(session_id, "start_first_round")


@app.post("/api/sessions/{session_id}/rounds")
@limiter.limit("10/minute")
async def create_new_round(request: Request, session_id: str):
    return await _apply(session_id, "create_new_round")


@app.post("/api/sessions/{session_id}/reset-round")
@limiter.limit("10/minute")
async def reset_round(request: Request, session_id: str):
    return await _apply(session_id, "reset_round")


@app.post("/api/sessions/{session_id}/view-round")
@limiter.limit("60/minute")
async def view_round(request: Request, session_id: str, req: ViewRoundRequest):
    return await _apply(session_id, "view_round", round_index=req.round_index)


@app.post("/api/sessions/{session_id}/view-round/previous")
@limiter.limit("60/minute")
async def view_previous_round(request: Request, session_id: str):
    return await _apply(session_id, "view_previous_round")


@app.post("/api/sessions/{session_id}/view-round/next")
@limiter.limit("60/minute")
async def view_next_round(request: Request, session_id: str):
    return await _apply(session_id, "view_next_round")


@app.post("/api/sessions/{session_id}/view-round/current")
@limiter.limit("60/minute")
async def return_to_current_round(request: Request, session_id: str):
    return await _apply(session_id, "return_to_current_round")


# ---------- Modes & tables ----------


@app.put("/api/sessions/{session_id}/mode")
@limiter.limit("30/minute")
async def set_mode(request: Request, session_id: str, req: SetModeRequest):
    return await _apply(session_id, "set_mode", mode=req.mode)


@app.post("/api/sessions/{session_id}/mode/toggle")
@limiter.limit("30/minute")
async def toggle_mode(request: Request, session_id: str):
    return await _apply(session_id, "toggle_mode")


@app.post("/api/sessions/{session_id}/tables")
@limiter.limit("30/minute")
async def add_table(request: Request, session_id: str):
    return await _apply(session_id, "add_table")


@app.delete("/api/sessions/{session_id}/tables/{table_id}")
@limiter.limit("30/minute")
async def remove_table(request: Request, session_id: str, table_id: str):
    return await _apply(session_id, "remove_table", table_id=table_id)


# ---------- Game library ----------


@app.get("/api/library/games")
@limiter.limit("30/minute")
async def list_library_games(request: Request, active_only: bool = False):
    games = await session_manager.list_library_games(active_only=active_only)
    return {"games": [g.model_dump(mode="json") for g in games]}


@app.post("/api/library/games")
@limiter.limit("30/minute")
async def add_library_game(request: Request, req: AddLibraryGameRequest):
    return await session_manager.add_library_game(req)
