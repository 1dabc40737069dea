"""Session manager: business logic for session storage and engine operations."""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any, Optional

from pydantic import ValidationError

from tabledraft import redis_client
from tabledraft.engine import DraftEngine
from tabledraft.models import (
    AddLibraryGameRequest,
    Game,
    LibraryGame,
    Session,
    SessionSnapshot,
    SessionTemplate,
    SessionType,
)
from tabledraft.templates import (
    DEFAULT_SESSION_NAME,
    default_template,
    metadata_from_state,
    reset_copy,
    snapshot_from_template,
)

logger = logging.getLogger(__name__)

EXPORT_VERSION = "0.0.1"

# Engine operations reachable through apply_operation.
OPERATIONS = frozenset(
    {
        "add_player",
        "remove_player",
        "update_player",
        "update_player_picks",
        "set_opt_out",
        "update_turn_order",
        "advance_turn",
        "pass_turn",
        "place_game",
        "join_game",
        "reset_round",
        "start_first_round",
        "create_new_round",
        "view_round",
        "view_previous_round",
        "view_next_round",
        "return_to_current_round",
        "set_mode",
        "toggle_mode",
        "ensure_pick_mode_tables",
        "add_table",
        "remove_table",
        "place_library_game",
        "update_game_session",
    }
)


# ------------------------------------------------------------------
# Storage helpers
# ------------------------------------------------------------------


async def _load(session_id: str) -> Session:
    data = await redis_client.load_session(session_id)
    if data is None:
        raise ValueError("Session not found")
    return Session.model_validate(data)


async def _save(session: Session) -> None:
    await redis_client.store_session(session.metadata.id, session.model_dump(mode="json"))


def _refresh(session: Session, state: SessionSnapshot) -> Session:
    """Attach a new state and recompute the listing metadata."""
    meta = session.metadata
    return Session(
        metadata=metadata_from_state(
            meta.id, meta.name, state, meta.description, created_at=meta.created_at
        ),
        state=state,
    )


# ------------------------------------------------------------------
# Session CRUD
# ------------------------------------------------------------------


async def create_session(
    name: Optional[str] = None,
    description: Optional[str] = None,
    template: Optional[SessionTemplate] = None,
    session_type: SessionType = SessionType.PICKS,
    copy_from_session_id: Optional[str] = None,
) -> tuple[str, Session]:
    """Create a session and make it current. Returns (session_id, session)."""
    if template is not None:
        state = snapshot_from_template(template)
        name = name or template.name
        description = description or template.description
    elif copy_from_session_id:
        source = await _load(copy_from_session_id)
        state = reset_copy(source.state)
        name = name or f"{source.metadata.name} (Copy)"
        description = description or source.metadata.description
    else:
        tpl = default_template(
            name or DEFAULT_SESSION_NAME, description, session_type=session_type
        )
        state = snapshot_from_template(tpl)
        name = tpl.name
        description = tpl.description

    session_id = str(uuid.uuid4())
    session = Session(
        metadata=metadata_from_state(session_id, name, state, description),
        state=state,
    )
    await _save(session)
    await redis_client.set_current_session_id(session_id)
    logger.info("Created session %s (%s)", session_id, name)
    return session_id, session


async def get_session(session_id: str) -> Optional[Session]:
    data = await redis_client.load_session(session_id)
    if data is None:
        return None
    return Session.model_validate(data)


async def duplicate_session(session_id: str, name: Optional[str] = None) -> tuple[str, Session]:
    """Copy a session as-is, including its round history."""
    source = await _load(session_id)
    new_id = str(uuid.uuid4())
    session = Session(
        metadata=metadata_from_state(
            new_id,
            name or f"{source.metadata.name} (Copy)",
            source.state,
            f"Copy of {source.metadata.name}",
        ),
        state=source.state.model_copy(deep=True),
    )
    await _save(session)
    return new_id, session


async def delete_session(session_id: str) -> None:
    if await redis_client.load_session(session_id) is None:
        raise ValueError("Session not found")
    await redis_client.delete_session(session_id)
    if await redis_client.get_current_session_id() == session_id:
        await redis_client.clear_current_session_id()
    logger.info("Deleted session %s", session_id)


async def list_sessions() -> list[dict[str, Any]]:
    """Metadata for every stored session, most recently modified first."""
    listing = []
    for sid in await redis_client.list_session_ids():
        data = await redis_client.load_session(sid)
        if data is None:
            continue
        try:
            session = Session.model_validate(data)
        except ValidationError:
            logger.warning("Skipping corrupted session %s", sid, exc_info=True)
            continue
        listing.append(session.metadata)
    listing.sort(key=lambda m: m.last_modified, reverse=True)
    return [m.model_dump(mode="json") for m in listing]


async def set_current_session(session_id: str) -> Session:
    session = await _load(session_id)
    await redis_client.set_current_session_id(session_id)
    return session


async def get_current_session() -> Optional[Session]:
    """The current session, or None when unset or gone."""
    session_id = await redis_client.get_current_session_id()
    if not session_id:
        return None
    session = await get_session(session_id)
    if session is None:
        logger.warning("Current session %s no longer exists; clearing", session_id)
        await redis_client.clear_current_session_id()
    return session


async def get_current_session_state() -> SessionSnapshot:
    """Load hook: the current session's state, or an empty snapshot."""
    session = await get_current_session()
    if session is None:
        return SessionSnapshot()
    return DraftEngine.from_dict(session.state.model_dump(mode="json")).state


async def save_current_session_state(state: SessionSnapshot) -> None:
    """Save hook: write a state to the current session, if there is one."""
    session = await get_current_session()
    if session is None:
        logger.debug("No current session; state not saved")
        return
    await _save(_refresh(session, state))


# ------------------------------------------------------------------
# Export / import
# ------------------------------------------------------------------


async def export_session(session_id: str) -> str:
    session = await _load(session_id)
    return json.dumps(
        {
            "version": EXPORT_VERSION,
            "exported_at": time.time(),
            "session": session.model_dump(mode="json"),
        },
        indent=2,
    )


async def import_session(raw: str, name: Optional[str] = None) -> tuple[str, Session]:
    """Store an exported session under a fresh id."""
    try:
        payload = json.loads(raw)
        imported = Session.model_validate(payload["session"])
    except (json.JSONDecodeError, KeyError, TypeError, ValidationError) as e:
        raise ValueError(f"Invalid session export: {e}") from e

    session_id = str(uuid.uuid4())
    now = time.time()
    session = Session(
        metadata=imported.metadata.model_copy(
            update={
                "id": session_id,
                "name": name or f"{imported.metadata.name} (Imported)",
                "created_at": now,
                "last_modified": now,
            }
        ),
        state=imported.state,
    )
    await _save(session)
    return session_id, session


# ------------------------------------------------------------------
# Game library
# ------------------------------------------------------------------


async def add_library_game(req: AddLibraryGameRequest) -> LibraryGame:
    game = LibraryGame(id=str(uuid.uuid4()), date_added=time.time(), **req.model_dump())
    await redis_client.store_library_game(game.id, game.model_dump(mode="json"))
    return game


async def get_library_game(game_id: str) -> Optional[LibraryGame]:
    data = await redis_client.load_library_game(game_id)
    if data is None:
        return None
    return LibraryGame.model_validate(data)


async def list_library_games(active_only: bool = False) -> list[LibraryGame]:
    games = [LibraryGame.model_validate(d) for d in await redis_client.load_all_library_games()]
    if active_only:
        games = [g for g in games if g.is_active]
    return sorted(games, key=lambda g: g.title.lower())


async def _resolve_games(state: SessionSnapshot, game_ids: list[str]) -> list[Game]:
    """Look game ids up in the session first, then in the library."""
    known = {g.id: g for g in state.all_games}
    games = []
    for gid in game_ids:
        if gid in known:
            games.append(known[gid])
            continue
        lib = await get_library_game(gid)
        if lib is None or not lib.is_active:
            raise ValueError(f"Game {gid} not found")
        games.append(lib.to_game())
    return games


# ------------------------------------------------------------------
# Engine Operations
# ------------------------------------------------------------------


async def get_session_view(session_id: str) -> dict[str, Any]:
    session = await _load(session_id)
    return DraftEngine.from_dict(session.state.model_dump(mode="json")).build_view()


async def apply_operation(
    session_id: str, operation: str, **params: Any
) -> tuple[Any, dict[str, Any]]:
    """Run one engine operation and persist the result.

    Returns (result, view).  ``result`` is the new id for ``add_player`` and
    ``add_table``, otherwise ``True``.
    """
    if operation not in OPERATIONS:
        raise ValueError(f"Unknown operation: {operation}")

    session = await _load(session_id)
    engine = DraftEngine.from_dict(session.state.model_dump(mode="json"))

    if operation == "update_player_picks":
        params["games"] = await _resolve_games(engine.state, params.pop("game_ids"))
    elif operation == "place_library_game":
        params["library_game"] = await get_library_game(params.pop("game_id"))

    result = getattr(engine, operation)(**params)
    if result is False or result is None:
        raise ValueError(engine.last_error or "Operation rejected")

    await _save(_refresh(session, engine.state))
    logger.debug("Applied %s to session %s", operation, session_id)
    return result, engine.build_view()
