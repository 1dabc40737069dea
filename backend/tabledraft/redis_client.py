"""Redis client wrapper for session and game library persistence."""

from __future__ import annotations

import json
import os
from typing import Any, Optional

import redis.asyncio as redis

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

_pool: Optional[redis.Redis] = None


async def get_redis() -> redis.Redis:
    global _pool
    if _pool is None:
        _pool = redis.from_url(REDIS_URL, decode_responses=True)
    return _pool


SESSIONS_KEY = "sessions"
CURRENT_SESSION_KEY = "session:current"
LIBRARY_KEY = "library:games"


def _session_key(session_id: str) -> str:
    return f"session:{session_id}"


def _library_game_key(game_id: str) -> str:
    return f"library:game:{game_id}"


# ---------- Sessions ----------


async def store_session(session_id: str, data: dict[str, Any]) -> None:
    r = await get_redis()
    await r.set(_session_key(session_id), json.dumps(data))
    await r.sadd(SESSIONS_KEY, session_id)


async def load_session(session_id: str) -> Optional[dict[str, Any]]:
    r = await get_redis()
    raw = await r.get(_session_key(session_id))
    if raw is None:
        return None
    return json.loads(raw)


async def list_session_ids() -> list[str]:
    r = await get_redis()
    return list(await r.smembers(SESSIONS_KEY))


async def delete_session(session_id: str) -> None:
    """Remove a session blob and its index entry."""
    r = await get_redis()
    await r.delete(_session_key(session_id))
    await r.srem(SESSIONS_KEY, session_id)


async def get_current_session_id() -> Optional[str]:
    r = await get_redis()
    return await r.get(CURRENT_SESSION_KEY)


async def set_current_session_id(session_id: str) -> None:
    r = await get_redis()
    await r.set(CURRENT_SESSION_KEY, session_id)


async def clear_current_session_id() -> None:
    r = await get_redis()
    await r.delete(CURRENT_SESSION_KEY)


# ---------- Game library ----------


async def store_library_game(game_id: str, data: dict[str, Any]) -> None:
    r = await get_redis()
    await r.set(_library_game_key(game_id), json.dumps(data))
    await r.sadd(LIBRARY_KEY, game_id)


async def load_library_game(game_id: str) -> Optional[dict[str, Any]]:
    r = await get_redis()
    raw = await r.get(_library_game_key(game_id))
    if raw is None:
        return None
    return json.loads(raw)


async def load_all_library_games() -> list[dict[str, Any]]:
    r = await get_redis()
    game_ids = await r.smembers(LIBRARY_KEY)
    games = []
    for gid in game_ids:
        data = await load_library_game(gid)
        if data:
            games.append(data)
    return games


async def close() -> None:
    global _pool
    if _pool is not None:
        await _pool.aclose()
        _pool = None
