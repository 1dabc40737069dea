"""Turn pointer arithmetic.

Pure functions over a turn order and the set of players who are done for the
round (acted or opted out).  Passing never marks a player as done, so a
passed player stays eligible and is picked up again later in the round.
"""

from __future__ import annotations

from typing import Iterable, Optional


def next_turn_index(
    turn_order: list[str], done: set[str], current: int
) -> Optional[int]:
    """Return the index of the next player who still has to act.

    Phase 1 scans forward from ``current + 1`` (wrapping) and stops when it
    gets back to where it started.  Phase 2 falls back to the first player in
    turn order who is not done.  ``None`` means the round is exhausted and
    the caller should keep the pointer where it is.
    """
    n = len(turn_order)
    if n == 0:
        return None

    start = (current + 1) % n
    idx = start
    while True:
        if turn_order[idx] not in done:
            return idx
        idx = (idx + 1) % n
        if idx == start:
            break

    for i, pid in enumerate(turn_order):
        if pid not in done:
            return i
    return None


def settle_index(turn_order: list[str], done: set[str], index: int) -> int:
    """Clamp ``index`` and move it off a player who is already done.

    Used after the turn order is replaced.  If every player is done the
    clamped index is returned unchanged.
    """
    if not turn_order:
        return 0
    index = min(max(index, 0), len(turn_order) - 1)
    if turn_order[index] not in done:
        return index
    nxt = next_turn_index(turn_order, done, index)
    return index if nxt is None else nxt


def is_permutation(candidate: Iterable[str], ids: Iterable[str]) -> bool:
    """True when ``candidate`` holds exactly the same ids, each exactly once."""
    candidate = list(candidate)
    ids = list(ids)
    return (
        len(candidate) == len(ids)
        and len(set(candidate)) == len(candidate)
        and set(candidate) == set(ids)
    )


def rotate(turn_order: list[str]) -> list[str]:
    """Move the head of the order to the tail."""
    if not turn_order:
        return []
    return turn_order[1:] + turn_order[:1]
