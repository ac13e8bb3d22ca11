"""Capacity rules for lot occupancy.

These functions never touch storage. Callers must feed them values read inside
the same transaction that performs the follow-up writes, otherwise the decision
can be invalidated by a concurrent claim.
"""

from __future__ import annotations

from app.lots.errors import CapacityExceededError


def has_capacity(capacity: int, occupancy: int) -> bool:
    return occupancy < capacity


def check_capacity(lot_name: str, capacity: int, occupancy: int) -> None:
    """Raise ``CapacityExceededError`` when one more tree would not fit."""
    if not has_capacity(capacity, occupancy):
        raise CapacityExceededError(lot_name=lot_name, capacity=capacity, attempted_occupancy=occupancy + 1)


def reconciled_count(cached: int, live: int) -> tuple[int, bool]:
    """Return the counter value to persist and whether the cache had drifted.

    The live count of referencing trees always wins over the cached counter.
    """
    return live, cached != live
