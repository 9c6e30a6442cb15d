"""Dense zero-based ordering of siblings under a parent.

Columns are ordered within their board and tasks within their column. Every
sibling set must hold the positions ``0..n-1`` exactly once. The functions
here never touch storage: they turn an insert, move or remove into
``RangeShift`` instructions plus the final placement of the affected item,
and the repository applies them inside a single transaction.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .errors import InvalidOperation


@dataclass(frozen=True)
class RangeShift:
    """Add ``delta`` to every sibling in ``scope_id`` with ``lower <= position <= upper``.

    ``upper`` of ``None`` means unbounded.
    """

    scope_id: str
    lower: int
    delta: int
    upper: Optional[int] = None

    def covers(self, position: int) -> bool:
        if position < self.lower:
            return False
        return self.upper is None or position <= self.upper

    def apply(self, position: int) -> int:
        return position + self.delta if self.covers(position) else position


@dataclass(frozen=True)
class Placement:
    scope_id: str
    position: int
    shifts: list[RangeShift] = field(default_factory=list)


def ensure_in_range(position: int, upper: int) -> int:
    if position < 0 or position > upper:
        raise InvalidOperation(f"Position {position} is out of range (0..{upper})")
    return position


def compute_insert_position(requested: Optional[int], current_max: Optional[int]) -> int:
    if requested is not None:
        return requested
    if current_max is None:
        return 0
    return current_max + 1


def compute_remove_shift(scope_id: str, removed_position: int) -> RangeShift:
    return RangeShift(scope_id, lower=removed_position + 1, delta=-1)


def compute_move_shift(
    from_scope: str,
    from_position: int,
    to_scope: str,
    to_position: int,
) -> list[RangeShift]:
    if from_scope != to_scope:
        # close the gap behind, open a slot ahead
        return [
            RangeShift(from_scope, lower=from_position + 1, delta=-1),
            RangeShift(to_scope, lower=to_position, delta=1),
        ]
    if to_position > from_position:
        return [RangeShift(from_scope, lower=from_position + 1, upper=to_position, delta=-1)]
    if to_position < from_position:
        return [RangeShift(from_scope, lower=to_position, upper=from_position - 1, delta=1)]
    return []


def plan_insert(scope_id: str, requested: Optional[int], sibling_count: int, current_max: Optional[int]) -> Placement:
    """Place a new item; an explicit position in the middle pushes the tail right."""
    position = compute_insert_position(requested, current_max)
    if requested is None:
        return Placement(scope_id, position)
    ensure_in_range(position, sibling_count)
    if position >= sibling_count:
        return Placement(scope_id, position)
    return Placement(scope_id, position, [RangeShift(scope_id, lower=position, delta=1)])


def plan_move(
    from_scope: str,
    from_position: int,
    to_scope: str,
    to_position: int,
    target_count: int,
) -> Placement:
    """Place an existing item at ``to_position`` under ``to_scope``.

    ``target_count`` is the number of siblings currently under ``to_scope``,
    the moving item included when it stays in the same parent.
    """
    if from_scope == to_scope:
        ensure_in_range(to_position, target_count - 1)
    else:
        ensure_in_range(to_position, target_count)
    return Placement(to_scope, to_position, compute_move_shift(from_scope, from_position, to_scope, to_position))
