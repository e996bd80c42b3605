"""Sibling position allocation and the move cycle guard.

Sibling lists are tuples of entities ordered by position. Every function here
returns a new dense tuple (positions exactly 0..n-1) and leaves its input
untouched.
"""

import dataclasses
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import TypeVar

from workspace_tree.errors import CycleError, ValidationError
from workspace_tree.models.entity import Entity

T = TypeVar("T")


@dataclass(frozen=True)
class MoveOutcome:
    """Sibling lists after a move, plus the moved entity as it now stands."""

    source: tuple[Entity, ...]
    destination: tuple[Entity, ...]
    moved: Entity


def sort_siblings(siblings: Iterable[Entity]) -> tuple[Entity, ...]:
    return tuple(sorted(siblings, key=lambda e: (e.position, e.id)))


def next_position(siblings: Sequence[Entity]) -> int:
    """Position for an entity appended to a sibling group."""
    return len(siblings)


def densify(siblings: Iterable[Entity]) -> tuple[Entity, ...]:
    """Renumber positions 0..n-1 following list order."""
    return tuple(
        e if e.position == i else dataclasses.replace(e, position=i)
        for i, e in enumerate(siblings)
    )


def insert_at(
    siblings: Sequence[Entity],
    entity: Entity,
    index: int | None = None,
) -> tuple[Entity, ...]:
    """Insert ``entity`` at ``index`` (clamped; None appends)."""
    items = list(siblings)
    if index is None or index > len(items):
        index = len(items)
    items.insert(max(index, 0), entity)
    return densify(items)


def remove_from(siblings: Sequence[Entity], entity_id: int) -> tuple[Entity, ...]:
    """Remove an entity and compact the remaining positions."""
    return densify(e for e in siblings if e.id != entity_id)


def replace_in(siblings: Sequence[Entity], entity_id: int, entity: Entity) -> tuple[Entity, ...]:
    """Swap the entry with ``entity_id`` for ``entity``, keeping its slot."""
    return densify(entity if e.id == entity_id else e for e in siblings)


def reorder(siblings: Sequence[Entity], ordered_ids: Sequence[int]) -> tuple[Entity, ...]:
    """Order siblings by an explicit id sequence.

    Raises:
        ValidationError: If ``ordered_ids`` is not a permutation of the sibling ids.
    """
    by_id = {e.id: e for e in siblings}
    if len(ordered_ids) != len(by_id) or set(ordered_ids) != set(by_id):
        msg = (
            f"Reorder ids {list(ordered_ids)!r} do not match the sibling group "
            f"{sorted(by_id)!r}"
        )
        raise ValidationError(msg)
    return densify(by_id[i] for i in ordered_ids)


def array_move(items: Sequence[T], old_index: int, new_index: int) -> list[T]:
    """Move the item at ``old_index`` so it ends up at ``new_index``."""
    out = list(items)
    out.insert(new_index, out.pop(old_index))
    return out


def ancestor_ids(entity_id: int | None, parent_of: Mapping[int, int | None]) -> list[int]:
    """Walk parent links upward from ``entity_id`` (inclusive) to a root.

    Stops at unknown ids and at a repeated id, so corrupt data cannot loop forever.
    """
    chain: list[int] = []
    seen: set[int] = set()
    current = entity_id
    while current is not None and current not in seen:
        chain.append(current)
        seen.add(current)
        current = parent_of.get(current)
    return chain


def validate_move(
    entity_id: int,
    new_parent_id: int | None,
    parent_of: Mapping[int, int | None],
) -> None:
    """Reject moving an entity into itself or into one of its descendants.

    Raises:
        CycleError: If the move would create a cycle.
    """
    if new_parent_id is None:
        return
    if new_parent_id == entity_id or entity_id in ancestor_ids(new_parent_id, parent_of):
        raise CycleError(entity_id, new_parent_id)


def apply_move(
    source: Sequence[Entity],
    destination: Sequence[Entity],
    entity: Entity,
    new_parent_id: int | None,
    index: int | None = None,
) -> MoveOutcome:
    """Move ``entity`` from ``source`` into ``destination`` at ``index``.

    When the parent does not change, ``source`` and ``destination`` are the same
    group and the move is an in-place array move; ``index`` then defaults to the
    last slot.
    """
    if new_parent_id == entity.parent_id:
        items = list(source)
        old_index = next(i for i, e in enumerate(items) if e.id == entity.id)
        last = len(items) - 1
        target = last if index is None else min(max(index, 0), last)
        group = densify(array_move(items, old_index, target))
        moved = next(e for e in group if e.id == entity.id)
        return MoveOutcome(source=group, destination=group, moved=moved)

    compacted = remove_from(source, entity.id)
    relocated = dataclasses.replace(entity, parent_id=new_parent_id)
    dest = insert_at(destination, relocated, index)
    moved = next(e for e in dest if e.id == entity.id)
    return MoveOutcome(source=compacted, destination=dest, moved=moved)
