"""Check a flat entity list against the tree invariants."""

from collections import defaultdict
from collections.abc import Iterable

from workspace_tree.core.positions import ancestor_ids
from workspace_tree.models.entity import Entity, IntegrityReport


def check_integrity(entities: Iterable[Entity]) -> IntegrityReport:
    """Report every invariant violation found.

    Checks that ids are unique, positions are dense per sibling group, parents
    exist and are folders, and the parent relation is acyclic.
    """
    items = list(entities)
    violations: list[str] = []

    by_id: dict[int, Entity] = {}
    for e in items:
        if e.id in by_id:
            violations.append(f"duplicate id {e.id}")
        by_id[e.id] = e

    groups: dict[int | None, list[int]] = defaultdict(list)
    for e in by_id.values():
        groups[e.parent_id].append(e.position)
    for parent_id, positions in sorted(groups.items(), key=lambda kv: (kv[0] is not None, kv[0] or 0)):
        expected = list(range(len(positions)))
        if sorted(positions) != expected:
            where = "root" if parent_id is None else f"parent {parent_id}"
            violations.append(f"positions under {where} are {sorted(positions)}, expected {expected}")

    parent_of = {e.id: e.parent_id for e in by_id.values()}
    for e in by_id.values():
        if e.parent_id is None:
            continue
        parent = by_id.get(e.parent_id)
        if parent is None:
            violations.append(f"entity {e.id} points at missing parent {e.parent_id}")
        elif parent.is_note:
            violations.append(f"entity {e.id} is placed under note {parent.id}")
        if e.id in ancestor_ids(e.parent_id, parent_of):
            violations.append(f"entity {e.id} is its own ancestor")

    return IntegrityReport(entity_count=len(by_id), violations=tuple(violations))
