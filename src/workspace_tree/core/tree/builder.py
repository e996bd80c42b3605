"""Build an ordered, depth-annotated tree from a flat entity list."""

from collections.abc import Callable, Collection, Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType

from loguru import logger

from workspace_tree.models.entity import Entity


class SortKey(StrEnum):
    NAME = "name"
    POSITION = "position"
    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"


class SortOrder(StrEnum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class TreeBuildOptions:
    """How to filter, sort and cut the tree.

    ``max_depth`` prunes nodes whose depth is ``>= max_depth`` from the view;
    ``None`` or ``0`` keeps every level, a negative value keeps nothing.
    """

    sort_by: SortKey = SortKey.POSITION
    sort_order: SortOrder = SortOrder.ASC
    max_depth: int | None = None
    filter_fn: Callable[[Entity], bool] | None = None


@dataclass(frozen=True)
class ArenaNode:
    """One entity in the arena; links are ids, not object references."""

    entity: Entity
    parent_id: int | None
    child_ids: tuple[int, ...]
    depth: int
    has_children: bool
    is_expanded: bool


@dataclass(frozen=True)
class TreeNode:
    """A materialized node handed to the rendering layer."""

    entity: Entity
    children: tuple["TreeNode", ...]
    depth: int
    has_children: bool
    is_expanded: bool

    @property
    def id(self) -> int:
        return self.entity.id

    @property
    def name(self) -> str:
        return self.entity.name

    @property
    def parent_id(self) -> int | None:
        return self.entity.parent_id

    @property
    def position(self) -> int:
        return self.entity.position


@dataclass(frozen=True)
class TreeArena:
    """Id-indexed tree. ``parent_id`` on a node is its effective parent in the view."""

    nodes: Mapping[int, ArenaNode] = field(default_factory=lambda: MappingProxyType({}))
    root_ids: tuple[int, ...] = ()

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self.nodes

    def get(self, entity_id: int) -> ArenaNode | None:
        return self.nodes.get(entity_id)

    def children_of(self, entity_id: int | None) -> tuple[ArenaNode, ...]:
        ids = self.root_ids if entity_id is None else self.nodes[entity_id].child_ids
        return tuple(self.nodes[i] for i in ids)

    def walk(self) -> Iterable[ArenaNode]:
        """Yield nodes in display (pre-)order."""
        stack = list(reversed(self.root_ids))
        while stack:
            node = self.nodes[stack.pop()]
            yield node
            stack.extend(reversed(node.child_ids))

    def to_nodes(self) -> tuple[TreeNode, ...]:
        return tuple(self._materialize(i) for i in self.root_ids)

    def _materialize(self, entity_id: int) -> TreeNode:
        node = self.nodes[entity_id]
        return TreeNode(
            entity=node.entity,
            children=tuple(self._materialize(i) for i in node.child_ids),
            depth=node.depth,
            has_children=node.has_children,
            is_expanded=node.is_expanded,
        )


def _sort_value(entity: Entity, key: SortKey) -> tuple[object, int]:
    # Ties break on id so the result does not depend on input order.
    if key is SortKey.NAME:
        return (entity.name.casefold(), entity.id)
    if key is SortKey.CREATED_AT:
        return (entity.created_at, entity.id)
    if key is SortKey.UPDATED_AT:
        return (entity.updated_at, entity.id)
    return (entity.position, entity.id)


def sort_entities(entities: Iterable[Entity], options: TreeBuildOptions) -> list[Entity]:
    return sorted(
        entities,
        key=lambda e: _sort_value(e, options.sort_by),
        reverse=options.sort_order is SortOrder.DESC,
    )


def build_arena(
    entities: Iterable[Entity],
    expanded_ids: Collection[int] = (),
    options: TreeBuildOptions | None = None,
) -> TreeArena:
    """Index entities into an ordered arena.

    Entities whose parent is absent from the (filtered) input are surfaced as
    roots rather than dropped.
    """
    options = options or TreeBuildOptions()
    items = list(entities)
    if options.filter_fn is not None:
        items = [e for e in items if options.filter_fn(e)]
    ordered = sort_entities(items, options)

    by_id = {e.id: e for e in ordered}
    children: dict[int, list[int]] = {e.id: [] for e in ordered}
    roots: list[int] = []
    for entity in ordered:
        parent = entity.parent_id
        if parent is None:
            roots.append(entity.id)
        elif parent == entity.id:
            continue
        elif parent in by_id:
            children[parent].append(entity.id)
        else:
            logger.debug("Entity {} has missing parent {}, treating as root", entity.id, parent)
            roots.append(entity.id)
    has_children = {eid: bool(kids) for eid, kids in children.items()}

    # Anything unreachable from a root sits on a parent cycle; surface it instead of hiding it.
    reached: set[int] = set()
    for root_id in roots:
        _mark_reachable(root_id, children, reached)
    for entity in ordered:
        if entity.id not in reached:
            logger.warning("Entity {} is part of a parent cycle, treating as root", entity.id)
            roots.append(entity.id)
            _mark_reachable(entity.id, children, reached)

    nodes: dict[int, ArenaNode] = {}
    limit = options.max_depth or None
    if limit is not None and limit < 0:
        return TreeArena()

    # Depths are assigned top-down; a node's parent_id is its parent in the view.
    root_set = set(roots)
    stack: list[tuple[int, int | None, int]] = [(r, None, 0) for r in reversed(roots)]
    while stack:
        eid, parent_id, depth = stack.pop()
        kids = [c for c in children[eid] if c not in nodes and c not in root_set]
        keep = limit is None or depth + 1 < limit
        nodes[eid] = ArenaNode(
            entity=by_id[eid],
            parent_id=parent_id,
            child_ids=tuple(kids) if keep else (),
            depth=depth,
            has_children=has_children[eid],
            is_expanded=eid in expanded_ids,
        )
        if keep:
            stack.extend((c, eid, depth + 1) for c in reversed(kids))

    return TreeArena(nodes=MappingProxyType(nodes), root_ids=tuple(roots))


def _mark_reachable(root_id: int, children: Mapping[int, list[int]], reached: set[int]) -> None:
    stack = [root_id]
    while stack:
        eid = stack.pop()
        if eid in reached:
            continue
        reached.add(eid)
        stack.extend(children[eid])


def build_tree(
    entities: Iterable[Entity],
    expanded_ids: Collection[int] = (),
    options: TreeBuildOptions | None = None,
) -> tuple[TreeNode, ...]:
    """Build the materialized tree handed to the rendering layer."""
    return build_arena(entities, expanded_ids, options).to_nodes()
