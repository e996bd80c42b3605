"""Tree navigation: flattening, breadcrumbs, siblings, subtree retrieval."""

from collections.abc import Collection, Iterable, Mapping

from workspace_tree.core.tree.builder import ArenaNode, TreeArena, TreeNode
from workspace_tree.models.entity import Breadcrumb, Entity


def flatten_visible(arena: TreeArena, expanded_ids: Collection[int]) -> tuple[ArenaNode, ...]:
    """Flatten the tree in display order, descending only into expanded nodes.

    A node's children are listed only when every ancestor is expanded too.
    """
    out: list[ArenaNode] = []
    stack = list(reversed(arena.root_ids))
    while stack:
        node = arena.nodes[stack.pop()]
        out.append(node)
        if node.has_children and node.entity.id in expanded_ids:
            stack.extend(reversed(node.child_ids))
    return tuple(out)


def flatten_nodes(nodes: Iterable[TreeNode], expanded_ids: Collection[int]) -> list[TreeNode]:
    """Same as :func:`flatten_visible`, over materialized TreeNodes."""
    result: list[TreeNode] = []
    for node in nodes:
        result.append(node)
        if node.has_children and node.id in expanded_ids:
            result.extend(flatten_nodes(node.children, expanded_ids))
    return result


def find_node(nodes: Iterable[TreeNode], entity_id: int) -> TreeNode | None:
    """Depth-first search of a materialized tree."""
    for node in nodes:
        if node.id == entity_id:
            return node
        found = find_node(node.children, entity_id)
        if found is not None:
            return found
    return None


def get_breadcrumbs(arena: TreeArena, entity_id: int) -> tuple[Breadcrumb, ...]:
    """Get ancestor breadcrumbs for a node.

    Returns breadcrumbs in order from root to immediate parent (excludes the node itself).
    """
    node = arena.get(entity_id)
    crumbs: list[Breadcrumb] = []
    while node is not None and node.parent_id is not None:
        node = arena.nodes[node.parent_id]
        crumbs.append(Breadcrumb(entity_id=node.entity.id, name=node.entity.name, depth=node.depth))
    return tuple(reversed(crumbs))


def get_path(arena: TreeArena, entity_id: int) -> tuple[Entity, ...]:
    """Entities from the root down to and including ``entity_id``."""
    chain: list[Entity] = []
    node = arena.get(entity_id)
    while node is not None:
        chain.append(node.entity)
        node = arena.get(node.parent_id) if node.parent_id is not None else None
    return tuple(reversed(chain))


def get_siblings(
    arena: TreeArena,
    entity_id: int,
    *,
    count: int = 3,
) -> tuple[tuple[Entity, ...], tuple[Entity, ...]]:
    """Get siblings before and after a node.

    Returns (siblings_before, siblings_after) tuples, nearest last/first.
    """
    node = arena.get(entity_id)
    if node is None:
        return (), ()
    group = [n.entity for n in arena.children_of(node.parent_id)]
    index = next(i for i, e in enumerate(group) if e.id == entity_id)
    return tuple(group[max(0, index - count) : index]), tuple(group[index + 1 : index + 1 + count])


def get_children(arena: TreeArena, parent_id: int | None) -> tuple[Entity, ...]:
    """Direct children of a node (or the roots), in tree order."""
    if parent_id is not None and parent_id not in arena:
        return ()
    return tuple(n.entity for n in arena.children_of(parent_id))


def descendant_ids(entity_id: int, entities: Iterable[Entity]) -> list[int]:
    """Ids of every descendant of ``entity_id`` in a flat list, breadth first."""
    children: dict[int | None, list[int]] = {}
    for e in entities:
        children.setdefault(e.parent_id, []).append(e.id)
    out: list[int] = []
    seen = {entity_id}
    queue = list(children.get(entity_id, []))
    while queue:
        current = queue.pop(0)
        if current in seen:
            continue
        seen.add(current)
        out.append(current)
        queue.extend(children.get(current, []))
    return out


def parent_map(entities: Iterable[Entity]) -> Mapping[int, int | None]:
    """Map each entity id to its stored parent id."""
    return {e.id: e.parent_id for e in entities}
