"""Render entity trees as markdown outlines."""

import io

from workspace_tree.core.tree.builder import ArenaNode, TreeArena


def render_outline(
    arena: TreeArena,
    *,
    root_id: int | None = None,
    max_depth: int | None = None,
    include_content: bool = False,
) -> str:
    """Render the tree (or the subtree under ``root_id``) as indented markdown.

    Args:
        arena: Tree to render.
        root_id: Start node; None renders every root.
        max_depth: Max levels below the start to include (None = unlimited).
        include_content: Whether to quote note content under each note.

    Returns:
        Markdown string with bullet-list hierarchy. Nodes at the depth boundary
        that still have children get a truncation line.
    """
    if root_id is None:
        starts = list(arena.root_ids)
    elif root_id in arena:
        starts = [root_id]
    else:
        return ""

    out = io.StringIO()
    for start in starts:
        _render(arena, arena.nodes[start], 0, max_depth, include_content, out)
    return out.getvalue()


def _render(
    arena: TreeArena,
    node: ArenaNode,
    relative_depth: int,
    max_depth: int | None,
    include_content: bool,
    out: io.StringIO,
) -> None:
    entity = node.entity
    indent = "    " * relative_depth
    marker = "★ " if entity.is_favorite else ""
    suffix = "/" if not entity.is_note else ""
    out.write(f"{indent}- {marker}{entity.name}{suffix}\n")

    if include_content and entity.is_note and entity.content:
        for line in entity.content.split("\n"):
            out.write(f"{indent}  > {line}\n")

    # Children pruned by the builder are absent from the arena; only has_children survives.
    at_boundary = max_depth is not None and relative_depth >= max_depth
    if node.has_children and (at_boundary or not node.child_ids):
        child_indent = "    " * (relative_depth + 1)
        count = len(node.child_ids)
        if count:
            noun = "child" if count == 1 else "children"
            out.write(f"{child_indent}- ... ({count} more {noun}, id={entity.id})\n")
        else:
            out.write(f"{child_indent}- ... (more, id={entity.id})\n")
        return

    for child_id in node.child_ids:
        _render(arena, arena.nodes[child_id], relative_depth + 1, max_depth, include_content, out)
