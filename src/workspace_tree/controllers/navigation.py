"""Keyboard focus, expansion and inline-rename over the visible tree."""

from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace

from loguru import logger

from workspace_tree.config import DEFAULT_FOLDER_NAME, DEFAULT_NOTE_TITLE
from workspace_tree.controllers.expansion import ExpansionState
from workspace_tree.core.coordinator import MutationCoordinator
from workspace_tree.core.tree.builder import ArenaNode, TreeArena, TreeBuildOptions, build_arena
from workspace_tree.core.tree.navigation import descendant_ids, flatten_visible
from workspace_tree.core.validation import name_problem, validate_name
from workspace_tree.errors import TransportError
from workspace_tree.models.entity import Entity, EntityKind

SelectHandler = Callable[[Entity], None]


@dataclass(frozen=True)
class EditSession:
    """An inline rename in progress."""

    entity_id: int
    original_name: str
    draft: str

    @property
    def changed(self) -> bool:
        return self.draft.strip() != self.original_name


class NavigationController:
    """Turns user intents into focus changes, expansion changes and coordinator calls.

    Focus moves over the flattened view: only nodes whose ancestors are all
    expanded. The controller never talks to the store itself.
    """

    def __init__(
        self,
        coordinator: MutationCoordinator,
        entities: Callable[[], Iterable[Entity]],
        expansion: ExpansionState,
        *,
        options: TreeBuildOptions | None = None,
        on_select: SelectHandler | None = None,
    ) -> None:
        self._coordinator = coordinator
        self._entities = entities
        self.expansion = expansion
        self.options = options
        self._on_select = on_select
        self.focused_id: int | None = None
        self.editing: EditSession | None = None

    @property
    def is_editing(self) -> bool:
        return self.editing is not None

    def arena(self) -> TreeArena:
        return build_arena(self._entities(), self.expansion.ids, self.options)

    def visible(self) -> tuple[ArenaNode, ...]:
        return flatten_visible(self.arena(), self.expansion.ids)

    def focused(self) -> ArenaNode | None:
        if self.focused_id is None:
            return None
        return self.arena().get(self.focused_id)

    def focus(self, entity_id: int | None) -> None:
        self.focused_id = entity_id

    # -- focus movement --

    def move_down(self) -> int | None:
        return self._step(1)

    def move_up(self) -> int | None:
        return self._step(-1)

    def focus_first(self) -> int | None:
        rows = self.visible()
        self.focused_id = rows[0].entity.id if rows else None
        return self.focused_id

    def focus_last(self) -> int | None:
        rows = self.visible()
        self.focused_id = rows[-1].entity.id if rows else None
        return self.focused_id

    def _step(self, delta: int) -> int | None:
        rows = self.visible()
        if not rows:
            self.focused_id = None
            return None
        ids = [n.entity.id for n in rows]
        if self.focused_id not in ids:
            self.focused_id = ids[0] if delta > 0 else ids[-1]
        else:
            self.focused_id = ids[(ids.index(self.focused_id) + delta) % len(ids)]
        return self.focused_id

    # -- expansion --

    def expand(self) -> bool:
        node = self.focused()
        if node is None or node.entity.is_note:
            return False
        return self.expansion.expand(node.entity.id)

    def collapse(self) -> bool:
        if self.focused_id is None:
            return False
        return self.expansion.collapse(self.focused_id)

    def toggle(self) -> bool:
        node = self.focused()
        if node is None or node.entity.is_note:
            return False
        return self.expansion.toggle(node.entity.id)

    def focus_child(self) -> int | None:
        """Expand a collapsed node; on an expanded one, focus its first child."""
        node = self.focused()
        if node is None or not node.has_children:
            return self.focused_id
        if not self.expansion.is_expanded(node.entity.id):
            self.expansion.expand(node.entity.id)
        elif node.child_ids:
            self.focused_id = node.child_ids[0]
        return self.focused_id

    def focus_parent(self) -> int | None:
        """Collapse an expanded node; on a collapsed one, focus its parent."""
        node = self.focused()
        if node is None:
            return None
        if node.has_children and self.expansion.is_expanded(node.entity.id):
            self.expansion.collapse(node.entity.id)
        elif node.parent_id is not None:
            self.focused_id = node.parent_id
        return self.focused_id

    def expand_all_descendants(self) -> int:
        """Expand the focused node and every folder below it that has children."""
        if self.focused_id is None:
            return 0
        entities = list(self._entities())
        parents = {e.parent_id for e in entities}
        ids = [self.focused_id, *descendant_ids(self.focused_id, entities)]
        return self.expansion.expand_many(i for i in ids if i in parents)

    def select(self, entity_id: int | None = None) -> Entity | None:
        if entity_id is not None:
            self.focused_id = entity_id
        node = self.focused()
        if node is None:
            return None
        if self._on_select is not None:
            self._on_select(node.entity)
        return node.entity

    # -- inline rename --

    def begin_rename(self, entity_id: int | None = None) -> EditSession | None:
        target = self.focused_id if entity_id is None else entity_id
        entity = self._coordinator.lookup(target) if target is not None else None
        if entity is None:
            return None
        self.focused_id = entity.id
        self.editing = EditSession(entity_id=entity.id, original_name=entity.name, draft=entity.name)
        return self.editing

    def update_draft(self, text: str) -> None:
        if self.editing is not None:
            self.editing = replace(self.editing, draft=text)

    async def commit_rename(self) -> Entity | None:
        """Finish the rename.

        Raises:
            ValidationError: If the draft is not a valid name; editing continues.
            TransportError: If the store refused; editing has ended and the old
                name is back in the cache.
        """
        session = self.editing
        if session is None:
            return None
        clean = validate_name(session.draft)
        self.editing = None
        if clean == session.original_name:
            return None
        try:
            return await self._coordinator.rename_entity(session.entity_id, clean)
        except TransportError:
            logger.warning("Rename of entity {} failed, keeping {!r}", session.entity_id, session.original_name)
            raise

    def cancel_rename(self) -> None:
        self.editing = None

    async def blur(self) -> Entity | None:
        """Leaving the field commits a valid change and silently drops anything else."""
        session = self.editing
        if session is None:
            return None
        if not session.changed or name_problem(session.draft) is not None:
            self.cancel_rename()
            return None
        return await self.commit_rename()

    # -- structural intents --

    async def delete_focused(self, *, force: bool = False) -> bool:
        """Delete the focused node and move focus to its neighbour in the view."""
        if self.focused_id is None:
            return False
        before = [n.entity.id for n in self.visible()]
        index = before.index(self.focused_id) if self.focused_id in before else 0
        await self._coordinator.delete_entity(self.focused_id, force=force)
        after = [n.entity.id for n in self.visible()]
        self.focused_id = after[min(index, len(after) - 1)] if after else None
        return True

    async def create_child(self, kind: EntityKind = EntityKind.FOLDER, name: str | None = None) -> Entity:
        """Create an entity under the focused folder and start renaming it.

        A focused note gets a sibling instead, since notes hold no children.
        """
        node = self.focused()
        if node is None:
            parent_id = None
        elif node.entity.is_note:
            parent_id = node.entity.parent_id
        else:
            parent_id = node.entity.id
        if name is None:
            name = DEFAULT_NOTE_TITLE if kind is EntityKind.NOTE else DEFAULT_FOLDER_NAME
        if parent_id is not None:
            self.expansion.expand(parent_id)
        created = await self._coordinator.create_entity(name, parent_id=parent_id, kind=kind)
        self.begin_rename(created.id)
        return created

    # -- keyboard --

    async def handle_key(self, key: str, *, shift: bool = False) -> bool:
        """Dispatch a key press. Returns True when the key was handled."""
        if self.editing is not None:
            if key in ("Enter", "Tab"):
                await self.commit_rename()
                return True
            if key == "Escape":
                self.cancel_rename()
                return True
            return False

        match key:
            case "ArrowDown":
                self.move_down()
            case "ArrowUp":
                self.move_up()
            case "ArrowRight":
                self.focus_child()
            case "ArrowLeft":
                self.focus_parent()
            case "Home":
                self.focus_first()
            case "End":
                self.focus_last()
            case "Enter" | " ":
                self.select()
            case "F2":
                return self.begin_rename() is not None
            case "Delete" if not shift:
                return await self.delete_focused()
            case "Insert":
                await self.create_child()
            case "+":
                self.expand()
            case "-":
                self.collapse()
            case "*":
                self.expand_all_descendants()
            case _:
                return False
        return True
