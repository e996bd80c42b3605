"""Pointer-driven drag and drop of tree rows."""

import math
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from enum import StrEnum

from loguru import logger

from workspace_tree.config import DRAG_ACTIVATION_DISTANCE
from workspace_tree.core.coordinator import MutationCoordinator
from workspace_tree.core.positions import array_move, sort_siblings, validate_move
from workspace_tree.core.tree.navigation import parent_map
from workspace_tree.errors import CycleError
from workspace_tree.models.entity import Entity


class DragPhase(StrEnum):
    IDLE = "idle"
    PRESSED = "pressed"
    DRAGGING = "dragging"


class DropKind(StrEnum):
    CLICK = "click"
    REORDERED = "reordered"
    MOVED = "moved"
    IGNORED = "ignored"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class DraggedEntity:
    """What was picked up, and where it was when the drag began."""

    entity_id: int
    parent_id: int | None
    position: int
    origin_x: float
    origin_y: float


@dataclass(frozen=True)
class DropZone:
    """Where a drop on the hovered row would land."""

    target_id: int
    parent_id: int | None
    position: int


@dataclass(frozen=True)
class DropCandidate:
    """A row on screen, reduced to its center point."""

    entity_id: int
    center_x: float
    center_y: float


@dataclass(frozen=True)
class DropResult:
    kind: DropKind
    entity_id: int | None = None


def closest_center(x: float, y: float, candidates: Iterable[DropCandidate]) -> DropCandidate | None:
    """The candidate whose center is nearest the pointer; the first one wins ties."""
    best: DropCandidate | None = None
    best_distance = math.inf
    for candidate in candidates:
        distance = math.hypot(candidate.center_x - x, candidate.center_y - y)
        if distance < best_distance:
            best, best_distance = candidate, distance
    return best


class DragController:
    """Recognizes drags, tracks the hovered drop zone and commits drops.

    A press only becomes a drag once the pointer has travelled
    ``activation_distance`` pixels; releasing before that is a click. Nothing is
    written to the cache until a drop is committed through the coordinator.
    """

    def __init__(
        self,
        coordinator: MutationCoordinator,
        entities: Callable[[], Iterable[Entity]],
        *,
        activation_distance: float = DRAG_ACTIVATION_DISTANCE,
    ) -> None:
        self._coordinator = coordinator
        self._entities = entities
        self.activation_distance = activation_distance
        self.phase = DragPhase.IDLE
        self.dragged: DraggedEntity | None = None
        self.over: DropZone | None = None

    @property
    def is_dragging(self) -> bool:
        return self.phase is DragPhase.DRAGGING

    def pointer_down(self, entity_id: int, x: float, y: float) -> bool:
        entity = self._index().get(entity_id)
        if entity is None:
            return False
        self.phase = DragPhase.PRESSED
        self.dragged = DraggedEntity(
            entity_id=entity.id,
            parent_id=entity.parent_id,
            position=entity.position,
            origin_x=x,
            origin_y=y,
        )
        self.over = None
        return True

    def pointer_move(self, x: float, y: float, candidates: Sequence[DropCandidate] = ()) -> DragPhase:
        """Track the pointer; start the drag past the threshold, then follow the closest row."""
        if self.dragged is None:
            return self.phase
        if self.phase is DragPhase.PRESSED:
            travelled = math.hypot(x - self.dragged.origin_x, y - self.dragged.origin_y)
            if travelled < self.activation_distance:
                return self.phase
            self.phase = DragPhase.DRAGGING
            logger.debug("Drag started for entity {}", self.dragged.entity_id)
        hovered = closest_center(x, y, (c for c in candidates if c.entity_id != self.dragged.entity_id))
        if hovered is not None:
            self.drag_over(hovered.entity_id)
        return self.phase

    def drag_over(self, target_id: int | None) -> DropZone | None:
        if not self.is_dragging:
            return None
        target = self._index().get(target_id) if target_id is not None else None
        if target is None:
            self.over = None
        else:
            self.over = DropZone(target_id=target.id, parent_id=target.parent_id, position=target.position)
        return self.over

    async def drop(self, target_id: int | None = None) -> DropResult:
        """Commit a drop on ``target_id`` (or on the hovered row).

        Raises:
            CycleError: If the drop would put the entity beneath itself. The drag
                is reset and the cache is untouched.
        """
        dragged = self.dragged
        phase = self.phase
        if target_id is None and self.over is not None:
            target_id = self.over.target_id
        self.reset()

        if dragged is None:
            return DropResult(DropKind.IGNORED)
        if phase is DragPhase.PRESSED:
            return DropResult(DropKind.CLICK, dragged.entity_id)
        if target_id is None:
            return DropResult(DropKind.CANCELLED, dragged.entity_id)
        if target_id == dragged.entity_id:
            return DropResult(DropKind.IGNORED, dragged.entity_id)

        entities = list(self._entities())
        index = {e.id: e for e in entities}
        source, target = index.get(dragged.entity_id), index.get(target_id)
        if source is None or target is None:
            logger.debug("Drop of {} on {} refers to a vanished entity", dragged.entity_id, target_id)
            return DropResult(DropKind.CANCELLED, dragged.entity_id)

        if source.parent_id == target.parent_id:
            ids = [e.id for e in sort_siblings(e for e in entities if e.parent_id == source.parent_id)]
            ordered = array_move(ids, ids.index(source.id), ids.index(target.id))
            await self._coordinator.reorder_children(source.parent_id, ordered)
            return DropResult(DropKind.REORDERED, source.id)

        try:
            validate_move(source.id, target.parent_id, parent_map(entities))
        except CycleError:
            logger.debug("Rejected drop of {} on {}", source.id, target.id)
            raise
        await self._coordinator.move_entity(source.id, target.parent_id, target.position)
        return DropResult(DropKind.MOVED, source.id)

    async def drop_on_background(self) -> DropResult:
        """A drop on empty space moves the entity to the root level."""
        dragged = self.dragged
        phase = self.phase
        self.reset()
        if dragged is None:
            return DropResult(DropKind.IGNORED)
        if phase is DragPhase.PRESSED:
            return DropResult(DropKind.CLICK, dragged.entity_id)
        source = self._index().get(dragged.entity_id)
        if source is None or source.parent_id is None:
            return DropResult(DropKind.IGNORED, dragged.entity_id)
        await self._coordinator.move_entity(source.id, None)
        return DropResult(DropKind.MOVED, source.id)

    def cancel(self) -> DropResult:
        dragged = self.dragged
        self.reset()
        return DropResult(DropKind.CANCELLED, dragged.entity_id if dragged else None)

    def reset(self) -> None:
        self.phase = DragPhase.IDLE
        self.dragged = None
        self.over = None

    def _index(self) -> dict[int, Entity]:
        return {e.id: e for e in self._entities()}
