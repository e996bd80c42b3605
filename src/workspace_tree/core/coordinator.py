"""Optimistic structural mutations against the shared cache.

Every mutation runs the same protocol:

1. cancel in-flight reads of the cache keys it will touch;
2. snapshot those keys;
3. patch the cache speculatively so the view updates before the store answers;
4. resolve: on success swap the store's canonical entities into every cache
   location, on failure restore the snapshot and raise; then always settle by
   invalidating the affected regions.

Validation happens before step 1, so a rejected request never touches the
cache or the store.
"""

import dataclasses
import itertools
import time
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

from loguru import logger

from workspace_tree.cache.keys import children_key, entity_key
from workspace_tree.core.positions import (
    apply_move,
    insert_at,
    next_position,
    remove_from,
    reorder,
    replace_in,
    validate_move,
)
from workspace_tree.core.validation import validate_name
from workspace_tree.errors import MutationError, NotFoundError, TransportError, TreeError, ValidationError
from workspace_tree.models.entity import (
    Committed,
    CreateInput,
    Entity,
    EntityKind,
    NodeIdentity,
    Pending,
    StoreResult,
    identity_of,
)
from workspace_tree.protocols import CachePort, EntityStoreProtocol

T = TypeVar("T")

_MISSING = object()


def _now() -> int:
    return int(time.time())


@dataclass(frozen=True)
class Snapshot:
    """Cache entries captured before a speculative patch.

    Keys that were absent are recorded as absent, so restoring removes anything
    the patch added under them.
    """

    entries: dict[str, Any]

    @classmethod
    def capture(cls, cache: CachePort, keys: Iterable[str]) -> "Snapshot":
        entries = {}
        for key in dict.fromkeys(keys):
            value = cache.get(key)
            entries[key] = _MISSING if value is None else value
        return cls(entries=entries)

    def restore(self, cache: CachePort) -> None:
        for key, value in self.entries.items():
            if value is _MISSING:
                cache.remove(key)
            else:
                cache.set(key, value)


def swap_identity(
    group: Sequence[Entity],
    identity: NodeIdentity,
    canonical: Entity,
) -> tuple[Entity, ...]:
    """Replace the entry matching ``identity`` with ``canonical``.

    Any other copy of the canonical id is dropped, so the group never lists an
    entity twice.
    """
    out: list[Entity] = []
    for entity in group:
        match identity, identity_of(entity):
            case Pending(temp_id=wanted), Pending(temp_id=found) if wanted == found:
                out.append(canonical)
            case Committed(id=wanted), Committed(id=found) if wanted == found:
                out.append(canonical)
            case _, Committed(id=found) if found == canonical.id:
                continue
            case _:
                out.append(entity)
    return tuple(out)


@dataclass
class BatchResult:
    """Outcome of a batch operation, one entry per requested id."""

    succeeded: list[int] = field(default_factory=list)
    errors: dict[int, TreeError] = field(default_factory=dict)

    @property
    def success(self) -> int:
        return len(self.succeeded)

    @property
    def failed(self) -> int:
        return len(self.errors)

    @property
    def messages(self) -> list[str]:
        return [str(e) for e in self.errors.values()]


class MutationCoordinator:
    """The only writer of structural changes to the cache."""

    def __init__(
        self,
        store: EntityStoreProtocol,
        cache: CachePort,
        *,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._clock = clock or _now
        self._temp_ids = itertools.count(-1, -1)
        self._pending: set[int] = set()

    def is_pending(self, entity_id: int) -> bool:
        """True while a mutation on ``entity_id`` awaits the store."""
        return entity_id in self._pending

    def lookup(self, entity_id: int) -> Entity | None:
        return self._cache.get(entity_key(entity_id))  # type: ignore[no-any-return]

    async def create_entity(
        self,
        name: str,
        *,
        parent_id: int | None = None,
        kind: EntityKind = EntityKind.FOLDER,
        content: str = "",
        position: int | None = None,
    ) -> Entity:
        """Create a folder or note, showing it immediately under a temporary id."""
        clean = validate_name(name)
        self._check_parent(parent_id)

        temp_id = next(self._temp_ids)
        group_key = children_key(parent_id)
        keys = [group_key, entity_key(temp_id)]
        await self._cancel(keys)
        snapshot = Snapshot.capture(self._cache, keys)

        siblings = self._group(parent_id)
        now = self._clock()
        draft = Entity(
            id=temp_id,
            name=clean,
            parent_id=parent_id,
            position=next_position(siblings),
            kind=kind,
            created_at=now,
            updated_at=now,
            content=content,
        )
        group = insert_at(siblings, draft, position)
        optimistic = next(e for e in group if e.id == temp_id)
        self._cache.set(group_key, group)
        self._cache.set(entity_key(temp_id), optimistic)
        logger.debug("Optimistically created {} as {}", optimistic.label, temp_id)

        self._pending.add(temp_id)
        try:
            result = await self._store.create(
                CreateInput(
                    name=clean,
                    parent_id=parent_id,
                    kind=kind,
                    content=content,
                    position=position,
                )
            )
            canonical = self._resolve(result, snapshot, "create", optimistic.label)
            self._cache.set(group_key, swap_identity(self._group(parent_id), Pending(temp_id), canonical))
            self._cache.remove(entity_key(temp_id))
            self._cache.set(entity_key(canonical.id), canonical)
            self._cache.invalidate(entity_key(canonical.id))
            logger.info("Created {} with id {}", canonical.label, canonical.id)
            return canonical
        finally:
            self._pending.discard(temp_id)
            self._settle([group_key])

    async def update_entity(
        self,
        entity_id: int,
        *,
        name: str | None = None,
        content: str | None = None,
        is_favorite: bool | None = None,
        is_public: bool | None = None,
    ) -> Entity:
        """Apply a partial update. Fields equal to the current value are ignored.

        Returns the current entity untouched, without a store call, when
        nothing would change.
        """
        only_name = content is None and is_favorite is None and is_public is None
        current = self._require(entity_id, "rename" if only_name else "update")
        changes: dict[str, Any] = {}
        if name is not None:
            clean = validate_name(name)
            if clean != current.name:
                changes["name"] = clean
        if content is not None and content != current.content:
            if not current.is_note:
                msg = f"Only notes carry content, {current.label} is a folder"
                raise ValidationError(msg)
            changes["content"] = content
        if is_favorite is not None and is_favorite != current.is_favorite:
            changes["is_favorite"] = is_favorite
        if is_public is not None and is_public != current.is_public:
            changes["is_public"] = is_public
        if not changes:
            logger.debug("Update of {} changes nothing, skipping", current.label)
            return current

        group_key = children_key(current.parent_id)
        keys = [entity_key(entity_id), group_key]
        await self._cancel(keys)
        snapshot = Snapshot.capture(self._cache, keys)

        successor = dataclasses.replace(current, **changes, updated_at=self._clock())
        self._cache.set(entity_key(entity_id), successor)
        self._patch_group(current.parent_id, lambda g: replace_in(g, entity_id, successor))
        logger.debug("Optimistically updated {}: {}", current.label, sorted(changes))

        operation = "rename" if set(changes) == {"name"} else "update"
        self._pending.add(entity_id)
        try:
            result = await self._store.update(entity_id, changes)
            canonical = self._resolve(result, snapshot, operation, current.label)
            self._commit(canonical)
            logger.info("Updated {}", canonical.label)
            return canonical
        finally:
            self._pending.discard(entity_id)
            self._settle([group_key])

    async def rename_entity(self, entity_id: int, name: str) -> Entity:
        return await self.update_entity(entity_id, name=name)

    async def toggle_favorite(self, entity_id: int) -> Entity:
        current = self._require(entity_id, "update")
        return await self.update_entity(entity_id, is_favorite=not current.is_favorite)

    async def delete_entity(
        self,
        entity_id: int,
        *,
        force: bool = False,
        optimistic: bool = True,
    ) -> None:
        """Delete an entity; ``force`` also deletes its subtree.

        With ``optimistic`` the entity disappears from the cache at once and
        comes back if the store refuses. Without it the store is asked first and
        the cache is pruned only after it agrees.
        """
        current = self._require(entity_id, "delete")
        subtree = self._cached_subtree(entity_id) if force else []
        group_key = children_key(current.parent_id)
        keys = [group_key, entity_key(entity_id), children_key(entity_id)]
        for eid in subtree:
            keys.extend([entity_key(eid), children_key(eid)])
        await self._cancel(keys)
        snapshot = Snapshot.capture(self._cache, keys)

        def prune() -> None:
            self._patch_group(current.parent_id, lambda g: remove_from(g, entity_id))
            for key in keys[1:]:
                self._cache.remove(key)

        if optimistic:
            prune()
            logger.debug("Optimistically deleted {} ({} descendants)", current.label, len(subtree))

        self._pending.add(entity_id)
        try:
            result = await self._store.delete(entity_id, force=force)
            self._resolve(result, snapshot, "delete", current.label)
            prune()
            logger.info("Deleted {}", current.label)
        finally:
            self._pending.discard(entity_id)
            self._settle([group_key])

    async def move_entity(
        self,
        entity_id: int,
        new_parent_id: int | None,
        new_position: int | None = None,
    ) -> Entity:
        """Move an entity under ``new_parent_id``, at ``new_position`` or last.

        Raises:
            CycleError: If the target is the entity itself or one of its descendants.
        """
        current = self._require(entity_id, "move")
        self._check_parent(new_parent_id)
        validate_move(entity_id, new_parent_id, self._ancestry(new_parent_id))

        source_key = children_key(current.parent_id)
        dest_key = children_key(new_parent_id)
        keys = [entity_key(entity_id), source_key, dest_key]
        await self._cancel(keys)
        snapshot = Snapshot.capture(self._cache, keys)

        source = self._cache.get(source_key)
        if source is not None and all(e.id != entity_id for e in source):
            source = None
        outcome = apply_move(
            source or (current,),
            self._group(new_parent_id),
            current,
            new_parent_id,
            new_position,
        )
        if source is not None:
            self._cache.set(source_key, outcome.source)
        if dest_key != source_key or source is not None:
            self._cache.set(dest_key, outcome.destination)
        self._cache.set(entity_key(entity_id), outcome.moved)
        logger.debug(
            "Optimistically moved {} to parent {} at {}",
            current.label,
            new_parent_id,
            outcome.moved.position,
        )

        self._pending.add(entity_id)
        try:
            result = await self._store.move(entity_id, new_parent_id, new_position)
            canonical = self._resolve(result, snapshot, "move", current.label)
            self._commit(canonical)
            logger.info("Moved {} to parent {}", canonical.label, canonical.parent_id)
            return canonical
        finally:
            self._pending.discard(entity_id)
            self._settle([source_key, dest_key])

    async def reorder_children(self, parent_id: int | None, ordered_ids: Sequence[int]) -> None:
        """Rewrite the order of a sibling group; positions become 0..n-1.

        Raises:
            ValidationError: If ``ordered_ids`` is not a permutation of the group.
        """
        group_key = children_key(parent_id)
        current = self._group(parent_id)
        reordered = reorder(current, ordered_ids)
        if reordered == current:
            logger.debug("Reorder of {} keeps the current order, skipping", group_key)
            return

        keys = [group_key, *(entity_key(e.id) for e in current)]
        await self._cancel(keys)
        snapshot = Snapshot.capture(self._cache, keys)

        self._cache.set(group_key, reordered)
        for entity in reordered:
            if self._cache.get(entity_key(entity.id)) is not None:
                self._cache.set(entity_key(entity.id), entity)
        logger.debug("Optimistically reordered {}", group_key)

        where = "root entities" if parent_id is None else f"children of {parent_id}"
        self._pending.update(ordered_ids)
        try:
            result = await self._store.reorder(parent_id, ordered_ids)
            self._resolve(result, snapshot, "reorder", where)
            logger.info("Reordered {}", where)
        finally:
            self._pending.difference_update(ordered_ids)
            self._settle([group_key])

    # -- batches --

    async def batch_delete(
        self,
        entity_ids: Sequence[int],
        *,
        force: bool = False,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> BatchResult:
        """Delete entities one at a time; a failure affects only its own item."""

        async def step(entity_id: int, _: int) -> None:
            await self.delete_entity(entity_id, force=force)

        return await self._run_batch("delete", entity_ids, step, on_progress)

    async def batch_move(
        self,
        entity_ids: Sequence[int],
        new_parent_id: int | None,
        *,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> BatchResult:
        """Move entities under one parent, the i-th item to position i."""

        async def step(entity_id: int, index: int) -> None:
            await self.move_entity(entity_id, new_parent_id, index)

        return await self._run_batch("move", entity_ids, step, on_progress)

    async def batch_update(
        self,
        entity_ids: Sequence[int],
        *,
        is_favorite: bool | None = None,
        is_public: bool | None = None,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> BatchResult:
        async def step(entity_id: int, _: int) -> None:
            await self.update_entity(entity_id, is_favorite=is_favorite, is_public=is_public)

        return await self._run_batch("update", entity_ids, step, on_progress)

    async def _run_batch(
        self,
        operation: str,
        entity_ids: Sequence[int],
        step: Callable[[int, int], Awaitable[None]],
        on_progress: Callable[[int, int], None] | None,
    ) -> BatchResult:
        result = BatchResult()
        total = len(entity_ids)
        for index, entity_id in enumerate(entity_ids):
            try:
                await step(entity_id, index)
            except (ValidationError, TransportError) as e:
                logger.debug("Batch {} skipped entity {}: {}", operation, entity_id, e)
                result.errors[entity_id] = e
            else:
                result.succeeded.append(entity_id)
            if on_progress is not None:
                on_progress(index + 1, total)
        logger.info("Batch {}: {} succeeded, {} failed", operation, result.success, result.failed)
        return result

    def _resolve(self, result: StoreResult[T], snapshot: Snapshot, operation: str, target: str) -> T:
        if result.success and result.data is not None:
            return result.data
        snapshot.restore(self._cache)
        cause = result.error or "unknown error"
        logger.warning("Rolled back {} of {}: {}", operation, target, cause)
        error_cls = NotFoundError if result.code == "NOT_FOUND" else MutationError
        raise error_cls.for_operation(operation, target, cause, code=result.code)

    def _commit(self, canonical: Entity) -> None:
        """Write the store's entity into its own key and its parent's group."""
        self._cache.set(entity_key(canonical.id), canonical)
        self._patch_group(
            canonical.parent_id,
            lambda g: swap_identity(g, Committed(canonical.id), canonical),
        )
        self._cache.invalidate(entity_key(canonical.id))

    def _settle(self, group_keys: Iterable[str]) -> None:
        for key in dict.fromkeys([*group_keys, children_key(None)]):
            self._cache.invalidate(key)

    async def _cancel(self, keys: Iterable[str]) -> None:
        for key in dict.fromkeys(keys):
            await self._cache.cancel(key)

    def _group(self, parent_id: int | None) -> tuple[Entity, ...]:
        return self._cache.get(children_key(parent_id)) or ()

    def _patch_group(
        self,
        parent_id: int | None,
        patch: Callable[[tuple[Entity, ...]], tuple[Entity, ...]],
    ) -> None:
        group = self._cache.get(children_key(parent_id))
        if group is not None:
            self._cache.set(children_key(parent_id), patch(group))

    def _require(self, entity_id: int, operation: str) -> Entity:
        entity = self.lookup(entity_id)
        if entity is None:
            target = f"entity {entity_id}"
            raise NotFoundError.for_operation(operation, target, "not loaded", code="NOT_FOUND")
        return entity

    def _check_parent(self, parent_id: int | None) -> None:
        if parent_id is None:
            return
        parent = self.lookup(parent_id)
        if parent is not None and parent.is_note:
            msg = f"Cannot place an entity under {parent.label}"
            raise ValidationError(msg)

    def _ancestry(self, entity_id: int | None) -> dict[int, int | None]:
        """Parent links from ``entity_id`` upward, as far as the cache knows."""
        chain: dict[int, int | None] = {}
        current = entity_id
        while current is not None and current not in chain:
            entity = self.lookup(current)
            if entity is None:
                break
            chain[current] = entity.parent_id
            current = entity.parent_id
        return chain

    def _cached_subtree(self, entity_id: int) -> list[int]:
        out: list[int] = []
        queue = [entity_id]
        while queue:
            for child in self._group(queue.pop(0)):
                if child.id not in out:
                    out.append(child.id)
                    queue.append(child.id)
        return out
