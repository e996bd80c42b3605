"""Read side: load folders and notes from the store into the cache."""

from typing import TypeVar

from loguru import logger

from workspace_tree.cache.keys import (
    CHILDREN_PREFIX,
    ENTITY_PREFIX,
    children_key,
    entity_key,
    parse_children_key,
    parse_entity_key,
)
from workspace_tree.cache.query_cache import QueryCache
from workspace_tree.errors import NotFoundError, TransportError
from workspace_tree.models.entity import Entity, EntityKind, StoreResult
from workspace_tree.protocols import EntityStoreProtocol

T = TypeVar("T")


def _unwrap(result: StoreResult[T], what: str) -> T:
    if result.success and result.data is not None:
        return result.data
    cause = result.error or "unknown error"
    msg = f"Failed to load {what}: {cause}"
    if result.code == "NOT_FOUND":
        raise NotFoundError(msg, operation="load", target=what, cause=cause, code=result.code)
    raise TransportError(msg, operation="load", target=what, cause=cause, code=result.code)


class TreeQueries:
    """Loads sibling groups and entities through the cache.

    Every load writes the children list under ``children:{parent}`` and each
    entity under ``entity:{id}``.
    """

    def __init__(self, store: EntityStoreProtocol, cache: QueryCache) -> None:
        self._store = store
        self._cache = cache

    @property
    def cache(self) -> QueryCache:
        return self._cache

    async def load_children(self, parent_id: int | None) -> tuple[Entity, ...]:
        """Fetch one sibling group; returns the cached group if the read was cancelled."""
        key = children_key(parent_id)
        what = "root entities" if parent_id is None else f"children of {parent_id}"

        async def loader() -> tuple[Entity, ...]:
            if parent_id is None:
                result = await self._store.list_root()
            else:
                result = await self._store.list_children(parent_id)
            return tuple(_unwrap(result, what))

        group = await self._cache.fetch(key, loader)
        if group is None:
            return ()
        for entity in group:
            self._cache.set(entity_key(entity.id), entity)
        return group

    async def load_entity(self, entity_id: int) -> Entity | None:
        async def loader() -> Entity:
            return _unwrap(await self._store.get_by_id(entity_id), f"entity {entity_id}")

        return await self._cache.fetch(entity_key(entity_id), loader)

    async def load_tree(self) -> list[Entity]:
        """Load the whole hierarchy breadth first, descending into folders."""
        loaded: list[Entity] = []
        queue: list[int | None] = [None]
        seen: set[int | None] = set()
        while queue:
            parent_id = queue.pop(0)
            if parent_id in seen:
                continue
            seen.add(parent_id)
            group = await self.load_children(parent_id)
            loaded.extend(group)
            queue.extend(e.id for e in group if e.kind is EntityKind.FOLDER)
        logger.debug("Loaded {} entities into the cache", len(loaded))
        return loaded

    async def refresh_stale(self) -> list[str]:
        """Refetch every stale key. Returns the keys that were refreshed.

        Stale children groups whose parent is gone are dropped instead.
        """
        refreshed: list[str] = []
        for key in self._cache.stale_keys():
            try:
                if key.startswith(CHILDREN_PREFIX):
                    await self.load_children(parse_children_key(key))
                elif key.startswith(ENTITY_PREFIX):
                    await self.load_entity(parse_entity_key(key))
                else:
                    continue
            except NotFoundError:
                logger.debug("Dropping {}: no longer exists", key)
                self._cache.remove(key)
                continue
            refreshed.append(key)
        return refreshed

    def cached_entities(self) -> list[Entity]:
        """Every entity present in a cached sibling group, deduplicated by id."""
        seen: dict[int, Entity] = {}
        for key in self._cache.keys(CHILDREN_PREFIX):
            for entity in self._cache.get(key) or ():
                seen.setdefault(entity.id, entity)
        return list(seen.values())

    def cached_children(self, parent_id: int | None) -> tuple[Entity, ...]:
        return self._cache.get(children_key(parent_id)) or ()
