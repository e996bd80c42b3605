"""Protocols for dependency injection in the tree engine."""

from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any, Protocol, TypeVar, runtime_checkable

from workspace_tree.models.entity import CreateInput, Entity, StoreResult

T = TypeVar("T")


@runtime_checkable
class TransportProtocol(Protocol):
    """Request/response bridge to the persistence backend."""

    async def invoke(self, command: str, args: dict[str, Any]) -> dict[str, Any]:
        """Send a command and return the decoded response envelope.

        Raises:
            TransportFailure: If the request could not be completed.
        """
        ...


@runtime_checkable
class EntityStoreProtocol(Protocol):
    """Durable owner of folder and note records."""

    async def create(self, data: CreateInput) -> StoreResult[Entity]:
        """Create an entity; the result carries its canonical id."""
        ...

    async def update(self, entity_id: int, changes: Mapping[str, Any]) -> StoreResult[Entity]:
        """Apply a partial update."""
        ...

    async def delete(self, entity_id: int, *, force: bool = False) -> StoreResult[bool]:
        """Delete an entity, and its subtree when forced."""
        ...

    async def move(
        self,
        entity_id: int,
        new_parent_id: int | None,
        new_position: int | None = None,
    ) -> StoreResult[Entity]:
        """Move an entity under a new parent."""
        ...

    async def reorder(self, parent_id: int | None, ordered_ids: Sequence[int]) -> StoreResult[bool]:
        """Rewrite sibling positions to follow ``ordered_ids``."""
        ...

    async def list_root(self) -> StoreResult[tuple[Entity, ...]]:
        """List root entities ordered by position."""
        ...

    async def list_children(self, parent_id: int) -> StoreResult[tuple[Entity, ...]]:
        """List children of a parent ordered by position."""
        ...

    async def get_by_id(self, entity_id: int) -> StoreResult[Entity]:
        """Fetch a single entity."""
        ...


@runtime_checkable
class CachePort(Protocol):
    """Client-side cache addressed by ``entity:{id}`` and ``children:{parent}`` keys."""

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None when absent."""
        ...

    def set(self, key: str, value: Any) -> None:
        """Store a value."""
        ...

    def remove(self, key: str) -> None:
        """Drop a key; missing keys are ignored."""
        ...

    async def cancel(self, key: str) -> None:
        """Cancel in-flight reads for a key so they cannot overwrite it."""
        ...

    def invalidate(self, key: str) -> None:
        """Mark a key stale so the next read refetches it."""
        ...

    async def fetch(self, key: str, loader: Callable[[], Awaitable[T]]) -> T | None:
        """Run a read for a key as a cancellable task and cache its value."""
        ...
