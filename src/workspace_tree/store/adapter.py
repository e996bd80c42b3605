"""Entity store adapter over a backend command transport."""

from collections.abc import Mapping, Sequence
from typing import Any

from loguru import logger

from workspace_tree.errors import TransportFailure
from workspace_tree.models.entity import (
    CreateInput,
    Entity,
    StoreResult,
    entity_from_dict,
)
from workspace_tree.protocols import TransportProtocol

# Fields a partial update may carry, and their wire names.
_UPDATABLE = {
    "name": "name",
    "content": "content",
    "is_favorite": "isFavorite",
    "is_public": "isPublic",
    "parent_id": "parentId",
    "updated_at": "updatedAt",
}


class EntityStoreAdapter:
    """Thin async client for the persistence backend.

    Every call returns a :class:`StoreResult`; transport failures and malformed
    responses become failed results rather than exceptions.
    """

    def __init__(self, transport: TransportProtocol) -> None:
        self._transport = transport

    async def create(self, data: CreateInput) -> StoreResult[Entity]:
        args: dict[str, Any] = {
            "name": data.name,
            "parentId": data.parent_id,
            "kind": data.kind.value,
            "content": data.content,
            "isPublic": data.is_public,
        }
        if data.position is not None:
            args["position"] = data.position
        return await self._entity_call("create_entity", args)

    async def update(self, entity_id: int, changes: Mapping[str, Any]) -> StoreResult[Entity]:
        unknown = set(changes) - set(_UPDATABLE)
        if unknown:
            return StoreResult.fail(f"Cannot update fields {sorted(unknown)!r}", code="BAD_REQUEST")
        payload = {_UPDATABLE[k]: v for k, v in changes.items()}
        return await self._entity_call("update_entity", {"id": entity_id, "changes": payload})

    async def delete(self, entity_id: int, *, force: bool = False) -> StoreResult[bool]:
        return await self._flag_call("delete_entity", {"id": entity_id, "force": force})

    async def move(
        self,
        entity_id: int,
        new_parent_id: int | None,
        new_position: int | None = None,
    ) -> StoreResult[Entity]:
        args: dict[str, Any] = {"id": entity_id, "newParentId": new_parent_id}
        if new_position is not None:
            args["newPosition"] = new_position
        return await self._entity_call("move_entity", args)

    async def reorder(self, parent_id: int | None, ordered_ids: Sequence[int]) -> StoreResult[bool]:
        return await self._flag_call(
            "reorder_entities", {"parentId": parent_id, "orderedIds": list(ordered_ids)}
        )

    async def list_root(self) -> StoreResult[tuple[Entity, ...]]:
        return await self._list_call("list_root", {})

    async def list_children(self, parent_id: int) -> StoreResult[tuple[Entity, ...]]:
        return await self._list_call("list_children", {"parentId": parent_id})

    async def get_by_id(self, entity_id: int) -> StoreResult[Entity]:
        return await self._entity_call("get_entity", {"id": entity_id})

    async def _invoke(self, command: str, args: dict[str, Any]) -> dict[str, Any] | StoreResult[Any]:
        try:
            envelope = await self._transport.invoke(command, args)
        except TransportFailure as e:
            logger.warning("Store command {} failed: {}", command, e)
            return StoreResult.fail(str(e), code="TRANSPORT_ERROR")
        if not isinstance(envelope, dict) or "success" not in envelope:
            logger.warning("Malformed response to {}: {!r}", command, envelope)
            return StoreResult.fail(f"Malformed response to {command}: {envelope!r}", code="BAD_RESPONSE")
        if not envelope["success"]:
            error = envelope.get("error") or f"{command} failed"
            logger.debug("Store rejected {}: {}", command, error)
            return StoreResult.fail(str(error), code=envelope.get("code"))
        return envelope

    async def _entity_call(self, command: str, args: dict[str, Any]) -> StoreResult[Entity]:
        envelope = await self._invoke(command, args)
        if isinstance(envelope, StoreResult):
            return envelope
        try:
            return StoreResult.ok(entity_from_dict(envelope.get("data") or {}))
        except ValueError as e:
            return StoreResult.fail(str(e), code="BAD_RESPONSE")

    async def _list_call(self, command: str, args: dict[str, Any]) -> StoreResult[tuple[Entity, ...]]:
        envelope = await self._invoke(command, args)
        if isinstance(envelope, StoreResult):
            return envelope
        try:
            records = envelope.get("data") or []
            entities = tuple(entity_from_dict(r) for r in records)
        except (TypeError, ValueError) as e:
            return StoreResult.fail(str(e), code="BAD_RESPONSE")
        return StoreResult.ok(tuple(sorted(entities, key=lambda e: (e.position, e.id))))

    async def _flag_call(self, command: str, args: dict[str, Any]) -> StoreResult[bool]:
        envelope = await self._invoke(command, args)
        if isinstance(envelope, StoreResult):
            return envelope
        return StoreResult.ok(bool(envelope.get("data", True)))
