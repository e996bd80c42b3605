"""In-process backend speaking the store command protocol.

Acts as the authoritative store for local use and tests: it enforces the tree
invariants itself (valid names, dense positions, acyclic parents, folders only
as parents) the way the persistent backend does.
"""

import asyncio
import dataclasses
import json
import time
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from loguru import logger

from workspace_tree.core.positions import (
    apply_move,
    insert_at,
    remove_from,
    reorder,
    sort_siblings,
    validate_move,
)
from workspace_tree.core.tree.navigation import descendant_ids
from workspace_tree.core.validation import name_problem
from workspace_tree.errors import CycleError, ValidationError
from workspace_tree.models.entity import Entity, EntityKind, entity_from_dict, entity_to_dict


class _Rejected(Exception):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


def _now() -> int:
    return int(time.time())


def read_seed(path: Path) -> list[Entity]:
    """Parse a JSON list of entity records, keeping duplicates and dangling parents as they are.

    Raises:
        ValueError: If the file is not JSON or not a list of entity records.
    """
    records = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(records, list) or not all(isinstance(r, dict) for r in records):
        msg = f"Seed file {path} must contain a JSON list of entities"
        raise ValueError(msg)
    return [entity_from_dict(r) for r in records]


class MemoryBackend:
    """Authoritative in-memory store of folders and notes."""

    def __init__(
        self,
        entities: Iterable[Entity] = (),
        *,
        latency: float = 0.0,
        clock: Callable[[], int] = _now,
    ) -> None:
        self._records: dict[int, Entity] = {e.id: e for e in entities}
        self._next_id = max(self._records, default=0) + 1
        self.latency = latency
        self._clock = clock
        self._handlers: dict[str, Callable[[dict[str, Any]], Any]] = {
            "create_entity": self._create,
            "update_entity": self._update,
            "delete_entity": self._delete,
            "move_entity": self._move,
            "reorder_entities": self._reorder,
            "list_root": lambda args: self._list(None),
            "list_children": self._list_children,
            "get_entity": lambda args: entity_to_dict(self._get(args["id"])),
        }

    @classmethod
    def from_json(cls, path: Path, **kwargs: Any) -> "MemoryBackend":
        """Seed a backend from a JSON list of entity records."""
        return cls(read_seed(path), **kwargs)

    def entities(self) -> list[Entity]:
        return sorted(self._records.values(), key=lambda e: e.id)

    def get(self, entity_id: int) -> Entity | None:
        return self._records.get(entity_id)

    def group(self, parent_id: int | None) -> tuple[Entity, ...]:
        return sort_siblings(e for e in self._records.values() if e.parent_id == parent_id)

    async def invoke(self, command: str, args: dict[str, Any]) -> dict[str, Any]:
        if self.latency:
            await asyncio.sleep(self.latency)
        handler = self._handlers.get(command)
        if handler is None:
            return {"success": False, "error": f"Unknown command {command!r}", "code": "UNKNOWN_COMMAND"}
        try:
            data = handler(args)
        except _Rejected as e:
            logger.debug("Backend rejected {}: {}", command, e)
            return {"success": False, "error": str(e), "code": e.code}
        return {"success": True, "data": data}

    def _get(self, entity_id: int) -> Entity:
        entity = self._records.get(entity_id)
        if entity is None:
            raise _Rejected("NOT_FOUND", f"Entity {entity_id} not found")
        return entity

    def _check_parent(self, parent_id: int | None) -> None:
        if parent_id is None:
            return
        parent = self._records.get(parent_id)
        if parent is None:
            raise _Rejected("NOT_FOUND", f"Parent folder {parent_id} not found")
        if parent.is_note:
            raise _Rejected("INVALID_PARENT", f"Note {parent_id} cannot contain entities")

    def _check_name(self, name: str) -> str:
        problem = name_problem(name)
        if problem is not None:
            raise _Rejected("INVALID_NAME", problem)
        return name.strip()

    def _write(self, entities: Iterable[Entity]) -> None:
        for e in entities:
            self._records[e.id] = e

    def _create(self, args: dict[str, Any]) -> dict[str, Any]:
        name = self._check_name(args.get("name", ""))
        parent_id = args.get("parentId")
        self._check_parent(parent_id)
        now = self._clock()
        entity = Entity(
            id=self._next_id,
            name=name,
            parent_id=parent_id,
            position=0,
            kind=EntityKind(args.get("kind", EntityKind.FOLDER)),
            is_public=bool(args.get("isPublic", True)),
            created_at=now,
            updated_at=now,
            content=args.get("content") or "",
        )
        self._next_id += 1
        group = insert_at(self.group(parent_id), entity, args.get("position"))
        self._write(group)
        return entity_to_dict(self._records[entity.id])

    def _update(self, args: dict[str, Any]) -> dict[str, Any]:
        entity = self._get(args["id"])
        changes = args.get("changes") or {}
        values: dict[str, Any] = {}
        if "name" in changes:
            values["name"] = self._check_name(changes["name"])
        if "content" in changes:
            values["content"] = changes["content"] or ""
        if "isFavorite" in changes:
            values["is_favorite"] = bool(changes["isFavorite"])
        if "isPublic" in changes:
            values["is_public"] = bool(changes["isPublic"])
        updated = dataclasses.replace(entity, **values, updated_at=self._clock())
        self._records[entity.id] = updated
        if "parentId" in changes and changes["parentId"] != entity.parent_id:
            return self._move({"id": entity.id, "newParentId": changes["parentId"]})
        return entity_to_dict(updated)

    def _delete(self, args: dict[str, Any]) -> bool:
        entity = self._get(args["id"])
        doomed = descendant_ids(entity.id, self._records.values())
        if doomed and not args.get("force"):
            raise _Rejected("HAS_CHILDREN", f"Cannot delete {entity.label}: it is not empty")
        for eid in doomed:
            del self._records[eid]
        del self._records[entity.id]
        self._write(remove_from(self.group(entity.parent_id), entity.id))
        return True

    def _move(self, args: dict[str, Any]) -> dict[str, Any]:
        entity = self._get(args["id"])
        new_parent_id = args.get("newParentId")
        self._check_parent(new_parent_id)
        try:
            validate_move(entity.id, new_parent_id, {e.id: e.parent_id for e in self._records.values()})
        except CycleError as e:
            raise _Rejected("INVALID_MOVE_TARGET", str(e)) from e
        outcome = apply_move(
            self.group(entity.parent_id),
            self.group(new_parent_id),
            entity,
            new_parent_id,
            args.get("newPosition"),
        )
        self._write(outcome.source)
        self._write(outcome.destination)
        moved = dataclasses.replace(outcome.moved, updated_at=self._clock())
        self._records[moved.id] = moved
        return entity_to_dict(moved)

    def _reorder(self, args: dict[str, Any]) -> bool:
        parent_id = args.get("parentId")
        self._check_parent(parent_id)
        try:
            group = reorder(self.group(parent_id), args.get("orderedIds") or [])
        except ValidationError as e:
            raise _Rejected("INVALID_REORDER", str(e)) from e
        self._write(group)
        return True

    def _list(self, parent_id: int | None) -> list[dict[str, Any]]:
        return [entity_to_dict(e) for e in self.group(parent_id)]

    def _list_children(self, args: dict[str, Any]) -> list[dict[str, Any]]:
        parent_id = args["parentId"]
        self._get(parent_id)
        return self._list(parent_id)
