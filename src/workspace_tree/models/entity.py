"""Domain models for folders, notes and store results."""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class EntityKind(StrEnum):
    """The two kinds of entity kept in the workspace tree."""

    FOLDER = "folder"
    NOTE = "note"


@dataclass(frozen=True)
class Entity:
    """A folder or note record."""

    id: int
    name: str
    parent_id: int | None
    position: int
    kind: EntityKind = EntityKind.FOLDER
    is_favorite: bool = False
    is_public: bool = True
    created_at: int = 0
    updated_at: int = 0
    content: str = ""

    @property
    def is_note(self) -> bool:
        return self.kind is EntityKind.NOTE

    @property
    def label(self) -> str:
        """Human-readable name used in error messages, e.g. ``folder 'Inbox'``."""
        return f"{self.kind.value} {self.name!r}"


@dataclass(frozen=True)
class CreateInput:
    """Fields the store needs to create an entity."""

    name: str
    parent_id: int | None = None
    kind: EntityKind = EntityKind.FOLDER
    content: str = ""
    position: int | None = None
    is_public: bool = True


@dataclass(frozen=True)
class Pending:
    """Identity of a client-synthesized entity awaiting its canonical id."""

    temp_id: int


@dataclass(frozen=True)
class Committed:
    """Identity of an entity the store has assigned an id to."""

    id: int


NodeIdentity = Pending | Committed


def identity_of(entity: Entity) -> NodeIdentity:
    """Classify an entity by its id: temporary ids are negative."""
    if entity.id < 0:
        return Pending(temp_id=entity.id)
    return Committed(id=entity.id)


@dataclass(frozen=True)
class StoreResult(Generic[T]):
    """Uniform success/failure shape returned by every store call."""

    success: bool
    data: T | None = None
    error: str | None = None
    code: str | None = None

    @classmethod
    def ok(cls, data: T) -> "StoreResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, *, code: str | None = None) -> "StoreResult[T]":
        return cls(success=False, error=error, code=code)


@dataclass(frozen=True)
class Breadcrumb:
    """A single ancestor in a breadcrumb trail."""

    entity_id: int
    name: str
    depth: int


_ENTITY_FIELDS = (
    "id",
    "name",
    "parent_id",
    "position",
    "kind",
    "is_favorite",
    "is_public",
    "created_at",
    "updated_at",
    "content",
)

# Wire names used by the backend bridge.
_WIRE_NAMES = {
    "parent_id": "parentId",
    "is_favorite": "isFavorite",
    "is_public": "isPublic",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
}


def entity_from_dict(data: dict[str, Any]) -> Entity:
    """Parse a wire record into an Entity.

    Accepts camelCase (backend) or snake_case keys; notes may use ``title``
    instead of ``name``.

    Raises:
        ValueError: If a required field is missing or malformed.
    """
    values: dict[str, Any] = {}
    for name in _ENTITY_FIELDS:
        wire = _WIRE_NAMES.get(name, name)
        if wire in data:
            values[name] = data[wire]
        elif name in data:
            values[name] = data[name]
    if "name" not in values and "title" in data:
        values["name"] = data["title"]

    missing = [k for k in ("id", "name", "position") if k not in values]
    if missing:
        msg = f"Entity record is missing {', '.join(missing)}: {data!r}"
        raise ValueError(msg)

    try:
        parent_id = values.get("parent_id")
        return Entity(
            id=int(values["id"]),
            name=str(values["name"]),
            parent_id=int(parent_id) if parent_id is not None else None,
            position=int(values["position"]),
            kind=EntityKind(values.get("kind", EntityKind.FOLDER)),
            is_favorite=bool(values.get("is_favorite", False)),
            is_public=bool(values.get("is_public", True)),
            created_at=int(values.get("created_at", 0)),
            updated_at=int(values.get("updated_at", 0)),
            content=str(values.get("content") or ""),
        )
    except (TypeError, ValueError) as e:
        msg = f"Malformed entity record {data!r}: {e}"
        raise ValueError(msg) from e


def entity_to_dict(entity: Entity) -> dict[str, Any]:
    """Serialize an Entity into the camelCase wire shape."""
    out: dict[str, Any] = {}
    for name in _ENTITY_FIELDS:
        value = getattr(entity, name)
        if name == "kind":
            value = value.value
        out[_WIRE_NAMES.get(name, name)] = value
    return out


@dataclass(frozen=True)
class IntegrityReport:
    """Result of checking a flat entity list against the tree invariants."""

    entity_count: int
    violations: tuple[str, ...] = field(default=())

    @property
    def ok(self) -> bool:
        return not self.violations
