"""Cache key shapes: ``entity:{id}`` and ``children:{parent_id|root}``."""

ENTITY_PREFIX = "entity:"
CHILDREN_PREFIX = "children:"
ROOT = "root"


def entity_key(entity_id: int) -> str:
    return f"{ENTITY_PREFIX}{entity_id}"


def children_key(parent_id: int | None) -> str:
    return f"{CHILDREN_PREFIX}{ROOT if parent_id is None else parent_id}"


def parse_children_key(key: str) -> int | None:
    """Return the parent id addressed by a children key.

    Raises:
        ValueError: If ``key`` is not a children key.
    """
    if not key.startswith(CHILDREN_PREFIX):
        msg = f"Not a children key: {key!r}"
        raise ValueError(msg)
    rest = key[len(CHILDREN_PREFIX) :]
    return None if rest == ROOT else int(rest)


def parse_entity_key(key: str) -> int:
    if not key.startswith(ENTITY_PREFIX):
        msg = f"Not an entity key: {key!r}"
        raise ValueError(msg)
    return int(key[len(ENTITY_PREFIX) :])
