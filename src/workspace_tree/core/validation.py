"""Entity name validation."""

from workspace_tree.config import INVALID_NAME_CHARS, MAX_NAME_LENGTH, RESERVED_NAMES
from workspace_tree.errors import ValidationError


def name_problem(name: str) -> str | None:
    """Return why ``name`` is unusable, or None when it is valid.

    The name is checked after trimming surrounding whitespace.
    """
    trimmed = name.strip()
    if not trimmed:
        return "Name cannot be empty"
    if len(trimmed) > MAX_NAME_LENGTH:
        return f"Name must be at most {MAX_NAME_LENGTH} characters long"
    bad = sorted({c for c in trimmed if c in INVALID_NAME_CHARS})
    if bad:
        return f"Name contains invalid characters: {''.join(bad)}"
    if trimmed.upper() in RESERVED_NAMES:
        return f"{trimmed!r} is a reserved name and cannot be used"
    return None


def validate_name(name: str) -> str:
    """Return the trimmed name.

    Raises:
        ValidationError: If the name is empty, too long, has invalid characters
            or is reserved.
    """
    problem = name_problem(name)
    if problem is not None:
        raise ValidationError(problem)
    return name.strip()
