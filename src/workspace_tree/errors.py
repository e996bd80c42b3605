"""Exception hierarchy for the workspace tree engine.

Validation errors are raised before any cache write or store call.
Transport-class errors (store failures, vanished entities) are raised by the
coordinator only after the cache has been rolled back.
"""

from typing import Self


class TreeError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(TreeError):
    """A request was rejected before touching the cache or the store."""


class CycleError(ValidationError):
    """A move would place an entity beneath itself or one of its descendants."""

    def __init__(self, entity_id: int, new_parent_id: int | None) -> None:
        self.entity_id = entity_id
        self.new_parent_id = new_parent_id
        if entity_id == new_parent_id:
            msg = f"Cannot move entity {entity_id} into itself"
        else:
            msg = f"Cannot move entity {entity_id} into its descendant {new_parent_id}"
        super().__init__(msg)


class TransportError(TreeError):
    """The store or the link to it failed."""

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        target: str | None = None,
        cause: str | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.target = target
        self.cause = cause
        self.code = code

    @classmethod
    def for_operation(
        cls,
        operation: str,
        target: str,
        cause: str,
        *,
        code: str | None = None,
    ) -> Self:
        """Build an error whose message names the attempted operation and entity."""
        msg = f"Failed to {operation} {target}: {cause}"
        return cls(msg, operation=operation, target=target, cause=cause, code=code)


class NotFoundError(TransportError):
    """The entity vanished between read and mutation."""


class MutationError(TransportError):
    """A mutation failed on the store and its optimistic patch was rolled back."""


class TransportFailure(RuntimeError):
    """Raised by command transports when a request cannot be completed."""
