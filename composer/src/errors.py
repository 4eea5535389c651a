"""Exceptions raised by the composition engine and its storage."""

from __future__ import annotations

from collections.abc import Iterable


class CompositionError(Exception):
    """Base class for composition-engine failures."""


class NotFoundError(CompositionError):
    """Raised when a curriculum, or an element scoped to it, does not exist."""


class InvalidArgumentError(CompositionError):
    """Raised when caller input fails validation before any write happens.

    Attributes:
        field: Name of the offending payload field, when one applies.
        ids: Offending element IDs, when the failure concerns a reorder.
    """

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        ids: Iterable[str] = (),
    ) -> None:
        self.field = field
        self.ids = list(ids)
        super().__init__(message)


class ConflictError(CompositionError):
    """Raised when a write lost a race with a concurrent writer.

    Transient: callers may retry the whole operation.
    """


class ComposerStorageError(Exception):
    """Raised for storage-level errors (duplicates, missing references)."""


class OrdinalConflictError(ComposerStorageError):
    """Raised when an insert collides on ``(curriculum_id, ord)``."""
