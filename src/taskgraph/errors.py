"""Projection error taxonomy.

ProjectionError and its subclasses describe events that cannot be applied
without breaking an invariant. The router logs them and moves on; the
stream never stops for them. StoreIOError is deliberately not a
ProjectionError: a failed write must reach the caller, because skipping
the event would leave the projection out of step with the chain.
"""

from __future__ import annotations

from typing import Optional


class ProjectionError(Exception):
    """An event that is skipped, leaving the last valid state in place."""

    def __init__(
        self,
        message: str,
        entity_kind: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.entity_kind = entity_kind
        self.entity_id = entity_id


class MissingParentError(ProjectionError):
    """The event references an entity that has not been created."""


class InvalidTransitionError(ProjectionError):
    """The event implies a lifecycle move the state machine forbids."""


class DuplicateCreationError(ProjectionError):
    """A creation event for an ID that already exists."""


class MalformedEventError(ProjectionError):
    """A decoded event is missing a parameter its handler needs."""


class StoreIOError(Exception):
    """The entity store could not read or write its persistent snapshot."""
