"""
squadplanner.errors — Error Taxonomy
=====================================

Every layer raises from this small hierarchy so callers can map failures
without knowing which collaborator produced them:

* :class:`ValidationError` — malformed rule or payload, rejected before any write.
* :class:`Unauthenticated` — no resolvable acting member.
* :class:`NotFound` — a row that must exist is missing.
* :class:`StorageError` — opaque passthrough of a storage failure.
* :class:`SideEffectError` — notification / progress / cue failures.
  Always caught and logged by the dispatcher, never surfaced.
"""

from __future__ import annotations


class SquadPlannerError(Exception):
    """Base class for all SquadPlanner errors."""


class ValidationError(SquadPlannerError, ValueError):
    """Input failed validation; nothing was written."""


class Unauthenticated(SquadPlannerError):
    """No acting member could be resolved."""

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


class NotFound(SquadPlannerError, LookupError):
    """A referenced row does not exist."""

    def __init__(self, entity: str, key: object) -> None:
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key}")


class StorageError(SquadPlannerError):
    """The storage layer failed.  The message is the driver's, verbatim."""


class SideEffectError(SquadPlannerError):
    """A best-effort side effect failed."""

    def __init__(self, step: str, cause: BaseException) -> None:
        self.step = step
        self.cause = cause
        super().__init__(f"{step} failed: {cause}")
