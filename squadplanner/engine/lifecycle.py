"""
squadplanner.engine.lifecycle — Session Status State Machine
=============================================================

Pure transition logic.  No DB I/O: functions take a :class:`SessionState`
snapshot and return the next one.  Persisting a change is the repository's
job (a compare-and-set on the previous status).

::

    proposed ──confirm / threshold──▶ confirmed
        │                                │
        └────────────cancel──────────────┴──▶ cancelled (terminal)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from squadplanner.database.models import SessionStatus
from squadplanner.errors import ValidationError

if TYPE_CHECKING:
    from squadplanner.engine.attendance import RsvpCounts

__all__ = [
    "AutoConfirmPolicy",
    "SessionState",
    "cancel",
    "confirm",
    "maybe_auto_confirm",
]


class AutoConfirmPolicy(enum.StrEnum):
    """When a session may confirm itself.

    ``ON_RSVP`` — re-check the threshold after every RSVP write; the RSVP
    that crosses it triggers the confirmation and its notice.
    ``MANUAL`` — only the explicit confirm action confirms.
    """
    ON_RSVP = "on_rsvp"
    MANUAL = "manual"


@dataclass(frozen=True, slots=True)
class SessionState:
    """The slice of a session the state machine reads."""

    id: Any
    status: SessionStatus
    auto_confirm_threshold: int

    @classmethod
    def of(cls, session: Any) -> SessionState:
        """Snapshot any object with ``id``, ``status``, ``auto_confirm_threshold``."""
        return cls(
            id=session.id,
            status=SessionStatus(session.status),
            auto_confirm_threshold=int(session.auto_confirm_threshold),
        )


def confirm(state: SessionState) -> SessionState:
    """Explicit confirmation.  Bypasses the threshold.

    Authorization (leader / creator only) is the caller's concern.
    """
    if state.status == SessionStatus.CANCELLED:
        raise ValidationError("Cannot confirm a cancelled session")
    if state.status == SessionStatus.CONFIRMED:
        return state
    return replace(state, status=SessionStatus.CONFIRMED)


def cancel(state: SessionState) -> SessionState:
    """Cancel from any status.  Already cancelled → unchanged."""
    if state.status == SessionStatus.CANCELLED:
        return state
    return replace(state, status=SessionStatus.CANCELLED)


def maybe_auto_confirm(state: SessionState, counts: RsvpCounts) -> SessionState:
    """Confirm a proposed session once enough members answered present."""
    if state.status != SessionStatus.PROPOSED:
        return state
    if counts.present >= state.auto_confirm_threshold:
        return replace(state, status=SessionStatus.CONFIRMED)
    return state
