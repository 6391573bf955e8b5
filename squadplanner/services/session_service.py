"""
squadplanner.services.session_service — Session Read Models
============================================================

Builds what callers display: a session's full detail, a squad's session
list and a member's upcoming sessions, each with aggregated RSVP counts and
the viewer's own answer.

Lists fetch every RSVP for the batch in **one** query and reuse the same
per-session reduction as the detail view
(:func:`squadplanner.engine.attendance.aggregate_many`).

All methods are synchronous; coroutines call them through ``run_db``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from squadplanner.engine.attendance import (
    AttendanceSummary,
    CheckinCounts,
    aggregate,
    aggregate_checkins,
    aggregate_many,
)
from squadplanner.engine.recurrence import to_utc
from squadplanner.services.repositories import (
    CHECKIN_KIND,
    RSVP_KIND,
    ResponseRepository,
    SessionRepository,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from squadplanner.database.models import PlaySession
    from squadplanner.engine.cache import SessionCache

logger = logging.getLogger(__name__)


def _iso(value: datetime | None) -> str | None:
    return to_utc(value).isoformat() if value is not None else None


def session_to_dict(session: PlaySession) -> dict[str, Any]:
    return {
        "id": session.id,
        "squad_id": session.squad_id,
        "title": session.title,
        "game": session.game,
        "scheduled_at": _iso(session.scheduled_at),
        "duration_minutes": session.duration_minutes,
        "status": session.status,
        "auto_confirm_threshold": session.auto_confirm_threshold,
        "created_by": session.created_by,
        "recurring_session_id": session.recurring_session_id,
    }


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class SessionView:
    """A session plus its RSVP summary, as shown in lists."""

    session: PlaySession
    summary: AttendanceSummary

    def as_dict(self) -> dict[str, Any]:
        return {
            **session_to_dict(self.session),
            "rsvp_counts": self.summary.counts.as_dict(),
            "my_rsvp": self.summary.mine.value if self.summary.mine else None,
        }


@dataclass(frozen=True, slots=True)
class SessionDetail:
    """Everything the session screen needs."""

    session: PlaySession
    summary: AttendanceSummary
    checkin_counts: CheckinCounts
    rsvps: list[Any] = field(default_factory=list)
    checkins: list[Any] = field(default_factory=list)

    @property
    def my_rsvp(self) -> str | None:
        return self.summary.mine.value if self.summary.mine else None

    def as_dict(self) -> dict[str, Any]:
        return {
            **session_to_dict(self.session),
            "rsvp_counts": self.summary.counts.as_dict(),
            "checkin_counts": self.checkin_counts.as_dict(),
            "my_rsvp": self.my_rsvp,
            "rsvps": [
                {
                    "user_id": r.user_id,
                    "response": r.response,
                    "responded_at": _iso(r.responded_at),
                }
                for r in self.rsvps
            ],
            "checkins": [
                {
                    "user_id": c.user_id,
                    "status": c.status,
                    "checked_at": _iso(c.checked_at),
                }
                for c in self.checkins
            ],
        }


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
class SessionQueries:
    """Read side of the session engine, optionally backed by a cache."""

    def __init__(self, engine: Engine, cache: SessionCache | None = None) -> None:
        self.sessions = SessionRepository(engine)
        self.rsvps = ResponseRepository(engine, RSVP_KIND)
        self.checkins = ResponseRepository(engine, CHECKIN_KIND)
        self.cache = cache

    def fetch_detail(self, session_id: str, viewer_id: str | None) -> SessionDetail:
        """Load a session's detail from storage and refresh the cache.

        Raises :class:`~squadplanner.errors.NotFound` for an unknown id.
        """
        session = self.sessions.get(session_id)
        rsvps = self.rsvps.list_for_session(session_id)
        checkins = self.checkins.list_for_session(session_id)
        detail = SessionDetail(
            session=session,
            summary=aggregate(session_id, rsvps, viewer_id),
            checkin_counts=aggregate_checkins(session_id, checkins),
            rsvps=rsvps,
            checkins=checkins,
        )
        if self.cache is not None:
            self.cache.store_detail(detail, viewer_id)
        return detail

    def get_detail(self, session_id: str, viewer_id: str | None) -> SessionDetail:
        """Cached detail when available, otherwise :meth:`fetch_detail`."""
        if self.cache is not None:
            cached = self.cache.get_detail(session_id, viewer_id)
            if cached is not None:
                return cached
        return self.fetch_detail(session_id, viewer_id)

    def _views(self, sessions: list[PlaySession], viewer_id: str | None) -> list[SessionView]:
        ids = [s.id for s in sessions]
        summaries = aggregate_many(ids, self.rsvps.list_for_sessions(ids), viewer_id)
        return [SessionView(session=s, summary=summaries[s.id]) for s in sessions]

    def list_for_squad(self, squad_id: str, viewer_id: str | None) -> list[SessionView]:
        if self.cache is not None:
            cached = self.cache.get_list(squad_id, viewer_id)
            if cached is not None:
                return cached
        views = self._views(self.sessions.list_by_squad(squad_id), viewer_id)
        if self.cache is not None:
            self.cache.store_list(squad_id, viewer_id, views)
        return views

    def list_upcoming(self, viewer_id: str, now: datetime | None = None) -> list[SessionView]:
        """Next sessions across the viewer's squads, soonest first."""
        if now is None and self.cache is not None:
            cached = self.cache.get_upcoming(viewer_id)
            if cached is not None:
                return cached
        sessions = self.sessions.list_upcoming(viewer_id, now or datetime.now(UTC))
        views = self._views(sessions, viewer_id)
        if now is None and self.cache is not None:
            self.cache.store_upcoming(viewer_id, views)
        return views
