"""
squadplanner.services.repositories — Typed Repositories
========================================================

One small repository per entity, each owning its SQLAlchemy queries.  All
methods are **synchronous** (call them through ``run_db`` from coroutines)
and return detached rows that stay readable after the session closes.

Every storage failure leaves this module as a
:class:`~squadplanner.errors.StorageError` carrying the driver's message;
the original exception is chained as ``__cause__``.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from squadplanner.constants import UPCOMING_SESSIONS_LIMIT
from squadplanner.database.engine import get_session
from squadplanner.database.models import (
    Base,
    CheckinStatus,
    PlaySession,
    Profile,
    RecurringSession,
    RsvpResponse,
    SessionCheckin,
    SessionRsvp,
    SessionStatus,
    SquadMember,
    SquadRole,
)
from squadplanner.engine.recurrence import to_utc
from squadplanner.errors import NotFound, StorageError, ValidationError

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@contextmanager
def storage_errors() -> Iterator[None]:
    """Translate SQLAlchemy failures into :class:`StorageError`."""
    try:
        yield
    except SQLAlchemyError as exc:
        orig = getattr(exc, "orig", None)
        raise StorageError(str(orig) if orig is not None else str(exc)) from exc


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------
class SessionRepository:
    """Reads and writes ``sessions`` rows."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def find(self, session_id: str) -> PlaySession | None:
        with storage_errors(), get_session(self._engine) as session:
            return session.get(PlaySession, session_id)

    def get(self, session_id: str) -> PlaySession:
        row = self.find(session_id)
        if row is None:
            raise NotFound("Session", session_id)
        return row

    def list_by_squad(self, squad_id: str) -> list[PlaySession]:
        """All sessions of a squad, soonest first.  Cancelled ones included."""
        with storage_errors(), get_session(self._engine) as session:
            return list(session.scalars(
                select(PlaySession)
                .where(PlaySession.squad_id == squad_id)
                .order_by(PlaySession.scheduled_at.asc())
            ).all())

    def list_upcoming(
        self,
        user_id: str,
        now: datetime,
        limit: int = UPCOMING_SESSIONS_LIMIT,
    ) -> list[PlaySession]:
        """Non-cancelled sessions at or after *now* across the member's squads."""
        with storage_errors(), get_session(self._engine) as session:
            squad_ids = select(SquadMember.squad_id).where(SquadMember.user_id == user_id)
            return list(session.scalars(
                select(PlaySession)
                .where(
                    PlaySession.squad_id.in_(squad_ids),
                    PlaySession.scheduled_at >= to_utc(now),
                    PlaySession.status != SessionStatus.CANCELLED.value,
                )
                .order_by(PlaySession.scheduled_at.asc())
                .limit(limit)
            ).all())

    def create(
        self,
        *,
        squad_id: str,
        created_by: str,
        scheduled_at: datetime,
        title: str | None = None,
        game: str | None = None,
        duration_minutes: int,
        auto_confirm_threshold: int,
        recurring_session_id: str | None = None,
    ) -> PlaySession:
        row = PlaySession(
            squad_id=squad_id,
            created_by=created_by,
            scheduled_at=to_utc(scheduled_at),
            title=title,
            game=game,
            duration_minutes=duration_minutes,
            auto_confirm_threshold=auto_confirm_threshold,
            status=SessionStatus.PROPOSED.value,
            recurring_session_id=recurring_session_id,
        )
        with storage_errors(), get_session(self._engine) as session:
            session.add(row)
            session.flush()
            session.refresh(row)
        logger.info("Session %s created in squad %s", row.id, squad_id)
        return row

    def create_occurrence(self, template: RecurringSession, scheduled_at: datetime) -> PlaySession | None:
        """Insert the session for one template occurrence.

        Returns ``None`` when that occurrence was already materialized
        (unique ``recurring_session_id`` + ``scheduled_at``).
        """
        row = PlaySession(
            squad_id=template.squad_id,
            created_by=template.created_by,
            scheduled_at=to_utc(scheduled_at),
            title=template.title,
            game=template.game,
            duration_minutes=template.duration_minutes,
            auto_confirm_threshold=template.min_players,
            status=SessionStatus.PROPOSED.value,
            recurring_session_id=template.id,
        )
        with storage_errors(), get_session(self._engine) as session:
            try:
                with session.begin_nested():   # SAVEPOINT
                    session.add(row)
                    session.flush()
                session.refresh(row)
            except IntegrityError:
                logger.debug(
                    "Occurrence %s of template %s already exists",
                    scheduled_at, template.id,
                )
                return None
        return row

    def transition(
        self,
        session_id: str,
        expected: Iterable[SessionStatus],
        new_status: SessionStatus,
    ) -> bool:
        """Compare-and-set the status.  True only if this call changed it."""
        allowed = [s.value for s in expected]
        with storage_errors(), get_session(self._engine) as session:
            result = session.execute(
                update(PlaySession)
                .where(PlaySession.id == session_id, PlaySession.status.in_(allowed))
                .values(status=new_status.value, updated_at=_utcnow())
                .execution_options(synchronize_session=False)
            )
            changed = result.rowcount == 1
        if changed:
            logger.info("Session %s → %s", session_id, new_status.value)
        return changed


# ---------------------------------------------------------------------------
# Responses — RSVPs and check-ins share one upsert
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ResponseKind:
    """Describes a "one current record per (session, member)" table."""

    name: str
    model: type[Base]
    value_field: str
    time_field: str
    allowed: type[enum.StrEnum]

    def coerce(self, value: Any) -> str:
        try:
            return self.allowed(str(value)).value
        except ValueError:
            choices = ", ".join(v.value for v in self.allowed)
            raise ValidationError(
                f"Invalid {self.name} value {value!r}; expected one of: {choices}"
            ) from None


RSVP_KIND = ResponseKind("rsvp", SessionRsvp, "response", "responded_at", RsvpResponse)
CHECKIN_KIND = ResponseKind("checkin", SessionCheckin, "status", "checked_at", CheckinStatus)


class ResponseRepository:
    """Idempotent upsert and batch reads for one :class:`ResponseKind`."""

    def __init__(self, engine: Engine, kind: ResponseKind) -> None:
        self._engine = engine
        self.kind = kind

    def _lookup(self, session: Any, session_id: str, user_id: str) -> Any:
        model = self.kind.model
        return session.scalar(
            select(model).where(model.session_id == session_id, model.user_id == user_id)
        )

    def upsert(
        self,
        session_id: str,
        user_id: str,
        value: Any,
        *,
        now: datetime | None = None,
    ) -> Any:
        """Write the member's current answer and return the stored row.

        An existing row keeps its primary key; the value and timestamp are
        overwritten even when the value is unchanged.  A concurrent insert
        that wins the unique (session, member) race is updated instead.
        """
        stored = self.kind.coerce(value)
        stamp = to_utc(now) if now is not None else _utcnow()
        fields = {self.kind.value_field: stored, self.kind.time_field: stamp}

        with storage_errors(), get_session(self._engine) as session:
            row = self._lookup(session, session_id, user_id)
            if row is None:
                row = self.kind.model(session_id=session_id, user_id=user_id, **fields)
                try:
                    with session.begin_nested():   # SAVEPOINT
                        session.add(row)
                        session.flush()
                    return row
                except IntegrityError as exc:
                    row = self._lookup(session, session_id, user_id)
                    if row is None:
                        raise StorageError(str(exc.orig)) from exc
            for field, field_value in fields.items():
                setattr(row, field, field_value)
            session.flush()
            return row

    def find(self, session_id: str, user_id: str) -> Any | None:
        with storage_errors(), get_session(self._engine) as session:
            return self._lookup(session, session_id, user_id)

    def list_for_session(self, session_id: str) -> list[Any]:
        return self.list_for_sessions([session_id])

    def list_for_sessions(self, session_ids: Iterable[str]) -> list[Any]:
        """All rows for a batch of sessions, one query."""
        ids = list(session_ids)
        if not ids:
            return []
        model = self.kind.model
        with storage_errors(), get_session(self._engine) as session:
            return list(session.scalars(
                select(model).where(model.session_id.in_(ids))
            ).all())


# ---------------------------------------------------------------------------
# Recurring templates
# ---------------------------------------------------------------------------
_TEMPLATE_FIELDS = frozenset({
    "title", "game", "recurrence_rule", "duration_minutes",
    "min_players", "max_players", "is_active", "next_occurrence",
})


class RecurringSessionRepository:
    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def get(self, template_id: str) -> RecurringSession:
        with storage_errors(), get_session(self._engine) as session:
            row = session.get(RecurringSession, template_id)
        if row is None:
            raise NotFound("RecurringSession", template_id)
        return row

    def list_by_squad(self, squad_id: str) -> list[RecurringSession]:
        with storage_errors(), get_session(self._engine) as session:
            return list(session.scalars(
                select(RecurringSession)
                .where(RecurringSession.squad_id == squad_id)
                .order_by(RecurringSession.created_at.desc(), RecurringSession.title)
            ).all())

    def list_due(self, until: datetime) -> list[RecurringSession]:
        """Active templates whose next occurrence is at or before *until*."""
        with storage_errors(), get_session(self._engine) as session:
            return list(session.scalars(
                select(RecurringSession)
                .where(
                    RecurringSession.is_active.is_(True),
                    RecurringSession.next_occurrence.is_not(None),
                    RecurringSession.next_occurrence <= to_utc(until),
                )
                .order_by(RecurringSession.next_occurrence.asc())
            ).all())

    def create(self, **fields: Any) -> RecurringSession:
        row = RecurringSession(**fields)
        with storage_errors(), get_session(self._engine) as session:
            session.add(row)
            session.flush()
            session.refresh(row)
        logger.info("Recurring template %s created in squad %s", row.id, row.squad_id)
        return row

    def update(self, template_id: str, **fields: Any) -> RecurringSession:
        unknown = set(fields) - _TEMPLATE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown template fields: {sorted(unknown)}")
        with storage_errors(), get_session(self._engine) as session:
            row = session.get(RecurringSession, template_id)
            if row is None:
                raise NotFound("RecurringSession", template_id)
            for field, value in fields.items():
                setattr(row, field, value)
            session.flush()
        return row

    def delete(self, template_id: str) -> None:
        with storage_errors(), get_session(self._engine) as session:
            row = session.get(RecurringSession, template_id)
            if row is None:
                raise NotFound("RecurringSession", template_id)
            session.delete(row)
        logger.info("Recurring template %s deleted", template_id)


# ---------------------------------------------------------------------------
# Profiles & membership
# ---------------------------------------------------------------------------
class ProfileRepository:
    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def get(self, user_id: str) -> Profile:
        with storage_errors(), get_session(self._engine) as session:
            row = session.get(Profile, user_id)
        if row is None:
            raise NotFound("Profile", user_id)
        return row

    def get_username(self, user_id: str) -> str | None:
        with storage_errors(), get_session(self._engine) as session:
            return session.scalar(select(Profile.username).where(Profile.id == user_id))

    def find_by_discord_id(self, discord_user_id: int) -> Profile | None:
        with storage_errors(), get_session(self._engine) as session:
            return session.scalar(
                select(Profile).where(Profile.discord_user_id == discord_user_id)
            )

    def squad_ids_for(self, user_id: str) -> list[str]:
        """The member's squads, oldest membership first."""
        with storage_errors(), get_session(self._engine) as session:
            return list(session.scalars(
                select(SquadMember.squad_id)
                .where(SquadMember.user_id == user_id)
                .order_by(SquadMember.joined_at.asc())
            ).all())

    def role_in(self, squad_id: str, user_id: str) -> SquadRole | None:
        with storage_errors(), get_session(self._engine) as session:
            role = session.scalar(
                select(SquadMember.role).where(
                    SquadMember.squad_id == squad_id, SquadMember.user_id == user_id
                )
            )
        return SquadRole(role) if role is not None else None

    def is_member(self, squad_id: str, user_id: str) -> bool:
        return self.role_in(squad_id, user_id) is not None

    def is_leader(self, squad_id: str, user_id: str) -> bool:
        return self.role_in(squad_id, user_id) == SquadRole.LEADER
