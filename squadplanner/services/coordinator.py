"""
squadplanner.services.coordinator — Session Action Coordinator
===============================================================

Orchestrates one member action end-to-end:

    1. resolve the actor              → Unauthenticated, nothing written
    2. write (upsert / transition)    → errors returned in ActionResult
    3. chat notification              ┐
    4. gamification progress          ├ best-effort, concurrent, logged
    5. UI cue                         ┘
    6. invalidate + refetch the session detail into the cache, and publish
       the change so other processes drop their copies

No transaction spans the steps.  A failure after step 2 never turns the
result into an error: ``ActionResult.error is None`` means the write
landed.

Under :attr:`AutoConfirmPolicy.ON_RSVP` the threshold check after an RSVP
is part of step 2; the status change is a compare-and-set, so only the
RSVP that actually flips the session sends the confirmation notice.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

from squadplanner.constants import (
    DEFAULT_AUTO_CONFIRM_THRESHOLD,
    DEFAULT_DURATION_MINUTES,
    PRESENT_RSVP_COUNTERS,
)
from squadplanner.database.engine import run_db
from squadplanner.database.models import RsvpResponse, SessionStatus
from squadplanner.engine import lifecycle
from squadplanner.engine.attendance import aggregate
from squadplanner.engine.cache import send_notify
from squadplanner.engine.lifecycle import AutoConfirmPolicy, SessionState
from squadplanner.engine.recurrence import to_utc
from squadplanner.errors import (
    SideEffectError,
    SquadPlannerError,
    Unauthenticated,
    ValidationError,
)
from squadplanner.services.dispatch import BestEffortDispatcher, SideEffect, call_maybe_async
from squadplanner.services.repositories import CHECKIN_KIND, RSVP_KIND, ProfileRepository
from squadplanner.services.session_service import SessionQueries

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from squadplanner.database.models import PlaySession
    from squadplanner.engine.cache import SessionCache
    from squadplanner.services.identity import Actor, Identity

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Collaborator protocols
# ---------------------------------------------------------------------------
class Notifier(Protocol):
    def send_rsvp_message(
        self, squad_id: str, actor_name: str, session_title: str | None, response: str,
        session_id: str | None = None,
    ) -> Any: ...

    def send_session_confirmed_message(
        self, squad_id: str, session_title: str | None, scheduled_at: datetime,
        session_id: str | None = None,
    ) -> Any: ...


class ProgressTracker(Protocol):
    def track_progress(self, user_id: str, counter_key: str) -> Any: ...


class UiCue(Protocol):
    def trigger(self, action: str) -> Any: ...


class NullUiCue:
    """Default cue: does nothing."""

    def trigger(self, action: str) -> None:
        return None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ActionResult:
    """Outcome of one action.  ``error is None`` means the write succeeded."""

    error: Exception | None = None
    session: PlaySession | None = None
    failures: tuple[SideEffectError, ...] = ()

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class _Outcome:
    session: PlaySession
    effects: list[SideEffect] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------
class SessionActionCoordinator:
    """Entry point for every state-changing session action.

    Usage::

        coordinator = SessionActionCoordinator(
            engine, StaticIdentity(actor), cache,
            notifier=SystemMessageNotifier(engine),
            progress=ChallengeTracker(engine),
        )
        result = await coordinator.update_rsvp(session_id, "present")
        if result.error is not None:
            ...
    """

    def __init__(
        self,
        engine: Engine,
        identity: Identity,
        cache: SessionCache,
        *,
        notifier: Notifier | None = None,
        progress: ProgressTracker | None = None,
        ui_cue: UiCue | None = None,
        policy: AutoConfirmPolicy = AutoConfirmPolicy.ON_RSVP,
        default_threshold: int = DEFAULT_AUTO_CONFIRM_THRESHOLD,
        default_duration: int = DEFAULT_DURATION_MINUTES,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.engine = engine
        self.identity = identity
        self.cache = cache
        self.notifier = notifier
        self.progress = progress
        self.ui_cue = ui_cue or NullUiCue()
        self.policy = AutoConfirmPolicy(policy)
        self.default_threshold = default_threshold
        self.default_duration = default_duration
        self._clock = clock or (lambda: datetime.now(UTC))

        self.queries = SessionQueries(engine, cache)
        self.sessions = self.queries.sessions
        self.rsvps = self.queries.rsvps
        self.checkins = self.queries.checkins
        self.profiles = ProfileRepository(engine)

        # (actor_id, target_id, action) currently being processed
        self._in_flight: set[tuple[str, str, str]] = set()

    def for_identity(self, identity: Identity) -> SessionActionCoordinator:
        """Same repositories, cache and in-flight guard; another actor source."""
        clone = copy.copy(self)
        clone.identity = identity
        return clone

    # -------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------
    async def _execute(
        self,
        action: str,
        target_id: str,
        mutate: Callable[[Actor], Awaitable[_Outcome]],
    ) -> ActionResult:
        actor = self.identity.current_actor()
        if actor is None:
            logger.info("Rejected %s on %s: not authenticated", action, target_id)
            return ActionResult(error=Unauthenticated())

        key = (actor.id, target_id, action)
        if key in self._in_flight:
            return ActionResult(error=ValidationError("action already in flight"))
        self._in_flight.add(key)
        try:
            try:
                outcome = await mutate(actor)
            except SquadPlannerError as exc:
                logger.warning("%s on %s failed: %s", action, target_id, exc)
                return ActionResult(error=exc)

            dispatcher = BestEffortDispatcher()
            changed = outcome.session
            await dispatcher.fan_out([
                *outcome.effects,
                SideEffect("ui_cue", self.ui_cue.trigger, (action,)),
                SideEffect(
                    "broadcast_invalidation",
                    send_notify,
                    (self.engine, changed.id, changed.squad_id, self.cache.origin),
                ),
            ])
            session = await self._refresh(outcome.session, actor)
            return ActionResult(
                error=None, session=session, failures=tuple(dispatcher.failures),
            )
        finally:
            self._in_flight.discard(key)

    async def _refresh(self, session: PlaySession, actor: Actor) -> PlaySession:
        self.cache.invalidate(session.id, session.squad_id)
        try:
            detail = await run_db(self.queries.fetch_detail, session.id, actor.id)
        except SquadPlannerError:
            logger.exception(
                "Refreshing session %s failed", session.id, extra={"step": "refresh"},
            )
            return session
        return detail.session

    async def _auto_confirm(self, session: PlaySession, viewer_id: str) -> bool:
        """Apply the threshold check.  True if this call confirmed the session."""
        if self.policy != AutoConfirmPolicy.ON_RSVP:
            return False
        state = SessionState.of(session)
        rows = await run_db(self.rsvps.list_for_session, session.id)
        counts = aggregate(session.id, rows, viewer_id).counts
        if lifecycle.maybe_auto_confirm(state, counts).status != SessionStatus.CONFIRMED:
            return False
        if state.status == SessionStatus.CONFIRMED:
            return False
        return await run_db(
            self.sessions.transition,
            session.id, [SessionStatus.PROPOSED], SessionStatus.CONFIRMED,
        )

    # -------------------------------------------------------------------
    # Side effects
    # -------------------------------------------------------------------
    async def _notify_rsvp(self, actor: Actor, session: PlaySession, response: str) -> None:
        name = await run_db(self.profiles.get_username, actor.id)
        await call_maybe_async(
            self.notifier.send_rsvp_message,
            session.squad_id,
            name or actor.display_name or "A member",
            session.title,
            response,
            session_id=session.id,
        )

    def _confirmed_effect(self, session: PlaySession) -> list[SideEffect]:
        if self.notifier is None:
            return []
        return [SideEffect(
            "notify_confirmed",
            self.notifier.send_session_confirmed_message,
            (session.squad_id, session.title, to_utc(session.scheduled_at)),
            {"session_id": session.id},
        )]

    def _progress_effects(self, user_id: str) -> list[SideEffect]:
        if self.progress is None:
            return []
        return [
            SideEffect(f"progress:{key}", self.progress.track_progress, (user_id, key))
            for key in PRESENT_RSVP_COUNTERS
        ]

    # -------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------
    async def update_rsvp(self, session_id: str, response: str | RsvpResponse) -> ActionResult:
        """Record the actor's RSVP, then fan out notice, progress and cue."""

        async def mutate(actor: Actor) -> _Outcome:
            value = RSVP_KIND.coerce(response)
            session = await run_db(self.sessions.get, session_id)
            await run_db(self.rsvps.upsert, session_id, actor.id, value)
            confirmed = await self._auto_confirm(session, actor.id)

            effects: list[SideEffect] = []
            if self.notifier is not None:
                effects.append(SideEffect("notify_rsvp", self._notify_rsvp, (actor, session, value)))
            if confirmed:
                effects += self._confirmed_effect(session)
            if value == RsvpResponse.PRESENT:
                effects += self._progress_effects(actor.id)
            return _Outcome(session, effects)

        return await self._execute("rsvp", session_id, mutate)

    async def checkin(self, session_id: str, status: str) -> ActionResult:
        """Record the actor's check-in outcome."""

        async def mutate(actor: Actor) -> _Outcome:
            value = CHECKIN_KIND.coerce(status)
            session = await run_db(self.sessions.get, session_id)
            await run_db(self.checkins.upsert, session_id, actor.id, value)
            return _Outcome(session)

        return await self._execute("checkin", session_id, mutate)

    async def confirm_session(self, session_id: str) -> ActionResult:
        """Explicitly confirm.  Authorization is the caller's job."""

        async def mutate(actor: Actor) -> _Outcome:
            session = await run_db(self.sessions.get, session_id)
            state = SessionState.of(session)
            if lifecycle.confirm(state) == state:
                return _Outcome(session)
            changed = await run_db(
                self.sessions.transition,
                session_id, [SessionStatus.PROPOSED], SessionStatus.CONFIRMED,
            )
            return _Outcome(session, self._confirmed_effect(session) if changed else [])

        return await self._execute("confirm", session_id, mutate)

    async def cancel_session(self, session_id: str) -> ActionResult:
        """Cancel from any status.  No chat notice is sent."""

        async def mutate(actor: Actor) -> _Outcome:
            session = await run_db(self.sessions.get, session_id)
            state = SessionState.of(session)
            if lifecycle.cancel(state) != state:
                await run_db(
                    self.sessions.transition,
                    session_id,
                    [SessionStatus.PROPOSED, SessionStatus.CONFIRMED],
                    SessionStatus.CANCELLED,
                )
            return _Outcome(session)

        return await self._execute("cancel", session_id, mutate)

    async def create_session(
        self,
        squad_id: str,
        scheduled_at: datetime,
        *,
        title: str | None = None,
        game: str | None = None,
        duration_minutes: int | None = None,
        auto_confirm_threshold: int | None = None,
    ) -> ActionResult:
        """Create a proposed session and RSVP its creator as present."""
        duration = self.default_duration if duration_minutes is None else duration_minutes
        threshold = (
            self.default_threshold if auto_confirm_threshold is None else auto_confirm_threshold
        )

        async def mutate(actor: Actor) -> _Outcome:
            when = to_utc(scheduled_at)
            if when <= self._clock():
                raise ValidationError("Session must be scheduled in the future")
            if duration <= 0:
                raise ValidationError("duration_minutes must be positive")
            if threshold < 1:
                raise ValidationError("auto_confirm_threshold must be >= 1")

            session = await run_db(
                self.sessions.create,
                squad_id=squad_id,
                created_by=actor.id,
                scheduled_at=when,
                title=title,
                game=game,
                duration_minutes=duration,
                auto_confirm_threshold=threshold,
            )
            rsvped = await BestEffortDispatcher().run(
                "creator_rsvp", self.rsvps.upsert, session.id, actor.id, RsvpResponse.PRESENT,
            )
            # The session row is committed; from here on nothing may fail the action.
            confirmed = False
            if rsvped:
                try:
                    confirmed = await self._auto_confirm(session, actor.id)
                except SquadPlannerError:
                    logger.exception(
                        "Auto-confirm after creating session %s failed", session.id,
                        extra={"step": "auto_confirm"},
                    )
            return _Outcome(session, self._confirmed_effect(session) if confirmed else [])

        return await self._execute("create", squad_id, mutate)
