"""
squadplanner.services.recurring_service — Recurring Session Templates
======================================================================

CRUD for weekly templates plus **materialization**: turning every due
occurrence into a concrete ``proposed`` session.

``next_occurrence`` is recomputed whenever it could go stale:

* on create, and on update when the rule changes;
* on (re)activation via :meth:`RecurringSessionService.toggle_active`;
* after each occurrence is materialized.

Materialization is idempotent — the ``(recurring_session_id, scheduled_at)``
unique constraint rejects a second copy of the same occurrence, so the bot
loop and a manual run can overlap safely.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

from squadplanner.constants import DEFAULT_DURATION_MINUTES
from squadplanner.engine.recurrence import RecurrenceRule, to_utc
from squadplanner.errors import ValidationError
from squadplanner.services.repositories import RecurringSessionRepository, SessionRepository

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from squadplanner.database.models import PlaySession, RecurringSession

logger = logging.getLogger(__name__)


def _validate_players(min_players: int, max_players: int) -> None:
    if min_players < 1:
        raise ValidationError("min_players must be >= 1")
    if max_players < min_players:
        raise ValidationError("max_players must be >= min_players")


class RecurringSessionService:
    """Template management.  Synchronous; call through ``run_db``.

    *tz* is the zone the rule's wall-clock time is read in.
    """

    def __init__(self, engine: Engine, tz: ZoneInfo | None = None) -> None:
        self.engine = engine
        self.templates = RecurringSessionRepository(engine)
        self.sessions = SessionRepository(engine)
        self.tz = tz or ZoneInfo("UTC")

    def _next_after(self, rule: RecurrenceRule, now: datetime) -> datetime:
        local_now = to_utc(now).astimezone(self.tz)
        return to_utc(rule.next_after(local_now))

    # -------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------
    def create(
        self,
        *,
        squad_id: str,
        created_by: str,
        title: str,
        recurrence_rule: str | RecurrenceRule,
        game: str | None = None,
        duration_minutes: int = DEFAULT_DURATION_MINUTES,
        min_players: int = 3,
        max_players: int = 10,
        now: datetime | None = None,
    ) -> RecurringSession:
        rule = (
            recurrence_rule if isinstance(recurrence_rule, RecurrenceRule)
            else RecurrenceRule.parse(recurrence_rule)
        )
        if not title or not title.strip():
            raise ValidationError("title is required")
        if duration_minutes <= 0:
            raise ValidationError("duration_minutes must be positive")
        _validate_players(min_players, max_players)

        return self.templates.create(
            squad_id=squad_id,
            created_by=created_by,
            title=title.strip(),
            game=game,
            recurrence_rule=rule.format(),
            duration_minutes=duration_minutes,
            min_players=min_players,
            max_players=max_players,
            is_active=True,
            next_occurrence=self._next_after(rule, now or datetime.now(UTC)),
        )

    def list_for_squad(self, squad_id: str) -> list[RecurringSession]:
        return self.templates.list_by_squad(squad_id)

    def get(self, template_id: str) -> RecurringSession:
        return self.templates.get(template_id)

    def update(
        self, template_id: str, *, now: datetime | None = None, **changes: Any
    ) -> RecurringSession:
        """Patch a template.  A new rule is validated and re-scheduled."""
        current = self.templates.get(template_id)
        fields = {k: v for k, v in changes.items() if v is not None}

        if "recurrence_rule" in fields:
            rule = fields["recurrence_rule"]
            if not isinstance(rule, RecurrenceRule):
                rule = RecurrenceRule.parse(rule)
            fields["recurrence_rule"] = rule.format()
            if current.is_active:
                fields["next_occurrence"] = self._next_after(rule, now or datetime.now(UTC))
        if "duration_minutes" in fields and fields["duration_minutes"] <= 0:
            raise ValidationError("duration_minutes must be positive")
        _validate_players(
            fields.get("min_players", current.min_players),
            fields.get("max_players", current.max_players),
        )
        if not fields:
            return current
        return self.templates.update(template_id, **fields)

    def toggle_active(self, template_id: str, now: datetime | None = None) -> RecurringSession:
        """Flip ``is_active``.  Reactivation recomputes ``next_occurrence``."""
        current = self.templates.get(template_id)
        if current.is_active:
            row = self.templates.update(template_id, is_active=False)
        else:
            rule = RecurrenceRule.parse(current.recurrence_rule)
            row = self.templates.update(
                template_id,
                is_active=True,
                next_occurrence=self._next_after(rule, now or datetime.now(UTC)),
            )
        logger.info("Recurring template %s active=%s", template_id, row.is_active)
        return row

    def delete(self, template_id: str) -> None:
        """Delete the template.  Sessions it produced are kept."""
        self.templates.delete(template_id)

    # -------------------------------------------------------------------
    # Materialization
    # -------------------------------------------------------------------
    def materialize_due(
        self, now: datetime | None = None, horizon: timedelta = timedelta(hours=48)
    ) -> list[PlaySession]:
        """Create sessions for every occurrence falling before ``now + horizon``.

        Occurrences already in the past are skipped, not back-filled.
        Returns the sessions created by this call.
        """
        now = to_utc(now or datetime.now(UTC))
        until = now + horizon
        created: list[PlaySession] = []

        for template in self.templates.list_due(until):
            try:
                rule = RecurrenceRule.parse(template.recurrence_rule)
            except ValidationError:
                logger.exception(
                    "Template %s has an invalid rule %r; deactivating",
                    template.id, template.recurrence_rule,
                )
                self.templates.update(template.id, is_active=False)
                continue

            occurrence = to_utc(template.next_occurrence)
            if occurrence <= now:
                occurrence = self._next_after(rule, now)
            while occurrence <= until:
                session = self.sessions.create_occurrence(template, occurrence)
                if session is not None:
                    created.append(session)
                occurrence = self._next_after(rule, occurrence)
            self.templates.update(template.id, next_occurrence=occurrence)

        if created:
            logger.info("Materialized %d recurring sessions", len(created))
        return created
