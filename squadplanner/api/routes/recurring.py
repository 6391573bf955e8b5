"""
squadplanner.api.routes.recurring — Recurring template endpoints
=================================================================

Any squad member can create a template.  Editing, toggling and deleting
are limited to the squad leader and the template's creator.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field, model_validator

from squadplanner.api.deps import (
    get_cache,
    get_current_actor,
    get_profiles,
    get_recurring_service,
    require_actor,
    require_member,
)
from squadplanner.database.engine import run_db
from squadplanner.database.models import RecurringSession, SquadRole
from squadplanner.engine.cache import SessionCache, send_notify
from squadplanner.engine.recurrence import RecurrenceRule, to_utc
from squadplanner.errors import ValidationError
from squadplanner.services.dispatch import BestEffortDispatcher
from squadplanner.services.identity import Actor
from squadplanner.services.recurring_service import RecurringSessionService
from squadplanner.services.repositories import ProfileRepository

router = APIRouter(tags=["recurring"])

Service = Annotated[RecurringSessionService, Depends(get_recurring_service)]
Profiles = Annotated[ProfileRepository, Depends(get_profiles)]
MaybeActor = Annotated[Actor | None, Depends(get_current_actor)]


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------
class RuleFields(BaseModel):
    """A rule either as text (``weekly:0,4:21:00``) or as its parts."""

    recurrence_rule: str | None = None
    days: list[int] | None = None
    hour: int | None = None
    minute: int | None = None

    def rule(self) -> RecurrenceRule | None:
        if self.recurrence_rule is not None:
            return RecurrenceRule.parse(self.recurrence_rule)
        if self.days is None:
            return None
        if self.hour is None or self.minute is None:
            raise ValidationError("hour and minute are required with days")
        return RecurrenceRule(tuple(self.days), self.hour, self.minute)


class CreateTemplateBody(RuleFields):
    title: str = Field(min_length=1, max_length=200)
    game: str | None = Field(default=None, max_length=100)
    duration_minutes: int = 120
    min_players: int = 3
    max_players: int = 10

    @model_validator(mode="after")
    def _rule_given(self):
        if self.recurrence_rule is None and self.days is None:
            raise ValueError("recurrence_rule or days/hour/minute is required")
        return self


class UpdateTemplateBody(RuleFields):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    game: str | None = Field(default=None, max_length=100)
    duration_minutes: int | None = None
    min_players: int | None = None
    max_players: int | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _template_dict(t: RecurringSession) -> dict:
    try:
        description = RecurrenceRule.parse(t.recurrence_rule).describe()
    except ValidationError:
        description = None
    return {
        "id": t.id,
        "squad_id": t.squad_id,
        "created_by": t.created_by,
        "title": t.title,
        "game": t.game,
        "recurrence_rule": t.recurrence_rule,
        "schedule": description,
        "duration_minutes": t.duration_minutes,
        "min_players": t.min_players,
        "max_players": t.max_players,
        "is_active": t.is_active,
        "next_occurrence": to_utc(t.next_occurrence).isoformat() if t.next_occurrence else None,
    }


async def _editable(
    service: RecurringSessionService, profiles: ProfileRepository, template_id: str, actor: Actor,
) -> RecurringSession:
    template = await run_db(service.get, template_id)
    role = await require_member(profiles, template.squad_id, actor)
    if role != SquadRole.LEADER and template.created_by != actor.id:
        raise HTTPException(
            status.HTTP_403_FORBIDDEN, "Only the squad leader or the template creator can do this",
        )
    return template


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@router.get("/squads/{squad_id}/recurring")
async def list_templates(squad_id: str, service: Service, profiles: Profiles, actor: MaybeActor):
    actor = require_actor(actor)
    await require_member(profiles, squad_id, actor)
    rows = await run_db(service.list_for_squad, squad_id)
    return [_template_dict(t) for t in rows]


@router.post("/squads/{squad_id}/recurring", status_code=status.HTTP_201_CREATED)
async def create_template(
    squad_id: str,
    body: CreateTemplateBody,
    service: Service,
    profiles: Profiles,
    actor: MaybeActor,
):
    actor = require_actor(actor)
    await require_member(profiles, squad_id, actor)
    row = await run_db(
        lambda: service.create(
            squad_id=squad_id,
            created_by=actor.id,
            title=body.title,
            recurrence_rule=body.rule(),
            game=body.game,
            duration_minutes=body.duration_minutes,
            min_players=body.min_players,
            max_players=body.max_players,
        )
    )
    return _template_dict(row)


@router.patch("/recurring/{template_id}")
async def update_template(
    template_id: str,
    body: UpdateTemplateBody,
    service: Service,
    profiles: Profiles,
    actor: MaybeActor,
):
    actor = require_actor(actor)
    await _editable(service, profiles, template_id, actor)
    changes = body.model_dump(exclude={"recurrence_rule", "days", "hour", "minute"})
    row = await run_db(
        lambda: service.update(template_id, recurrence_rule=body.rule(), **changes)
    )
    return _template_dict(row)


@router.post("/recurring/{template_id}/toggle")
async def toggle_template(
    template_id: str, service: Service, profiles: Profiles, actor: MaybeActor,
):
    actor = require_actor(actor)
    await _editable(service, profiles, template_id, actor)
    row = await run_db(service.toggle_active, template_id)
    return _template_dict(row)


@router.delete("/recurring/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(
    template_id: str,
    service: Service,
    profiles: Profiles,
    cache: Annotated[SessionCache, Depends(get_cache)],
    actor: MaybeActor,
):
    actor = require_actor(actor)
    template = await _editable(service, profiles, template_id, actor)
    await run_db(service.delete, template_id)
    cache.invalidate(None, template.squad_id)
    await BestEffortDispatcher().run(
        "broadcast_invalidation", send_notify,
        service.engine, None, template.squad_id, cache.origin,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
