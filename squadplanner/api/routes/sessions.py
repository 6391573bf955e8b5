"""
squadplanner.api.routes.sessions — Session endpoints
=====================================================

Reads return the session read models with RSVP counts and the caller's own
answer.  Writes go through :class:`SessionActionCoordinator`; a failed
write is raised from ``ActionResult.error`` and mapped to a status code by
the handlers in :mod:`squadplanner.api.main`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from squadplanner.api.deps import (
    get_coordinator,
    get_current_actor,
    require_actor,
    require_member,
)
from squadplanner.database.engine import run_db
from squadplanner.database.models import CheckinStatus, RsvpResponse, SquadRole
from squadplanner.services.coordinator import ActionResult, SessionActionCoordinator
from squadplanner.services.identity import Actor

router = APIRouter(tags=["sessions"])

Coordinator = Annotated[SessionActionCoordinator, Depends(get_coordinator)]
MaybeActor = Annotated[Actor | None, Depends(get_current_actor)]


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------
class CreateSessionBody(BaseModel):
    scheduled_at: datetime
    title: str | None = Field(default=None, max_length=200)
    game: str | None = Field(default=None, max_length=100)
    duration_minutes: int | None = None
    auto_confirm_threshold: int | None = None


class RsvpBody(BaseModel):
    response: RsvpResponse


class CheckinBody(BaseModel):
    status: CheckinStatus


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
async def _session_for_member(coordinator: SessionActionCoordinator, session_id: str, actor: Actor):
    session = await run_db(coordinator.sessions.get, session_id)
    role = await require_member(coordinator.profiles, session.squad_id, actor)
    return session, role


async def _detail_after(
    coordinator: SessionActionCoordinator, result: ActionResult, actor: Actor
) -> dict:
    if result.error is not None:
        raise result.error
    detail = await run_db(coordinator.queries.get_detail, result.session.id, actor.id)
    return detail.as_dict()


# ---------------------------------------------------------------------------
# Squad sessions
# ---------------------------------------------------------------------------
@router.get("/squads/{squad_id}/sessions")
async def list_squad_sessions(squad_id: str, coordinator: Coordinator, actor: MaybeActor):
    """All sessions of a squad, soonest first."""
    actor = require_actor(actor)
    await require_member(coordinator.profiles, squad_id, actor)
    views = await run_db(coordinator.queries.list_for_squad, squad_id, actor.id)
    return [v.as_dict() for v in views]


@router.post("/squads/{squad_id}/sessions", status_code=status.HTTP_201_CREATED)
async def create_squad_session(
    squad_id: str, body: CreateSessionBody, coordinator: Coordinator, actor: MaybeActor,
):
    actor = require_actor(actor)
    await require_member(coordinator.profiles, squad_id, actor)
    result = await coordinator.create_session(
        squad_id,
        body.scheduled_at,
        title=body.title,
        game=body.game,
        duration_minutes=body.duration_minutes,
        auto_confirm_threshold=body.auto_confirm_threshold,
    )
    return await _detail_after(coordinator, result, actor)


# ---------------------------------------------------------------------------
# Single sessions
# ---------------------------------------------------------------------------
@router.get("/sessions/upcoming")
async def upcoming_sessions(coordinator: Coordinator, actor: MaybeActor):
    """Next sessions across every squad the caller belongs to."""
    actor = require_actor(actor)
    views = await run_db(coordinator.queries.list_upcoming, actor.id)
    return [v.as_dict() for v in views]


@router.get("/sessions/{session_id}")
async def get_session_detail(session_id: str, coordinator: Coordinator, actor: MaybeActor):
    actor = require_actor(actor)
    await _session_for_member(coordinator, session_id, actor)
    detail = await run_db(coordinator.queries.get_detail, session_id, actor.id)
    return detail.as_dict()


@router.put("/sessions/{session_id}/rsvp")
async def put_rsvp(
    session_id: str, body: RsvpBody, coordinator: Coordinator, actor: MaybeActor,
):
    actor = require_actor(actor)
    await _session_for_member(coordinator, session_id, actor)
    result = await coordinator.update_rsvp(session_id, body.response)
    return await _detail_after(coordinator, result, actor)


@router.put("/sessions/{session_id}/checkin")
async def put_checkin(
    session_id: str, body: CheckinBody, coordinator: Coordinator, actor: MaybeActor,
):
    actor = require_actor(actor)
    await _session_for_member(coordinator, session_id, actor)
    result = await coordinator.checkin(session_id, body.status)
    return await _detail_after(coordinator, result, actor)


async def _require_organizer(
    coordinator: SessionActionCoordinator, session_id: str, actor: Actor
) -> None:
    session, role = await _session_for_member(coordinator, session_id, actor)
    if role != SquadRole.LEADER and session.created_by != actor.id:
        raise HTTPException(
            status.HTTP_403_FORBIDDEN, "Only the squad leader or the session creator can do this",
        )


@router.post("/sessions/{session_id}/confirm")
async def confirm_session(session_id: str, coordinator: Coordinator, actor: MaybeActor):
    actor = require_actor(actor)
    await _require_organizer(coordinator, session_id, actor)
    result = await coordinator.confirm_session(session_id)
    return await _detail_after(coordinator, result, actor)


@router.post("/sessions/{session_id}/cancel")
async def cancel_session(session_id: str, coordinator: Coordinator, actor: MaybeActor):
    actor = require_actor(actor)
    await _require_organizer(coordinator, session_id, actor)
    result = await coordinator.cancel_session(session_id)
    return await _detail_after(coordinator, result, actor)
