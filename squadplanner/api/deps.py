"""
squadplanner.api.deps — FastAPI dependency injection
=====================================================

Long-lived objects (engine, config, cache, coordinator, services) are built
once behind ``lru_cache`` and can be swapped in tests through
``app.dependency_overrides``.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from squadplanner.config import SquadPlannerConfig, load_config
from squadplanner.database.engine import create_db_engine, run_db
from squadplanner.database.models import SquadRole
from squadplanner.engine.cache import SessionCache
from squadplanner.errors import Unauthenticated
from squadplanner.services.challenge_tracker import ChallengeTracker
from squadplanner.services.coordinator import SessionActionCoordinator
from squadplanner.services.identity import Actor, StaticIdentity
from squadplanner.services.recurring_service import RecurringSessionService
from squadplanner.services.repositories import ProfileRepository
from squadplanner.services.system_messages import SystemMessageNotifier

logger = logging.getLogger(__name__)

_WEAK_SECRETS = frozenset({
    "squadplanner-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


# ---------------------------------------------------------------------------
# Shared singletons
# ---------------------------------------------------------------------------
@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> SquadPlannerConfig:
    return load_config()


@lru_cache(maxsize=1)
def get_cache() -> SessionCache:
    return SessionCache()


@lru_cache(maxsize=1)
def get_base_coordinator() -> SessionActionCoordinator:
    """The process-wide coordinator; requests get per-actor views of it."""
    engine = get_engine()
    cfg = get_config()
    return SessionActionCoordinator(
        engine,
        StaticIdentity(None),
        get_cache(),
        notifier=SystemMessageNotifier(engine),
        progress=ChallengeTracker(engine),
        policy=cfg.auto_confirm_policy,
        default_threshold=cfg.default_auto_confirm_threshold,
        default_duration=cfg.default_duration_minutes,
    )


@lru_cache(maxsize=1)
def get_recurring_service() -> RecurringSessionService:
    return RecurringSessionService(get_engine(), get_config().tz)


@lru_cache(maxsize=1)
def get_profiles() -> ProfileRepository:
    return ProfileRepository(get_engine())


# ---------------------------------------------------------------------------
# Per-request
# ---------------------------------------------------------------------------
def get_current_actor(
    authorization: Annotated[str | None, Header()] = None,
) -> Actor | None:
    """Resolve the bearer token to an :class:`Actor`.

    A missing header yields ``None`` (the action layer reports it as
    unauthenticated); a malformed or forged token is rejected with 401.
    """
    if not authorization:
        return None
    if not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    sub = payload.get("sub")
    if not sub:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    return Actor(id=str(sub), display_name=payload.get("username"))


def require_actor(actor: Actor | None) -> Actor:
    if actor is None:
        raise Unauthenticated()
    return actor


async def require_member(profiles: ProfileRepository, squad_id: str, actor: Actor) -> SquadRole:
    """Return the actor's role in the squad; 403 if not a member."""
    role = await run_db(profiles.role_in, squad_id, actor.id)
    if role is None:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not a member of this squad")
    return role


def get_coordinator(
    actor: Annotated[Actor | None, Depends(get_current_actor)],
    base: Annotated[SessionActionCoordinator, Depends(get_base_coordinator)],
) -> SessionActionCoordinator:
    return base.for_identity(StaticIdentity(actor))
