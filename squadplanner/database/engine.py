"""
squadplanner.database.engine — Engine, Unit of Work & Thread Bridge
====================================================================

Every repository in :mod:`squadplanner.services.repositories` is plain
synchronous SQLAlchemy.  Three helpers tie that to the rest of the app:

* :func:`create_db_engine` builds the shared PostgreSQL engine from
  ``DATABASE_URL``.  The API and the bot each build one.
* :func:`get_session` is the unit of work a repository method runs in:
  one commit per call, rollback on any error.
* :func:`run_db` lets the coordinator, the FastAPI routes and the Discord
  cogs call a repository method from a coroutine without blocking the
  event loop.

Usage::

    engine = create_db_engine()
    init_db(engine)                      # dev/test only; prod uses Alembic

    async def handler():
        session = await run_db(SessionRepository(engine).get, session_id)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session

from squadplanner.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine() -> Engine:
    """Engine for ``DATABASE_URL``, pre-pinging pooled connections.

    The pool holds 5 connections plus 10 overflow; a checkout waits at most
    10 s and connections are recycled hourly.

    Raises
    ------
    RuntimeError
        If ``DATABASE_URL`` is not set.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and point it at the SquadPlanner database."
        )

    engine = create_engine(
        url,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_timeout=10,
        pool_recycle=3600,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create missing tables, then seed the default challenges.

    Both steps are idempotent.  Production schemas come from
    ``alembic upgrade head``; this exists for local runs and tests.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")

    from squadplanner.database.seed import seed_default_challenges

    seed_default_challenges(engine)


# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Yield a :class:`Session`; commit on exit, roll back on error.

    ``expire_on_commit=False`` keeps returned rows readable once the session
    is closed, since they cross back to the event loop thread.
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Thread bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Await a blocking repository call on the default thread pool."""
    return await asyncio.to_thread(func, *args, **kwargs)
