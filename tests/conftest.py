"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of squadplanner.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

from datetime import UTC, datetime  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from squadplanner.database.models import (  # noqa: E402
    Base,
    PlaySession,
    Profile,
    Squad,
    SquadMember,
)

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent).

    Also maps BigInteger → INTEGER so autoincrement works on SQLite.
    """
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()

# Fixed identifiers used across test modules
SQUAD_ID = "squad-1"
LEADER_ID = "user-leader"
ALICE_ID = "user-alice"
BOB_ID = "user-bob"
CAROL_ID = "user-carol"
OUTSIDER_ID = "user-outsider"
FUTURE = datetime(2030, 3, 15, 21, 0, tzinfo=UTC)


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all SquadPlanner tables.

    JSONB columns are transparently mapped to TEXT for SQLite compatibility.
    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in ``run_db``).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def squad(db_engine: Engine) -> str:
    """One squad: a leader, Alice, Bob and Carol.  The outsider has a profile only."""
    with Session(db_engine) as session:
        session.add_all([
            Profile(id=LEADER_ID, username="Lea", discord_user_id=1001),
            Profile(id=ALICE_ID, username="Alice", discord_user_id=1002),
            Profile(id=BOB_ID, username="Bob"),
            Profile(id=CAROL_ID, username="Carol"),
            Profile(id=OUTSIDER_ID, username="Otto"),
        ])
        session.flush()
        session.add(Squad(id=SQUAD_ID, name="Night Owls", owner_id=LEADER_ID))
        session.flush()
        session.add_all([
            SquadMember(squad_id=SQUAD_ID, user_id=LEADER_ID, role="leader"),
            SquadMember(squad_id=SQUAD_ID, user_id=ALICE_ID, role="member"),
            SquadMember(squad_id=SQUAD_ID, user_id=BOB_ID, role="member"),
            SquadMember(squad_id=SQUAD_ID, user_id=CAROL_ID, role="member"),
        ])
        session.commit()
    return SQUAD_ID


def make_session(
    engine: Engine,
    *,
    session_id: str = "session-1",
    title: str | None = "Raid Night",
    status: str = "proposed",
    threshold: int = 3,
    scheduled_at: datetime = FUTURE,
    created_by: str = ALICE_ID,
) -> str:
    """Insert a session row directly and return its id."""
    with Session(engine) as session:
        session.add(PlaySession(
            id=session_id,
            squad_id=SQUAD_ID,
            title=title,
            scheduled_at=scheduled_at,
            status=status,
            auto_confirm_threshold=threshold,
            created_by=created_by,
        ))
        session.commit()
    return session_id


def make_token(sub: str = ALICE_ID, username: str = "Alice") -> str:
    """Create a member JWT."""
    import jwt

    from squadplanner.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode({"sub": sub, "username": username}, JWT_SECRET, algorithm=JWT_ALGORITHM)
