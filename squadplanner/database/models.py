"""
squadplanner.database.models — SQLAlchemy 2.0 Data Models
==========================================================

Tables:
- profiles           — Member identities (optionally linked to Discord)
- squads             — Groups that own scheduling activity
- squad_members      — Membership + role (leader / member)
- sessions           — One scheduled play event per row
- recurring_sessions — Weekly templates that materialize into sessions
- session_rsvps      — Current RSVP answer per (session, member)
- session_checkins   — Current check-in outcome per (session, member)
- messages           — Squad chat, including system notices
- challenges         — Gamification challenges keyed by counter type
- user_challenges    — Per-member challenge progress
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all SquadPlanner ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class SessionStatus(enum.StrEnum):
    """Lifecycle of a play session.  ``CANCELLED`` is terminal."""
    PROPOSED = "proposed"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class RsvpResponse(enum.StrEnum):
    """A member's stated intent before the session."""
    PRESENT = "present"
    ABSENT = "absent"
    MAYBE = "maybe"


class CheckinStatus(enum.StrEnum):
    """A member's recorded outcome during / after the session."""
    PRESENT = "present"
    LATE = "late"
    NOSHOW = "noshow"


class SquadRole(enum.StrEnum):
    LEADER = "leader"
    MEMBER = "member"


# ---------------------------------------------------------------------------
# Profiles — one row per member
# ---------------------------------------------------------------------------
class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    discord_user_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_profiles_discord_user_id", "discord_user_id", unique=True),
    )

    def __repr__(self) -> str:
        return f"<Profile id={self.id} name={self.username!r}>"


# ---------------------------------------------------------------------------
# Squads — groups that own sessions
# ---------------------------------------------------------------------------
class Squad(Base):
    __tablename__ = "squads"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    owner_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    members: Mapped[list[SquadMember]] = relationship(
        back_populates="squad", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Squad id={self.id} name={self.name!r}>"


class SquadMember(Base):
    __tablename__ = "squad_members"

    squad_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("squads.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True
    )
    role: Mapped[str] = mapped_column(String(20), default=SquadRole.MEMBER.value)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    squad: Mapped[Squad] = relationship(back_populates="members")

    __table_args__ = (
        Index("ix_squad_members_user", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<SquadMember squad={self.squad_id} user={self.user_id} role={self.role}>"


# ---------------------------------------------------------------------------
# PlaySession — one scheduled play event (table: sessions)
# ---------------------------------------------------------------------------
class PlaySession(Base):
    """A single scheduled play event.

    ``squad_id`` never changes after insert.  Status only moves through
    :mod:`squadplanner.engine.lifecycle`; cancellation is a status value,
    rows are never deleted by the engine.
    """
    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    squad_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("squads.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str | None] = mapped_column(String(200), default=None)
    game: Mapped[str | None] = mapped_column(String(100), default=None)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=120)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SessionStatus.PROPOSED.value
    )
    auto_confirm_threshold: Mapped[int] = mapped_column(Integer, default=3)
    created_by: Mapped[str] = mapped_column(
        String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    recurring_session_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("recurring_sessions.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        # One materialized session per template occurrence
        UniqueConstraint(
            "recurring_session_id", "scheduled_at",
            name="uq_sessions_recurring_occurrence",
        ),
        Index("ix_sessions_squad_time", "squad_id", "scheduled_at"),
        Index("ix_sessions_scheduled_at", "scheduled_at"),
    )

    def __repr__(self) -> str:
        return f"<PlaySession id={self.id} squad={self.squad_id} status={self.status}>"


# ---------------------------------------------------------------------------
# RecurringSession — weekly template (table: recurring_sessions)
# ---------------------------------------------------------------------------
class RecurringSession(Base):
    """Weekly template, e.g. ``weekly:0,4:21:00`` (Mon + Fri at 21:00).

    ``next_occurrence`` is a cached value that is always strictly in the
    future relative to when it was last computed.
    """
    __tablename__ = "recurring_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    squad_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("squads.id", ondelete="CASCADE"), nullable=False
    )
    created_by: Mapped[str] = mapped_column(
        String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    game: Mapped[str | None] = mapped_column(String(100), default=None)
    recurrence_rule: Mapped[str] = mapped_column(String(50), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=120)
    min_players: Mapped[int] = mapped_column(Integer, default=3)
    max_players: Mapped[int] = mapped_column(Integer, default=10)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    next_occurrence: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_recurring_sessions_squad", "squad_id"),
        Index("ix_recurring_sessions_active_next", "is_active", "next_occurrence"),
    )

    def __repr__(self) -> str:
        return (
            f"<RecurringSession id={self.id} rule={self.recurrence_rule!r} "
            f"active={self.is_active}>"
        )


# ---------------------------------------------------------------------------
# SessionRsvp / SessionCheckin — one current answer per (session, member)
# ---------------------------------------------------------------------------
class SessionRsvp(Base):
    __tablename__ = "session_rsvps"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    response: Mapped[str] = mapped_column(String(20), nullable=False)
    responded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("session_id", "user_id", name="uq_session_rsvps_session_user"),
    )

    def __repr__(self) -> str:
        return f"<SessionRsvp session={self.session_id} user={self.user_id} {self.response}>"


class SessionCheckin(Base):
    __tablename__ = "session_checkins"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    checked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("session_id", "user_id", name="uq_session_checkins_session_user"),
    )

    def __repr__(self) -> str:
        return f"<SessionCheckin session={self.session_id} user={self.user_id} {self.status}>"


# ---------------------------------------------------------------------------
# Message — squad chat, including system notices
# ---------------------------------------------------------------------------
class Message(Base):
    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    squad_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("squads.id", ondelete="CASCADE"), nullable=False
    )
    session_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("sessions.id", ondelete="SET NULL"), nullable=True
    )
    sender_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_system_message: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_messages_squad_time", "squad_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Message id={self.id} squad={self.squad_id} system={self.is_system_message}>"


# ---------------------------------------------------------------------------
# Challenges — gamification counters
# ---------------------------------------------------------------------------
class Challenge(Base):
    """A challenge advanced by a named counter.

    ``requirements`` is ``{"type": "<counter key>", "count": <target>}``;
    a missing ``count`` means a one-shot challenge.
    """
    __tablename__ = "challenges"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    requirements: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    xp_reward: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    __table_args__ = (
        UniqueConstraint("title", name="uq_challenges_title"),
    )

    def __repr__(self) -> str:
        return f"<Challenge id={self.id} title={self.title!r}>"


class UserChallenge(Base):
    __tablename__ = "user_challenges"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    challenge_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False
    )
    progress: Mapped[int] = mapped_column(Integer, default=0)
    target: Mapped[int] = mapped_column(Integer, default=1)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "challenge_id", name="uq_user_challenges_user_challenge"),
    )

    def __repr__(self) -> str:
        return (
            f"<UserChallenge user={self.user_id} challenge={self.challenge_id} "
            f"{self.progress}/{self.target}>"
        )
