"""Initial schema: profiles, squads, sessions, responses, chat, challenges

Revision ID: 3f2a9c1e7b40
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f2a9c1e7b40"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _uuid_pk() -> sa.Column:
    return sa.Column("id", sa.String(36), primary_key=True)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(),
    )


def upgrade() -> None:
    """Create every table the session engine needs."""
    op.create_table(
        "profiles",
        _uuid_pk(),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("discord_user_id", sa.BigInteger(), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_profiles_discord_user_id", "profiles", ["discord_user_id"], unique=True,
    )

    op.create_table(
        "squads",
        _uuid_pk(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column(
            "owner_id", sa.String(36),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False,
        ),
        _created_at(),
    )

    op.create_table(
        "squad_members",
        sa.Column(
            "squad_id", sa.String(36),
            sa.ForeignKey("squads.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column(
            "user_id", sa.String(36),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("role", sa.String(20), nullable=True),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_squad_members_user", "squad_members", ["user_id"])

    op.create_table(
        "recurring_sessions",
        _uuid_pk(),
        sa.Column(
            "squad_id", sa.String(36),
            sa.ForeignKey("squads.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "created_by", sa.String(36),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("game", sa.String(100), nullable=True),
        sa.Column("recurrence_rule", sa.String(50), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("min_players", sa.Integer(), nullable=True),
        sa.Column("max_players", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("next_occurrence", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index("ix_recurring_sessions_squad", "recurring_sessions", ["squad_id"])
    op.create_index(
        "ix_recurring_sessions_active_next",
        "recurring_sessions", ["is_active", "next_occurrence"],
    )

    op.create_table(
        "sessions",
        _uuid_pk(),
        sa.Column(
            "squad_id", sa.String(36),
            sa.ForeignKey("squads.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("title", sa.String(200), nullable=True),
        sa.Column("game", sa.String(100), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("auto_confirm_threshold", sa.Integer(), nullable=True),
        sa.Column(
            "created_by", sa.String(36),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "recurring_session_id", sa.String(36),
            sa.ForeignKey("recurring_sessions.id", ondelete="SET NULL"), nullable=True,
        ),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "recurring_session_id", "scheduled_at",
            name="uq_sessions_recurring_occurrence",
        ),
    )
    op.create_index("ix_sessions_squad_time", "sessions", ["squad_id", "scheduled_at"])
    op.create_index("ix_sessions_scheduled_at", "sessions", ["scheduled_at"])

    op.create_table(
        "session_rsvps",
        _uuid_pk(),
        sa.Column(
            "session_id", sa.String(36),
            sa.ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "user_id", sa.String(36),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("response", sa.String(20), nullable=False),
        sa.Column("responded_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("session_id", "user_id", name="uq_session_rsvps_session_user"),
    )

    op.create_table(
        "session_checkins",
        _uuid_pk(),
        sa.Column(
            "session_id", sa.String(36),
            sa.ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "user_id", sa.String(36),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("checked_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "session_id", "user_id", name="uq_session_checkins_session_user",
        ),
    )

    op.create_table(
        "messages",
        _uuid_pk(),
        sa.Column(
            "squad_id", sa.String(36),
            sa.ForeignKey("squads.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "session_id", sa.String(36),
            sa.ForeignKey("sessions.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column(
            "sender_id", sa.String(36),
            sa.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("is_system_message", sa.Boolean(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_messages_squad_time", "messages", ["squad_id", "created_at"])

    op.create_table(
        "challenges",
        _uuid_pk(),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("requirements", postgresql.JSONB(), nullable=False),
        sa.Column("xp_reward", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.UniqueConstraint("title", name="uq_challenges_title"),
    )

    op.create_table(
        "user_challenges",
        _uuid_pk(),
        sa.Column(
            "user_id", sa.String(36),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "challenge_id", sa.String(36),
            sa.ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("progress", sa.Integer(), nullable=True),
        sa.Column("target", sa.Integer(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "user_id", "challenge_id", name="uq_user_challenges_user_challenge",
        ),
    )


def downgrade() -> None:
    """Drop everything in reverse dependency order."""
    op.drop_table("user_challenges")
    op.drop_table("challenges")
    op.drop_index("ix_messages_squad_time", table_name="messages")
    op.drop_table("messages")
    op.drop_table("session_checkins")
    op.drop_table("session_rsvps")
    op.drop_index("ix_sessions_scheduled_at", table_name="sessions")
    op.drop_index("ix_sessions_squad_time", table_name="sessions")
    op.drop_table("sessions")
    op.drop_index("ix_recurring_sessions_active_next", table_name="recurring_sessions")
    op.drop_index("ix_recurring_sessions_squad", table_name="recurring_sessions")
    op.drop_table("recurring_sessions")
    op.drop_index("ix_squad_members_user", table_name="squad_members")
    op.drop_table("squad_members")
    op.drop_table("squads")
    op.drop_index("ix_profiles_discord_user_id", table_name="profiles")
    op.drop_table("profiles")
