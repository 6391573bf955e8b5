"""
squadplanner.services.embeds — Discord embed builders for sessions
===================================================================

All embed construction lives here so cogs only supply data.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import discord

from squadplanner.constants import STATUS_EMOJI
from squadplanner.database.models import SessionStatus
from squadplanner.engine.recurrence import to_utc

if TYPE_CHECKING:
    from squadplanner.database.models import PlaySession
    from squadplanner.services.session_service import SessionView

_STATUS_COLORS = {
    SessionStatus.PROPOSED.value: discord.Color.blurple(),
    SessionStatus.CONFIRMED.value: discord.Color.green(),
    SessionStatus.CANCELLED.value: discord.Color.red(),
}


def _timestamp(session: PlaySession) -> str:
    """Discord renders ``<t:epoch:F>`` in each reader's own timezone."""
    return f"<t:{int(to_utc(session.scheduled_at).timestamp())}:F>"


def build_session_created_embed(session: PlaySession, creator_name: str) -> discord.Embed:
    """Announcement posted when a session is created from Discord."""
    embed = discord.Embed(
        title=f"\U0001f3ae {session.title or 'New session'}",
        description=f"Proposed by **{creator_name}** for {_timestamp(session)}",
        color=discord.Color.blurple(),
    )
    if session.game:
        embed.add_field(name="Game", value=session.game, inline=True)
    embed.add_field(name="Duration", value=f"{session.duration_minutes} min", inline=True)
    embed.add_field(
        name="Auto-confirm",
        value=f"at {session.auto_confirm_threshold} present",
        inline=True,
    )
    embed.set_footer(text=f"/session join id:{session.id}")
    return embed


def build_session_list_embed(views: list[SessionView], heading: str) -> discord.Embed:
    """Compact list of sessions with their RSVP counts."""
    embed = discord.Embed(title=heading, color=discord.Color.blurple())
    if not views:
        embed.description = "No upcoming sessions."
        return embed

    lines = []
    for view in views:
        s = view.session
        counts = view.summary.counts
        emoji = STATUS_EMOJI.get(s.status, "")
        lines.append(
            f"{emoji} **{s.title or 'Session'}** — {_timestamp(s)}\n"
            f" ✅ {counts.present} · ❓ {counts.maybe} "
            f"· ❌ {counts.absent} · `{s.id}`"
        )
    embed.description = "\n".join(lines)
    return embed


def build_rsvp_embed(session: PlaySession, response: str, present: int) -> discord.Embed:
    """Ephemeral acknowledgement after ``/session join``."""
    color = _STATUS_COLORS.get(session.status, discord.Color.blurple())
    embed = discord.Embed(
        title=f"RSVP recorded: {response}",
        description=(
            f"**{session.title or 'Session'}** — {_timestamp(session)}\n"
            f"{present}/{session.auto_confirm_threshold} present"
        ),
        color=color,
    )
    if session.status == SessionStatus.CONFIRMED.value:
        embed.set_footer(text="This session is confirmed.")
    return embed
