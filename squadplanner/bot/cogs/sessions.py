"""
squadplanner.bot.cogs.sessions — /session Slash Commands
=========================================================

- /session create — propose a session in your first squad
- /session list   — upcoming sessions across your squads
- /session join   — RSVP to a session by id

Members act through the profile linked to their Discord account
(``profiles.discord_user_id``).  Every write goes through the shared
:class:`SessionActionCoordinator`, so chat notices, challenge progress and
auto-confirmation behave exactly as in the web API.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

import discord
from discord import app_commands
from discord.ext import commands

from squadplanner.database.engine import run_db
from squadplanner.database.models import RsvpResponse
from squadplanner.errors import NotFound, SquadPlannerError, ValidationError
from squadplanner.services.embeds import (
    build_rsvp_embed,
    build_session_created_embed,
    build_session_list_embed,
)

if TYPE_CHECKING:
    from squadplanner.bot.core import SquadPlannerBot
    from squadplanner.database.models import Profile

logger = logging.getLogger(__name__)

GENERIC_ERROR = "❌ Something went wrong. Please try again later."

NOT_LINKED = (
    "❌ Your Discord account isn't linked to a Squad Planner profile yet.\n"
    "Link it from your profile settings, then try again."
)


def parse_when(date_text: str, time_text: str, tz: ZoneInfo, now: datetime) -> datetime:
    """Parse ``YYYY-MM-DD`` + ``HH:MM`` in *tz* into an aware UTC datetime.

    Raises :class:`ValidationError` on bad input or a time not after *now*.
    """
    try:
        naive = datetime.strptime(f"{date_text.strip()} {time_text.strip()}", "%Y-%m-%d %H:%M")
    except ValueError:
        raise ValidationError("Use date YYYY-MM-DD and time HH:MM (24h).") from None
    when = naive.replace(tzinfo=tz).astimezone(UTC)
    if when <= now:
        raise ValidationError("That date is in the past.")
    return when


def _error_text(error: Exception) -> str:
    if isinstance(error, NotFound):
        return "❌ Session not found."
    if isinstance(error, ValidationError):
        return f"❌ {error}"
    return GENERIC_ERROR


class Sessions(commands.GroupCog, group_name="session", group_description="Plan squad sessions."):
    """Create, list and join play sessions from Discord."""

    def __init__(self, bot: SquadPlannerBot) -> None:
        self.bot = bot
        super().__init__()

    async def _linked_profile(self, interaction: discord.Interaction) -> Profile | None:
        profile = await run_db(self.bot.profiles.find_by_discord_id, interaction.user.id)
        if profile is None:
            await interaction.response.send_message(NOT_LINKED, ephemeral=True)
        return profile

    # -------------------------------------------------------------------
    # /session create
    # -------------------------------------------------------------------
    @app_commands.command(name="create", description="Propose a new session for your squad.")
    @app_commands.describe(
        title="What are you playing? (e.g. Raid Night)",
        date="Day of the session, YYYY-MM-DD",
        time="Start time, HH:MM (24h)",
        game="Game name (optional)",
    )
    async def create(
        self,
        interaction: discord.Interaction,
        title: str,
        date: str,
        time: str,
        game: str | None = None,
    ) -> None:
        profile = await self._linked_profile(interaction)
        if profile is None:
            return

        try:
            when = parse_when(date, time, self.bot.cfg.tz, datetime.now(UTC))
        except ValidationError as exc:
            await interaction.response.send_message(f"❌ {exc}", ephemeral=True)
            return

        squad_ids = await run_db(self.bot.profiles.squad_ids_for, profile.id)
        if not squad_ids:
            await interaction.response.send_message(
                "❌ You're not in a squad yet. Join or create one first.", ephemeral=True,
            )
            return

        result = await self.bot.coordinator_for(profile).create_session(
            squad_ids[0], when, title=title, game=game,
        )
        if result.error is not None:
            await interaction.response.send_message(_error_text(result.error), ephemeral=True)
            return

        embed = build_session_created_embed(result.session, profile.username)
        await interaction.response.send_message(embed=embed)
        logger.info("Session %s created via Discord by %s", result.session.id, profile.id)

    # -------------------------------------------------------------------
    # /session list
    # -------------------------------------------------------------------
    @app_commands.command(name="list", description="Show upcoming sessions across your squads.")
    async def list_sessions(self, interaction: discord.Interaction) -> None:
        profile = await self._linked_profile(interaction)
        if profile is None:
            return
        try:
            views = await run_db(self.bot.coordinator.queries.list_upcoming, profile.id)
        except SquadPlannerError:
            logger.exception("Listing upcoming sessions failed for %s", profile.id)
            await interaction.response.send_message(GENERIC_ERROR, ephemeral=True)
            return
        embed = build_session_list_embed(views, "\U0001f4c5 Upcoming sessions")
        await interaction.response.send_message(embed=embed, ephemeral=True)

    # -------------------------------------------------------------------
    # /session join
    # -------------------------------------------------------------------
    @app_commands.command(name="join", description="RSVP to a session.")
    @app_commands.describe(id="Session id (shown in /session list)", response="Your answer")
    @app_commands.choices(response=[
        app_commands.Choice(name="Present", value=RsvpResponse.PRESENT.value),
        app_commands.Choice(name="Maybe", value=RsvpResponse.MAYBE.value),
        app_commands.Choice(name="Absent", value=RsvpResponse.ABSENT.value),
    ])
    async def join(
        self,
        interaction: discord.Interaction,
        id: str,
        response: str = RsvpResponse.PRESENT.value,
    ) -> None:
        profile = await self._linked_profile(interaction)
        if profile is None:
            return

        session = await run_db(self.bot.coordinator.sessions.find, id.strip())
        if session is None or not await run_db(
            self.bot.profiles.is_member, session.squad_id, profile.id
        ):
            await interaction.response.send_message("❌ Session not found.", ephemeral=True)
            return

        result = await self.bot.coordinator_for(profile).update_rsvp(session.id, response)
        if result.error is not None:
            await interaction.response.send_message(_error_text(result.error), ephemeral=True)
            return

        detail = self.bot.cache.get_detail(result.session.id, profile.id)
        present = detail.summary.counts.present if detail is not None else 0
        embed = build_rsvp_embed(result.session, RsvpResponse(response).name.title(), present)
        await interaction.response.send_message(embed=embed, ephemeral=True)


async def setup(bot: SquadPlannerBot) -> None:
    await bot.add_cog(Sessions(bot))
