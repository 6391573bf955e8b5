"""
squadplanner.bot.core — Bot Instance & Cog Loader
==================================================

Defines :class:`SquadPlannerBot`, a ``commands.Bot`` subclass that:

1. Stores the shared config (``bot.cfg``), DB engine (``bot.engine``) and
   session cache (``bot.cache``) so every Cog can reach them.
2. Owns one :class:`SessionActionCoordinator`; each interaction gets a
   per-member view of it through :meth:`SquadPlannerBot.coordinator_for`.
3. Loads every Cog listed in :data:`EXTENSIONS`.
4. Syncs the slash-command tree on startup (guild-scoped for dev, global
   for production — controlled by the ``DEV_GUILD_ID`` env var).
"""

from __future__ import annotations

import logging
import os

import discord
from discord.ext import commands
from sqlalchemy import Engine

from squadplanner.config import SquadPlannerConfig
from squadplanner.database.models import Profile
from squadplanner.engine.cache import SessionCache
from squadplanner.services.challenge_tracker import ChallengeTracker
from squadplanner.services.coordinator import SessionActionCoordinator
from squadplanner.services.identity import Actor, StaticIdentity
from squadplanner.services.recurring_service import RecurringSessionService
from squadplanner.services.repositories import ProfileRepository
from squadplanner.services.system_messages import SystemMessageNotifier

logger = logging.getLogger(__name__)

# Cog modules to load on startup.
EXTENSIONS: list[str] = [
    "squadplanner.bot.cogs.sessions",
    "squadplanner.bot.cogs.tasks",
]


class SquadPlannerBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state.

    Parameters
    ----------
    cfg:
        The parsed :class:`SquadPlannerConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine` connected to PostgreSQL.
    """

    def __init__(self, cfg: SquadPlannerConfig, engine: Engine) -> None:
        # Slash commands only; no privileged intents needed.
        intents = discord.Intents.default()

        super().__init__(
            command_prefix=cfg.bot_prefix,
            intents=intents,
            description=f"{cfg.app_name} — plan your squad's sessions",
        )

        # Attach shared state so Cogs can read it via self.bot.*
        self.cfg = cfg
        self.engine = engine
        self.cache = SessionCache()
        self.profiles = ProfileRepository(engine)
        self.recurring = RecurringSessionService(engine, cfg.tz)
        self.coordinator = SessionActionCoordinator(
            engine,
            StaticIdentity(None),
            self.cache,
            notifier=SystemMessageNotifier(engine),
            progress=ChallengeTracker(engine),
            policy=cfg.auto_confirm_policy,
            default_threshold=cfg.default_auto_confirm_threshold,
            default_duration=cfg.default_duration_minutes,
        )

    def coordinator_for(self, profile: Profile) -> SessionActionCoordinator:
        """Coordinator acting as the member linked to *profile*."""
        return self.coordinator.for_identity(
            StaticIdentity(Actor(id=profile.id, display_name=profile.username))
        )

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Start the cache listener and load all Cog extensions.

        One broken Cog doesn't stop the rest.
        """
        self.cache.start_listener(self.engine)
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

    async def on_ready(self) -> None:
        """Fired when the bot has connected and the cache is populated."""
        assert self.user is not None  # guaranteed after on_ready
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)

        # --- Slash-command sync ---------------------------------------------
        dev_guild_id = os.getenv("DEV_GUILD_ID")
        if dev_guild_id:
            guild = discord.Object(id=int(dev_guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synced %d commands to dev guild %s", len(synced), dev_guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Synced %d commands globally", len(synced))

    async def close(self) -> None:
        self.cache.stop_listener()
        await super().close()

    async def announce(self, embed: discord.Embed) -> None:
        """Post *embed* to the configured announce channel, if any."""
        channel_id = self.cfg.announce_channel_id
        if channel_id is None:
            return
        channel = self.get_channel(channel_id)
        if channel is None or not hasattr(channel, "send"):
            logger.warning("Announce channel %s not found or not messageable", channel_id)
            return
        try:
            await channel.send(embed=embed)
        except discord.HTTPException:
            logger.exception("Failed to post announcement to channel %s", channel_id)
