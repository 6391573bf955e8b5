"""
squadplanner.bot.cogs.tasks — Periodic Background Tasks
========================================================

Scheduled jobs that run on ``discord.ext.tasks`` loops:

- **Recurring materialization** — every ``materialize_interval_minutes``
  (default 15), turns recurring templates due within
  ``recurring_horizon_hours`` into proposed sessions.

Runs in the bot process via ``run_db()`` so the event loop never blocks.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from discord.ext import commands, tasks

from squadplanner.database.engine import run_db
from squadplanner.engine.cache import send_notify
from squadplanner.services.dispatch import BestEffortDispatcher
from squadplanner.services.embeds import build_session_created_embed

if TYPE_CHECKING:
    from squadplanner.bot.core import SquadPlannerBot

logger = logging.getLogger(__name__)


class PeriodicTasks(commands.Cog):
    """Cog for scheduled background jobs."""

    def __init__(self, bot: SquadPlannerBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        """Start task loops when the cog is loaded."""
        self.materialize_loop.change_interval(
            minutes=self.bot.cfg.materialize_interval_minutes,
        )
        self.materialize_loop.start()

    async def cog_unload(self) -> None:
        """Cancel task loops on unload."""
        self.materialize_loop.cancel()

    # -------------------------------------------------------------------
    # Recurring materialization
    # -------------------------------------------------------------------
    @tasks.loop(minutes=15)
    async def materialize_loop(self):
        """Create sessions for recurring templates coming up soon."""
        horizon = timedelta(hours=self.bot.cfg.recurring_horizon_hours)
        try:
            created = await run_db(self.bot.recurring.materialize_due, None, horizon)
        except Exception:
            logger.exception("Materialization task failed", extra={"task": "materialize"})
            return

        dispatcher = BestEffortDispatcher()
        for session in created:
            self.bot.cache.invalidate(None, session.squad_id)
            await dispatcher.run(
                "broadcast_invalidation", send_notify,
                self.bot.engine, None, session.squad_id, self.bot.cache.origin,
            )
            await self.bot.announce(build_session_created_embed(session, "Recurring schedule"))
        if created:
            logger.info("Materialization task complete: %d sessions created", len(created))

    @materialize_loop.before_loop
    async def _wait_materialize(self):
        await self.bot.wait_until_ready()


async def setup(bot: SquadPlannerBot) -> None:
    await bot.add_cog(PeriodicTasks(bot))
