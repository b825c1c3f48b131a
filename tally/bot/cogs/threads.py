"""
tally.bot.cogs.threads — Forum Post Rewards
===========================================

Awards ``forum_post`` points when a member opens a new thread, priced by
the parent channel's configuration.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from tally.engine.events import ActivityItem, EventType
from tally.services.activity_service import ingest_activity

if TYPE_CHECKING:
    from tally.bot.core import TallyBot

logger = logging.getLogger(__name__)


class Threads(commands.Cog, name="Threads"):
    """Awards points for creating new threads."""

    def __init__(self, bot: TallyBot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_thread_create(self, thread: discord.Thread) -> None:
        try:
            await self._handle_thread_create(thread)
        except Exception:
            logger.exception("Error processing thread creation %s", thread.id)

    async def _handle_thread_create(self, thread: discord.Thread) -> None:
        """Inner thread create handler (separated for error isolation)."""
        if thread.owner_id is None or thread.guild is None:
            return

        owner = await self.bot.gateway.fetch_profile(str(thread.owner_id))
        if owner is None or owner.bot:
            return

        item = ActivityItem(
            external_id=str(thread.id),
            event_type=EventType.FORUM_POST,
            channel_id=str(thread.parent_id or thread.id),
            author=owner,
            content=thread.name,
            created_at=thread.created_at or datetime.now(UTC),
        )
        outcome = await ingest_activity(
            self.bot.engine,
            self.bot.gateway,
            item,
            daily_comment_cap=self.bot.cfg.daily_comment_cap,
        )
        logger.debug(
            "Thread %s by %s → %s (+%d)",
            thread.id, owner.username, outcome.status, outcome.granted,
        )


async def setup(bot: TallyBot) -> None:
    await bot.add_cog(Threads(bot))
