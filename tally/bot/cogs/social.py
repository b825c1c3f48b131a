"""
tally.bot.cogs.social — Live Message Rewards
============================================

Listens for ``on_message``, normalizes each guild message into an
:class:`ActivityItem` and runs it through the reward pipeline.

* Messages in regular channels are ``message`` events priced by the channel.
* Messages inside threads are ``comment`` events priced by the thread's
  parent (usually a forum).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from tally.engine.events import ActivityItem, EventType
from tally.services.activity_service import ingest_activity
from tally.services.discord_gateway import profile_from_user

if TYPE_CHECKING:
    from tally.bot.core import TallyBot

logger = logging.getLogger(__name__)


def build_message_item(message: discord.Message) -> ActivityItem:
    channel = message.channel
    if isinstance(channel, discord.Thread):
        event_type = EventType.COMMENT
        pricing_channel_id = channel.parent_id or channel.id
    else:
        event_type = EventType.MESSAGE
        pricing_channel_id = channel.id

    return ActivityItem(
        external_id=str(message.id),
        event_type=event_type,
        channel_id=str(pricing_channel_id),
        author=profile_from_user(message.author),
        content=message.content,
        created_at=message.created_at,
        system=message.is_system(),
    )


class Social(commands.Cog, name="Social"):
    """Awards points for guild messages and thread replies."""

    def __init__(self, bot: TallyBot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        try:
            await self._handle_message(message)
        except Exception:
            logger.exception(
                "Error processing message %s from user %s",
                message.id,
                message.author.id,
            )

    async def _handle_message(self, message: discord.Message) -> None:
        """Inner message handler (separated for error isolation)."""
        if message.author.bot or message.is_system():
            return
        if message.guild is None:
            return
        # A forum thread's starter message shares the thread's ID; the
        # thread listener records it as the forum post.
        if isinstance(message.channel, discord.Thread) and message.id == message.channel.id:
            return

        item = build_message_item(message)
        outcome = await ingest_activity(
            self.bot.engine,
            self.bot.gateway,
            item,
            daily_comment_cap=self.bot.cfg.daily_comment_cap,
        )
        logger.debug(
            "Message %s from %s → %s (+%d)",
            message.id, message.author.name, outcome.status, outcome.granted,
        )


async def setup(bot: TallyBot) -> None:
    await bot.add_cog(Social(bot))
