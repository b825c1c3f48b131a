"""
tally.services.discord_gateway — discord.py Adapters
====================================================

The one place that turns discord.py objects into the plain envelopes the
services work with.  :class:`DiscordGateway` is handed the bot and the
guild ID at construction and implements all three ports:

* ``ActivitySource``        — channel lookup, history pages, forum threads
* ``IdentityDirectory``     — user ID → :class:`AuthorProfile`
* ``RoleNotificationSink``  — role assignment + DMs for level-ups
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import discord

from tally.engine.events import AuthorProfile, SourceMessage, ThreadItem
from tally.services.migration_service import ChannelInfo, ChannelKind

if TYPE_CHECKING:
    from discord.ext import commands

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Conversions
# ---------------------------------------------------------------------------
def profile_from_user(user: discord.abc.User) -> AuthorProfile:
    discriminator = getattr(user, "discriminator", None)
    return AuthorProfile(
        discord_id=str(user.id),
        username=user.name,
        global_name=getattr(user, "global_name", None),
        discriminator=None if discriminator in (None, "0") else discriminator,
        avatar_url=user.display_avatar.url,
        bot=user.bot,
    )


def source_message(message: discord.Message) -> SourceMessage:
    return SourceMessage(
        message_id=str(message.id),
        author=profile_from_user(message.author),
        content=message.content,
        created_at=message.created_at,
        system=message.is_system(),
    )


def thread_item(thread: discord.Thread) -> ThreadItem:
    return ThreadItem(
        thread_id=str(thread.id),
        parent_id=str(thread.parent_id),
        name=thread.name,
        owner_id=str(thread.owner_id) if thread.owner_id else None,
        created_at=thread.created_at,
    )


def channel_info(channel: Any) -> ChannelInfo:
    kind: ChannelKind | None = None
    if isinstance(channel, discord.ForumChannel):
        kind = ChannelKind.FORUM
    elif isinstance(channel, discord.abc.Messageable):
        kind = ChannelKind.TEXT

    is_thread = isinstance(channel, discord.Thread)
    return ChannelInfo(
        id=str(channel.id),
        name=getattr(channel, "name", None) or "Unknown",
        type_name=channel.type.name,
        kind=kind,
        is_thread=is_thread,
        parent_id=str(channel.parent_id) if is_thread else None,
    )


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------
class DiscordGateway:
    def __init__(self, bot: commands.Bot, guild_id: int) -> None:
        self.bot = bot
        self.guild_id = guild_id

    # -- lookups -------------------------------------------------------------
    async def _get_channel(self, channel_id: str):
        channel = self.bot.get_channel(int(channel_id))
        if channel is not None:
            return channel
        try:
            return await self.bot.fetch_channel(int(channel_id))
        except (discord.NotFound, discord.Forbidden, discord.InvalidData):
            return None

    async def _require_channel(self, channel_id: str, kind: type):
        channel = await self._get_channel(channel_id)
        if not isinstance(channel, kind):
            raise LookupError(f"channel {channel_id} is not a {kind.__name__}")
        return channel

    async def _get_user(self, discord_id: str) -> discord.User | None:
        user = self.bot.get_user(int(discord_id))
        if user is not None:
            return user
        try:
            return await self.bot.fetch_user(int(discord_id))
        except discord.NotFound:
            return None

    # -- ActivitySource ------------------------------------------------------
    async def resolve_channel(self, channel_id: str) -> ChannelInfo | None:
        if not channel_id.isdigit():
            return None
        channel = await self._get_channel(channel_id)
        if channel is None:
            return None
        return channel_info(channel)

    async def fetch_messages_before(
        self, channel_id: str, before: str | None, limit: int
    ) -> list[SourceMessage]:
        channel = await self._require_channel(channel_id, discord.abc.Messageable)
        cursor = discord.Object(id=int(before)) if before else None
        return [
            source_message(message)
            async for message in channel.history(limit=limit, before=cursor)
        ]

    async def fetch_active_threads(self, channel_id: str) -> list[ThreadItem]:
        forum = await self._require_channel(channel_id, discord.ForumChannel)
        threads = await forum.guild.active_threads()
        return [thread_item(t) for t in threads if t.parent_id == forum.id]

    async def fetch_archived_threads(self, channel_id: str) -> list[ThreadItem]:
        forum = await self._require_channel(channel_id, discord.ForumChannel)
        return [thread_item(t) async for t in forum.archived_threads(limit=None)]

    # -- IdentityDirectory ---------------------------------------------------
    async def fetch_profile(self, discord_id: str) -> AuthorProfile | None:
        user = await self._get_user(discord_id)
        return profile_from_user(user) if user is not None else None

    # -- RoleNotificationSink ------------------------------------------------
    async def assign_role(self, discord_id: str, role_id: str) -> None:
        guild = self.bot.get_guild(self.guild_id)
        if guild is None:
            raise LookupError(f"guild {self.guild_id} is not available")

        role = guild.get_role(int(role_id))
        if role is None:
            raise LookupError(f"role {role_id} not found in guild {guild.id}")

        member = guild.get_member(int(discord_id)) or await guild.fetch_member(
            int(discord_id)
        )
        if role in member.roles:
            return
        await member.add_roles(role, reason="Level up")
        logger.info("Assigned role %s to %s", role.name, discord_id)

    async def send_direct_notification(self, discord_id: str, text: str) -> bool:
        try:
            user = await self._get_user(discord_id)
            if user is None:
                return False
            await user.send(text)
        except discord.HTTPException as exc:
            logger.warning("Could not DM %s: %s", discord_id, exc)
            return False
        return True

    # -- status --------------------------------------------------------------
    def bot_status(self) -> dict[str, Any]:
        started_at = getattr(self.bot, "started_at", None)
        uptime = 0
        if started_at is not None:
            uptime = int((datetime.now(UTC) - started_at).total_seconds())
        return {
            "isReady": self.bot.is_ready(),
            "guildCount": len(self.bot.guilds),
            "userCount": len(self.bot.users),
            "uptime": uptime,
        }
