"""
tally.bot.cogs.admin — Admin Slash Commands
===========================================

- /award          — manually grant points to a member
- /reward-channel — set the reward amounts for a channel
- /channel-stats  — points granted in a channel so far

All commands require the configured admin_role_id.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from tally.database.engine import run_db
from tally.services.activity_service import after_grant
from tally.services.channel_service import get_channel_reward_stats, set_rewardable_channel
from tally.services.discord_gateway import profile_from_user
from tally.services.reward_service import award_manual

if TYPE_CHECKING:
    from tally.bot.core import TallyBot

logger = logging.getLogger(__name__)


def is_admin():
    """Decorator that checks if the user has the configured admin role."""
    async def predicate(interaction: discord.Interaction) -> bool:
        bot: TallyBot = interaction.client  # type: ignore[assignment]
        if not interaction.user or not hasattr(interaction.user, "roles"):
            return False
        admin_role_id = bot.cfg.admin_role_id
        return any(role.id == admin_role_id for role in interaction.user.roles)
    return app_commands.check(predicate)


class Admin(commands.Cog, name="Admin"):
    """Server administration commands."""

    def __init__(self, bot: TallyBot) -> None:
        self.bot = bot

    # -------------------------------------------------------------------
    # /award
    # -------------------------------------------------------------------
    @app_commands.command(name="award", description="Award points to a member.")
    @app_commands.describe(
        member="The member to award",
        amount="Points to award",
        reason="Reason for the award",
    )
    @is_admin()
    async def award(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        amount: app_commands.Range[int, 1, 100_000],
        reason: str = "Manual admin award",
    ) -> None:
        user = await run_db(
            award_manual,
            self.bot.engine,
            profile_from_user(member),
            amount=amount,
            reason=reason,
            admin_id=str(interaction.user.id),
        )
        await interaction.response.send_message(
            f"✅ Awarded **{amount}** points to **{member.display_name}** "
            f"(total {user.current_reward:,}).\nReason: {reason}",
            ephemeral=True,
        )
        await after_grant(self.bot.engine, self.bot.gateway, user.id)

    # -------------------------------------------------------------------
    # /reward-channel
    # -------------------------------------------------------------------
    @app_commands.command(
        name="reward-channel",
        description="Set how many points a channel pays per activity.",
    )
    @app_commands.describe(
        channel="Text or forum channel",
        message="Points per message",
        comment="Points per thread reply",
        forum_post="Points per new forum post",
        active="Whether the channel pays out at all",
    )
    @is_admin()
    async def reward_channel(
        self,
        interaction: discord.Interaction,
        channel: discord.TextChannel | discord.ForumChannel,
        message: app_commands.Range[int, 0] = 0,
        comment: app_commands.Range[int, 0] = 0,
        forum_post: app_commands.Range[int, 0] = 0,
        active: bool = True,
    ) -> None:
        await run_db(
            set_rewardable_channel,
            self.bot.engine,
            str(channel.id),
            channel_name=channel.name,
            message_reward=message,
            comment_reward=comment,
            forum_post_reward=forum_post,
            is_active=active,
        )
        state = "active" if active else "inactive"
        await interaction.response.send_message(
            f"✅ {channel.mention} ({state}): message {message}, "
            f"comment {comment}, forum post {forum_post}",
            ephemeral=True,
        )

    # -------------------------------------------------------------------
    # /channel-stats
    # -------------------------------------------------------------------
    @app_commands.command(
        name="channel-stats",
        description="Show points granted for activity in a channel.",
    )
    @is_admin()
    async def channel_stats(
        self,
        interaction: discord.Interaction,
        channel: discord.TextChannel | discord.ForumChannel,
    ) -> None:
        stats = await run_db(get_channel_reward_stats, self.bot.engine, str(channel.id))
        lines = [
            f"\U0001f4c8 {channel.mention}: {stats['total_amount']:,} points "
            f"to {stats['unique_users']} members",
        ]
        for reward_type, row in sorted(stats["by_type"].items()):
            lines.append(f"• {reward_type}: {row['amount']:,} ({row['count']} grants)")
        await interaction.response.send_message("\n".join(lines), ephemeral=True)


async def setup(bot: TallyBot) -> None:
    await bot.add_cog(Admin(bot))
