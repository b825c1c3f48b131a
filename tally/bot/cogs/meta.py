"""
tally.bot.cogs.meta — Member Commands
=====================================

Hybrid commands for member self-service:
- /level   — level, points and progress to the next level
- /levels  — the level ladder with thresholds and roles
- /top     — top 5 members by points
- /history — your last 5 ledger entries
- /daily   — once-per-day random bonus (KST calendar day)

Replies are plain text.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from tally.constants import (
    DAILY_BONUS_TIERS,
    RANK_BADGES,
    format_time_ago,
    reward_type_emoji,
    truncate_content,
)
from tally.database.engine import run_db
from tally.services.activity_service import after_grant
from tally.services.discord_gateway import profile_from_user
from tally.services.level_service import get_ladder
from tally.services.reward_service import claim_daily_bonus
from tally.services.user_service import (
    get_leaderboard,
    get_reward_history,
    get_user_data,
    get_user_ranking,
)

if TYPE_CHECKING:
    from tally.bot.core import TallyBot

logger = logging.getLogger(__name__)


class Meta(commands.Cog, name="Meta"):
    """Levels, leaderboard, history and the daily bonus."""

    def __init__(self, bot: TallyBot) -> None:
        self.bot = bot

    # -------------------------------------------------------------------
    # /level
    # -------------------------------------------------------------------
    @commands.hybrid_command(  # type: ignore[arg-type]
        name="level",
        description="Show your (or another member's) level and points.",
    )
    @app_commands.describe(member="The member to look up (defaults to you)")
    async def level(self, ctx: commands.Context, member: discord.Member | None = None) -> None:
        target = member or ctx.author
        data = await run_db(get_user_data, self.bot.engine, str(target.id))
        if data is None:
            await ctx.send(
                f"\U0001f50d **{target.display_name}** hasn't earned any points yet.",
                ephemeral=True,
            )
            return

        ranking = await run_db(get_user_ranking, self.bot.engine, str(target.id))
        lines = [
            f"\U0001f4ca **{target.display_name}**",
            f"Level {data['level']}"
            + (f" ({data['level_name']})" if data["level_name"] else ""),
            f"Points: {data['total_reward']:,}",
        ]
        if data["next_level_reward"] > data["current_level_reward"]:
            lines.append(
                f"Next level in {data['to_next_level']:,} points "
                f"({data['progress_percentage']:.1f}%)"
            )
        else:
            lines.append("Top level reached \U0001f3c6")
        if ranking:
            lines.append(f"Rank: #{ranking['rank']} of {ranking['total_users']}")
        await ctx.send("\n".join(lines))

    # -------------------------------------------------------------------
    # /levels
    # -------------------------------------------------------------------
    @commands.hybrid_command(  # type: ignore[arg-type]
        name="levels",
        description="List every level, its point threshold and role.",
    )
    async def levels(self, ctx: commands.Context) -> None:
        ladder = await run_db(get_ladder, self.bot.engine)
        if not ladder:
            await ctx.send("No levels are configured yet.", ephemeral=True)
            return

        lines = ["\U0001fa9c **Levels**"]
        for rung in ladder:
            line = f"Lv. {rung['level']} **{rung['name']}** — {rung['required_reward']:,} pts"
            if rung["role_name"]:
                line += f" · @{rung['role_name']}"
            lines.append(line)
        await ctx.send("\n".join(lines), ephemeral=True)

    # -------------------------------------------------------------------
    # /top
    # -------------------------------------------------------------------
    @commands.hybrid_command(  # type: ignore[arg-type]
        name="top",
        description="View the top 5 members by points.",
    )
    async def top(self, ctx: commands.Context) -> None:
        rows = await run_db(get_leaderboard, self.bot.engine, 5)
        if not rows:
            await ctx.send(
                "No data yet! Start chatting to appear on the leaderboard.",
                ephemeral=True,
            )
            return

        lines = [f"\U0001f3c6 **{self.bot.cfg.community_name} — Top {len(rows)}**"]
        for i, r in enumerate(rows, 1):
            medal = RANK_BADGES[i - 1] if i <= len(RANK_BADGES) else f"**{i}.**"
            lines.append(f"{medal} **{r['name']}** — {r['total_reward']:,} pts (Lv. {r['level']})")
        await ctx.send("\n".join(lines))

    # -------------------------------------------------------------------
    # /history
    # -------------------------------------------------------------------
    @commands.hybrid_command(  # type: ignore[arg-type]
        name="history",
        description="Show your last 5 point rewards.",
    )
    async def history(self, ctx: commands.Context) -> None:
        rows = await run_db(get_reward_history, self.bot.engine, str(ctx.author.id), 5)
        if not rows:
            await ctx.send("You have no rewards yet.", ephemeral=True)
            return

        lines = ["\U0001f4dc **Recent rewards**"]
        for r in rows:
            line = (
                f"{reward_type_emoji(r['type'])} +{r['amount']} — {r['reason']} "
                f"({format_time_ago(r['created_at'])})"
            )
            if r["content"] is not None:
                line += f"\n    └ {truncate_content(r['content'])}"
            lines.append(line)
        await ctx.send("\n".join(lines), ephemeral=True)

    # -------------------------------------------------------------------
    # /daily
    # -------------------------------------------------------------------
    @commands.hybrid_command(  # type: ignore[arg-type]
        name="daily",
        description="Claim your daily bonus (resets at midnight KST).",
    )
    async def daily(self, ctx: commands.Context) -> None:
        profile = profile_from_user(ctx.author)
        result = await run_db(claim_daily_bonus, self.bot.engine, profile)

        if not result.claimed:
            await ctx.send(
                f"⏳ You already claimed today's bonus. "
                f"Come back in about {result.hours_remaining}h.",
                ephemeral=True,
            )
            return

        _, emoji, rarity = DAILY_BONUS_TIERS[result.amount]
        await ctx.send(
            f"{emoji} **{ctx.author.display_name}** claimed a {rarity} daily bonus: "
            f"+{result.amount} points! (total {result.total_reward:,})"
        )

        await after_grant(self.bot.engine, self.bot.gateway, result.user_id)


async def setup(bot: TallyBot) -> None:
    await bot.add_cog(Meta(bot))
