"""
tally.constants — Shared Constants & Helpers
=============================================

Single source of truth for the reward engine's fixed numbers and for the
small presentation helpers used by the slash commands.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

# ---------------------------------------------------------------------------
# Reward engine
# ---------------------------------------------------------------------------
# Events strictly before this instant earn double points.
# 2025-07-09 18:53 KST.
PROMOTION_CUTOFF = datetime(2025, 7, 9, 9, 53, 0, tzinfo=UTC)
PROMOTION_MULTIPLIER = 2
PROMOTION_MARKER = "(2x applied)"

# Max comment points per user per UTC day.  Two values have been used for
# this over time (5 and 15); operators pick one via config.yaml.
DEFAULT_DAILY_COMMENT_CAP = 5

# ---------------------------------------------------------------------------
# Migration
# ---------------------------------------------------------------------------
MESSAGE_PAGE_SIZE = 100            # Discord API max per history request
DEFAULT_MIGRATION_LIMIT = 1000
DEFAULT_FORUM_LIMIT = 100
THREAD_MESSAGE_LIMIT = 50          # Replies replayed per forum thread
DEFAULT_PAGE_DELAY_SECONDS = 1.0

# ---------------------------------------------------------------------------
# Daily bonus
# ---------------------------------------------------------------------------
KST = timezone(timedelta(hours=9))

# amount → (weight, emoji, rarity label)
DAILY_BONUS_TIERS: dict[int, tuple[int, str, str]] = {
    1: (50, "\U0001fa99", "common"),       # 🪙
    2: (25, "\U0001f4b0", "uncommon"),     # 💰
    3: (15, "\U0001f48e", "rare"),         # 💎
    5: (8, "\U0001f3c6", "epic"),          # 🏆
    10: (2, "\U0001f451", "legendary"),    # 👑
}

# ---------------------------------------------------------------------------
# Presentation
# ---------------------------------------------------------------------------
REWARD_TYPE_EMOJI: dict[str, str] = {
    "message": "\U0001f4ac",      # 💬
    "forum_post": "\U0001f4cb",   # 📋
    "comment": "\U0001f4ad",      # 💭
    "manual": "\U0001f381",       # 🎁
    "daily_bonus": "\U0001f4c5",  # 📅
}

RANK_BADGES: list[str] = ["\U0001f947", "\U0001f948", "\U0001f949"]  # 🥇🥈🥉


def reward_type_emoji(reward_type: str) -> str:
    return REWARD_TYPE_EMOJI.get(reward_type, "\U0001f381")


def truncate_content(content: str | None, max_length: int = 30) -> str:
    """Shorten *content* for one-line display, appending ``...`` if cut."""
    if not content:
        return "(no content)"
    if len(content) > max_length:
        return content[:max_length] + "..."
    return content


def format_time_ago(when: datetime, now: datetime | None = None) -> str:
    """Render *when* as ``"5m ago"``, ``"2h ago"`` or ``"3d ago"``."""
    now = now or datetime.now(UTC)
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    minutes = int((now - when).total_seconds() // 60)
    if minutes < 60:
        return f"{minutes}m ago"
    if minutes < 60 * 24:
        return f"{minutes // 60}h ago"
    return f"{minutes // (60 * 24)}d ago"
