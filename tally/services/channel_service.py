"""
tally.services.channel_service — Rewardable Channel Admin
=========================================================

Upsert and list the per-channel reward amounts, plus a small stats query
for the admin command.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import func, select

from tally.database.engine import get_session
from tally.database.models import ActivityEvent, RewardableChannel, RewardHistory

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


def set_rewardable_channel(
    engine: Engine,
    channel_id: str,
    *,
    channel_name: str | None = None,
    message_reward: int = 0,
    comment_reward: int = 0,
    forum_post_reward: int = 0,
    is_active: bool = True,
) -> RewardableChannel:
    """Create or replace the reward config for *channel_id*."""
    for value in (message_reward, comment_reward, forum_post_reward):
        if value < 0:
            raise ValueError("reward amounts must not be negative")

    with get_session(engine) as session:
        channel = session.get(RewardableChannel, channel_id)
        if channel is None:
            channel = RewardableChannel(channel_id=channel_id)
            session.add(channel)
        channel.channel_name = channel_name or channel.channel_name
        channel.message_reward_amount = message_reward
        channel.comment_reward_amount = comment_reward
        channel.forum_post_reward_amount = forum_post_reward
        channel.is_active = is_active
        session.flush()
        session.expunge(channel)

    logger.info(
        "Rewardable channel %s set: message=%d comment=%d forum_post=%d active=%s",
        channel_id, message_reward, comment_reward, forum_post_reward, is_active,
    )
    return channel


def get_rewardable_channels(engine: Engine, *, active_only: bool = True) -> list[RewardableChannel]:
    with get_session(engine) as session:
        stmt = select(RewardableChannel).order_by(RewardableChannel.channel_id)
        if active_only:
            stmt = stmt.where(RewardableChannel.is_active.is_(True))
        channels = list(session.scalars(stmt))
        for ch in channels:
            session.expunge(ch)
        return channels


def get_channel_reward_stats(engine: Engine, channel_id: str) -> dict:
    """Points granted for events in *channel_id*, by type, and distinct users."""
    with get_session(engine) as session:
        rows = session.execute(
            select(RewardHistory.type, func.sum(RewardHistory.amount), func.count())
            .join(ActivityEvent, ActivityEvent.id == RewardHistory.event_id)
            .where(ActivityEvent.channel_id == channel_id)
            .group_by(RewardHistory.type)
        ).all()
        users = session.scalar(
            select(func.count(func.distinct(RewardHistory.user_id)))
            .join(ActivityEvent, ActivityEvent.id == RewardHistory.event_id)
            .where(ActivityEvent.channel_id == channel_id)
        ) or 0

    by_type = {t: {"amount": int(amount or 0), "count": n} for t, amount, n in rows}
    return {
        "channel_id": channel_id,
        "total_amount": sum(v["amount"] for v in by_type.values()),
        "by_type": by_type,
        "unique_users": users,
    }
