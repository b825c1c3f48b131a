"""
tally.services.user_service — Profile, Ranking & Leaderboard Queries
====================================================================

Read-only queries behind ``/level``, ``/top`` and ``/history``.  Results
are plain dicts so they can cross the ``run_db`` thread boundary without
detached-instance surprises.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import func, select

from tally.database.engine import get_session
from tally.database.models import ActivityEvent, Level, RewardHistory, User
from tally.engine.levels import calculate_progress

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


def get_user_data(engine: Engine, discord_id: str) -> dict | None:
    """Balance, level and progress towards the next level, or ``None``."""
    with get_session(engine) as session:
        user = session.scalar(select(User).where(User.discord_id == discord_id))
        if user is None:
            return None

        ladder = list(session.scalars(select(Level).order_by(Level.level_number)))
        progress = calculate_progress(ladder, user.current_reward, user.current_level)
        level = next((r for r in ladder if r.level_number == user.current_level), None)

        return {
            "discord_id": user.discord_id,
            "display_name": user.display_name,
            "total_reward": user.current_reward,
            "level": user.current_level,
            "level_name": level.level_name if level else None,
            "current_level_reward": progress.current_level_reward,
            "next_level_reward": progress.next_level_reward,
            "to_next_level": max(progress.next_level_reward - user.current_reward, 0),
            "progress_percentage": progress.progress_percentage,
        }


def get_user_ranking(engine: Engine, discord_id: str) -> dict | None:
    """``{rank, total_users, total_reward, percentile}`` for one member."""
    with get_session(engine) as session:
        user = session.scalar(select(User).where(User.discord_id == discord_id))
        if user is None:
            return None

        total: int = session.scalar(select(func.count(User.id))) or 0
        above: int = session.scalar(
            select(func.count(User.id)).where(User.current_reward > user.current_reward)
        ) or 0
        rank = above + 1
        percentile = round((total - rank + 1) / total * 100, 1) if total else 0.0

        return {
            "rank": rank,
            "total_users": total,
            "total_reward": user.current_reward,
            "percentile": percentile,
        }


def get_leaderboard(engine: Engine, limit: int = 5) -> list[dict]:
    with get_session(engine) as session:
        rows = session.scalars(
            select(User)
            .order_by(User.current_reward.desc(), User.current_level.desc(), User.id)
            .limit(limit)
        ).all()
        return [
            {
                "discord_id": u.discord_id,
                "name": u.display_name,
                "total_reward": u.current_reward,
                "level": u.current_level,
            }
            for u in rows
        ]


def get_reward_history(engine: Engine, discord_id: str, limit: int = 5) -> list[dict]:
    """Most recent ledger rows, newest first, with the event's content."""
    with get_session(engine) as session:
        rows = session.execute(
            select(RewardHistory, ActivityEvent.content)
            .join(User, User.id == RewardHistory.user_id)
            .outerjoin(ActivityEvent, ActivityEvent.id == RewardHistory.event_id)
            .where(User.discord_id == discord_id)
            .order_by(RewardHistory.created_at.desc(), RewardHistory.id.desc())
            .limit(limit)
        ).all()
        return [
            {
                "amount": r.amount,
                "type": r.type,
                "reason": r.reason,
                "content": content,
                "created_at": r.created_at,
            }
            for r, content in rows
        ]
