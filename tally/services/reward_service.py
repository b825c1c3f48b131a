"""
tally.services.reward_service — Event Persistence & Point Ledger
=================================================================

Shared service module called by the bot cogs, the migration orchestrator
and the admin commands.  Everything here is synchronous SQLAlchemy; async
callers go through :func:`tally.database.engine.run_db`.

Two guarantees live in this file:

* **Dedup guard** — an :class:`ActivityEvent` is created at most once per
  external (Discord) ID.  A cheap read skips known items early; the unique
  index on ``activity_events.external_id`` is the final word, caught as
  ``IntegrityError`` inside a SAVEPOINT.
* **Atomic grant** — the balance increment and the ledger row are written
  in the same transaction, so they commit or roll back together.
"""

from __future__ import annotations

import enum
import logging
import random
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tally.database.engine import get_session
from tally.database.models import (
    ActivityEvent,
    EventType,
    RewardableChannel,
    RewardHistory,
    RewardType,
    User,
)
from tally.engine.reward import (
    GrantPlan,
    daily_bonus_status,
    day_bounds,
    is_rewardable,
    plan_grant,
    roll_daily_bonus,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from tally.engine.events import ActivityItem, AuthorProfile

logger = logging.getLogger(__name__)


class IngestStatus(enum.StrEnum):
    """How far one activity item got through the pipeline."""
    DUPLICATE = "duplicate"
    NOT_REWARDABLE = "not_rewardable"
    CAPPED = "capped"
    GRANTED = "granted"


@dataclass(slots=True)
class ProcessResult:
    """Outcome of :func:`process_activity` (one DB transaction)."""

    status: IngestStatus
    discord_id: str
    user_id: int | None = None
    event_id: int | None = None
    plan: GrantPlan | None = None

    @property
    def granted(self) -> int:
        if self.status is IngestStatus.GRANTED and self.plan is not None:
            return self.plan.amount
        return 0


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
def find_or_create_user(session: Session, profile: AuthorProfile) -> User:
    """Fetch or insert the User row for *profile*, refreshing its profile."""
    user = session.scalar(select(User).where(User.discord_id == profile.discord_id))
    if user is None:
        user = User(
            discord_id=profile.discord_id,
            username=profile.username,
            global_name=profile.global_name,
            discriminator=profile.discriminator,
            avatar_url=profile.avatar_url,
            current_reward=0,
            current_level=1,
        )
        session.add(user)
        session.flush()
        logger.info("New user: %s (%s)", profile.username, profile.discord_id)
    else:
        user.username = profile.username
        user.global_name = profile.global_name
        user.discriminator = profile.discriminator
        user.avatar_url = profile.avatar_url
    return user


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------
def get_rewardable_channel(session: Session, channel_id: str) -> RewardableChannel | None:
    return session.get(RewardableChannel, channel_id)


# ---------------------------------------------------------------------------
# Dedup guard
# ---------------------------------------------------------------------------
def event_exists(engine: Engine, external_id: str) -> bool:
    """Read-only check used by the migration loop to skip known items early."""
    with Session(engine) as session:
        return _event_exists(session, external_id)


def _event_exists(session: Session, external_id: str) -> bool:
    return session.scalar(
        select(ActivityEvent.id).where(ActivityEvent.external_id == external_id)
    ) is not None


def record_activity(
    session: Session, user: User, item: ActivityItem
) -> ActivityEvent | None:
    """Insert the ActivityEvent for *item*, or return ``None`` if it exists.

    The insert runs inside a SAVEPOINT: if a concurrent flow inserted the
    same external ID between our read and our write, the unique index
    raises, the SAVEPOINT rolls back, and the outer transaction stays alive.
    """
    if _event_exists(session, item.external_id):
        return None

    event = ActivityEvent(
        user_id=user.id,
        event_type=item.event_type.value,
        channel_id=item.channel_id,
        external_id=item.external_id,
        content=item.content,
        created_at=item.created_at,
        processed=False,
    )
    try:
        with session.begin_nested():
            session.add(event)
            session.flush()
    except IntegrityError:
        logger.info(
            "Event %s was recorded concurrently — treating as duplicate",
            item.external_id,
        )
        return None
    return event


# ---------------------------------------------------------------------------
# Daily cap tracker
# ---------------------------------------------------------------------------
def daily_comment_total(
    session: Session, user_id: int, now: datetime | None = None
) -> int:
    """Sum of today's (UTC) ``comment`` ledger rows for *user_id*."""
    start, end = day_bounds(now or datetime.now(UTC))
    total = session.scalar(
        select(func.coalesce(func.sum(RewardHistory.amount), 0)).where(
            RewardHistory.user_id == user_id,
            RewardHistory.type == RewardType.COMMENT.value,
            RewardHistory.created_at >= start,
            RewardHistory.created_at < end,
        )
    )
    return int(total or 0)


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------
def grant(
    session: Session,
    user_id: int,
    amount: int,
    reward_type: RewardType | str,
    reason: str,
    event_id: int | None = None,
    *,
    now: datetime | None = None,
) -> RewardHistory:
    """Increment the balance and append the ledger row in *session*'s
    transaction.  The caller owns commit / rollback.

    Raises
    ------
    ValueError
        If *amount* is not positive.
    LookupError
        If *user_id* doesn't exist.
    """
    if amount <= 0:
        raise ValueError(f"grant amount must be positive, got {amount}")

    new_total = session.execute(
        update(User)
        .where(User.id == user_id)
        .values(current_reward=User.current_reward + amount)
        .returning(User.current_reward)
    ).scalar_one_or_none()
    if new_total is None:
        raise LookupError(f"user {user_id} not found")

    row = RewardHistory(
        user_id=user_id,
        amount=amount,
        type=str(reward_type),
        reason=reason,
        event_id=event_id,
        created_at=now or datetime.now(UTC),
    )
    session.add(row)
    session.flush()
    return row


def process_activity(
    engine: Engine,
    item: ActivityItem,
    *,
    daily_comment_cap: int,
    now: datetime | None = None,
) -> ProcessResult:
    """Run one activity item through dedup → event → policy → cap → grant.

    Everything happens in one transaction.  The promotion rule sees the
    item's own ``created_at``; the daily cap sees *now* (wall clock), since
    ledger rows are stamped with insertion time.
    """
    now = now or datetime.now(UTC)
    discord_id = item.author.discord_id

    with get_session(engine) as session:
        if _event_exists(session, item.external_id):
            logger.debug("Skipping already-recorded item %s", item.external_id)
            return ProcessResult(IngestStatus.DUPLICATE, discord_id)

        user = find_or_create_user(session, item.author)
        event = record_activity(session, user, item)
        if event is None:
            return ProcessResult(IngestStatus.DUPLICATE, discord_id, user_id=user.id)

        result = ProcessResult(
            IngestStatus.NOT_REWARDABLE, discord_id, user_id=user.id, event_id=event.id
        )
        channel = get_rewardable_channel(session, item.channel_id)
        if not is_rewardable(channel):
            logger.debug("Channel %s is not rewardable", item.channel_id)
            event.processed = True
            return result

        comment_total = 0
        if item.event_type == EventType.COMMENT:
            comment_total = daily_comment_total(session, user.id, now)

        plan = plan_grant(
            channel,
            item.event_type,
            item.created_at,
            comment_total_today=comment_total,
            daily_comment_cap=daily_comment_cap,
        )
        result.plan = plan
        event.processed = True

        if plan.amount <= 0:
            if plan.capped:
                logger.debug(
                    "Daily comment cap reached for %s (%d/%d)",
                    discord_id, comment_total, daily_comment_cap,
                )
                result.status = IngestStatus.CAPPED
            return result

        grant(
            session,
            user.id,
            plan.amount,
            RewardType(item.event_type.value),
            plan.reason,
            event.id,
            now=now,
        )
        result.status = IngestStatus.GRANTED

    logger.info(
        "Reward granted: %s +%d (%s%s)",
        discord_id,
        plan.amount,
        item.event_type.value,
        ", 2x" if plan.promoted else "",
    )
    return result


# ---------------------------------------------------------------------------
# Out-of-band grants
# ---------------------------------------------------------------------------
def award_manual(
    engine: Engine,
    profile: AuthorProfile,
    *,
    amount: int,
    reason: str,
    admin_id: str,
) -> User:
    """Grant *amount* points of type ``manual`` (admin command)."""
    with get_session(engine) as session:
        user = find_or_create_user(session, profile)
        grant(
            session,
            user.id,
            amount,
            RewardType.MANUAL,
            f"{reason} (by {admin_id})",
        )
        session.refresh(user)
        session.expunge(user)

    logger.info("Manual award: %s +%d by %s", profile.discord_id, amount, admin_id)
    return user


@dataclass(frozen=True, slots=True)
class DailyBonusResult:
    claimed: bool
    user_id: int | None = None
    amount: int = 0
    total_reward: int = 0
    hours_remaining: int = 0


def claim_daily_bonus(
    engine: Engine,
    profile: AuthorProfile,
    *,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> DailyBonusResult:
    """Grant the once-per-KST-day bonus if the user hasn't claimed it yet."""
    now = now or datetime.now(UTC)
    with get_session(engine) as session:
        user = find_or_create_user(session, profile)
        allowed, hours_left = daily_bonus_status(user.last_daily_bonus, now)
        if not allowed:
            return DailyBonusResult(
                claimed=False,
                user_id=user.id,
                total_reward=user.current_reward,
                hours_remaining=hours_left,
            )

        amount = roll_daily_bonus(rng)
        user.last_daily_bonus = now
        grant(
            session,
            user.id,
            amount,
            RewardType.DAILY_BONUS,
            "daily bonus",
            now=now,
        )
        session.refresh(user)
        user_id = user.id
        total = user.current_reward

    logger.info("Daily bonus: %s +%d", profile.discord_id, amount)
    return DailyBonusResult(
        claimed=True, user_id=user_id, amount=amount, total_reward=total
    )
