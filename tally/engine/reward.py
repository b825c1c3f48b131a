"""
tally.engine.reward — Reward Calculation Pipeline
==================================================

Pure calculation pipeline.  No Discord I/O, no DB I/O inside the engine:
the reward service loads the channel config and the day's comment total,
hands them in, and persists whatever :class:`GrantPlan` comes back.

Pipeline stages:
  ActivityItem → Channel Policy → Promotion (×2 before cutoff)
               → Daily Cap (comments only) → GrantPlan
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from tally.constants import (
    DAILY_BONUS_TIERS,
    KST,
    PROMOTION_CUTOFF,
    PROMOTION_MARKER,
    PROMOTION_MULTIPLIER,
)
from tally.database.models import EventType

if TYPE_CHECKING:
    from tally.database.models import RewardableChannel

__all__ = [
    "GrantPlan",
    "apply_daily_cap",
    "base_reward",
    "build_reason",
    "daily_bonus_status",
    "day_bounds",
    "is_rewardable",
    "plan_grant",
    "promotion_multiplier",
    "roll_daily_bonus",
]


# ---------------------------------------------------------------------------
# GrantPlan — output of the pipeline
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class GrantPlan:
    """What the ledger should write for one event.

    ``amount == 0`` means "do not write"; ``capped`` tells apart a comment
    that hit the daily cap from a channel that simply pays nothing.
    """

    event_type: EventType
    base: int
    multiplier: int
    nominal: int
    amount: int
    reason: str
    capped: bool = False

    @property
    def promoted(self) -> bool:
        return self.multiplier > 1


# ---------------------------------------------------------------------------
# Stage 1: Channel reward policy
# ---------------------------------------------------------------------------
def is_rewardable(channel: RewardableChannel | None) -> bool:
    """A channel pays out only when it is configured and active."""
    return channel is not None and bool(channel.is_active)


def base_reward(channel: RewardableChannel, event_type: str) -> int:
    """Base amount the channel pays for *event_type*.  Unknown types pay 0."""
    match event_type:
        case EventType.MESSAGE:
            amount = channel.message_reward_amount
        case EventType.COMMENT:
            amount = channel.comment_reward_amount
        case EventType.FORUM_POST:
            amount = channel.forum_post_reward_amount
        case _:
            return 0
    return max(amount or 0, 0)


# ---------------------------------------------------------------------------
# Stage 2: Temporal promotion
# ---------------------------------------------------------------------------
def _as_utc(ts: datetime) -> datetime:
    return ts.replace(tzinfo=UTC) if ts.tzinfo is None else ts


def promotion_multiplier(created_at: datetime) -> int:
    """×2 strictly before :data:`PROMOTION_CUTOFF`, ×1 at or after it."""
    if _as_utc(created_at) < PROMOTION_CUTOFF:
        return PROMOTION_MULTIPLIER
    return 1


def build_reason(event_type: str, multiplier: int) -> str:
    reason = f"{event_type} activity reward"
    if multiplier > 1:
        reason = f"{reason} {PROMOTION_MARKER}"
    return reason


# ---------------------------------------------------------------------------
# Stage 3: Daily cap (comments)
# ---------------------------------------------------------------------------
def day_bounds(now: datetime) -> tuple[datetime, datetime]:
    """``[00:00Z, next 00:00Z)`` of the UTC calendar day containing *now*."""
    start = _as_utc(now).astimezone(UTC).replace(
        hour=0, minute=0, second=0, microsecond=0
    )
    return start, start + timedelta(days=1)


def apply_daily_cap(nominal: int, already_granted: int, cap: int) -> int:
    """Clamp *nominal* to the headroom left under *cap* (never negative)."""
    if already_granted >= cap:
        return 0
    return min(nominal, cap - already_granted)


# ---------------------------------------------------------------------------
# Full calculation
# ---------------------------------------------------------------------------
def plan_grant(
    channel: RewardableChannel,
    event_type: EventType,
    created_at: datetime,
    *,
    comment_total_today: int = 0,
    daily_comment_cap: int,
) -> GrantPlan:
    """Run the pure pipeline for one event on an already-rewardable channel.

    The promotion multiplier is applied before the cap, so a doubled comment
    can still never push the day's comment total past *daily_comment_cap*.
    """
    base = base_reward(channel, event_type)
    multiplier = promotion_multiplier(created_at)
    nominal = base * multiplier
    amount = nominal
    capped = False

    if event_type == EventType.COMMENT and nominal > 0:
        amount = apply_daily_cap(nominal, comment_total_today, daily_comment_cap)
        capped = amount < nominal

    return GrantPlan(
        event_type=event_type,
        base=base,
        multiplier=multiplier,
        nominal=nominal,
        amount=amount,
        reason=build_reason(event_type.value, multiplier),
        capped=capped,
    )


# ---------------------------------------------------------------------------
# Daily bonus (KST calendar days)
# ---------------------------------------------------------------------------
def daily_bonus_status(
    last_claim: datetime | None, now: datetime
) -> tuple[bool, int]:
    """Return ``(allowed, hours_until_next_kst_midnight)``.

    A claim is allowed once per KST calendar day.  The hour count is rounded
    up and only meaningful when the claim is refused.
    """
    now_kst = _as_utc(now).astimezone(KST)
    next_midnight = (now_kst + timedelta(days=1)).replace(
        hour=0, minute=0, second=0, microsecond=0
    )
    hours_left = math.ceil((next_midnight - now_kst).total_seconds() / 3600)

    if last_claim is None:
        return True, hours_left
    last_kst = _as_utc(last_claim).astimezone(KST)
    return last_kst.date() != now_kst.date(), hours_left


def roll_daily_bonus(rng: random.Random | None = None) -> int:
    """Pick a bonus amount from :data:`DAILY_BONUS_TIERS` by weight."""
    rng = rng or random.Random()
    amounts = list(DAILY_BONUS_TIERS)
    weights = [DAILY_BONUS_TIERS[a][0] for a in amounts]
    return rng.choices(amounts, weights=weights, k=1)[0]
