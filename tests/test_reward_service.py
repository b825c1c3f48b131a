"""
tests/test_reward_service.py — Reward Service Integration Tests
================================================================
Service-level tests for the dedup guard, the atomic ledger and the daily
comment cap, against an in-memory SQLite database.
"""

from __future__ import annotations

import random
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from conftest import make_profile
from tally.constants import PROMOTION_CUTOFF
from tally.database.engine import get_session
from tally.database.models import ActivityEvent, RewardHistory, RewardType, User
from tally.engine.events import ActivityItem, EventType
from tally.services import reward_service
from tally.services.reward_service import IngestStatus

NOW = datetime(2025, 8, 1, 12, 0, tzinfo=UTC)
BEFORE = PROMOTION_CUTOFF - timedelta(hours=1)
AFTER = PROMOTION_CUTOFF + timedelta(hours=1)


def _item(
    external_id: str = "m-1",
    event_type: EventType = EventType.MESSAGE,
    channel_id: str = "500",
    created_at: datetime = AFTER,
    discord_id: str = "1000",
) -> ActivityItem:
    return ActivityItem(
        external_id=external_id,
        event_type=event_type,
        channel_id=channel_id,
        author=make_profile(discord_id),
        content=f"content of {external_id}",
        created_at=created_at,
    )


def _process(engine, item, cap=5, now=NOW):
    return reward_service.process_activity(engine, item, daily_comment_cap=cap, now=now)


def _balance_and_ledger(engine, discord_id: str = "1000") -> tuple[int, int]:
    with Session(engine) as session:
        user = session.scalar(select(User).where(User.discord_id == discord_id))
        ledger = session.scalar(
            select(func.coalesce(func.sum(RewardHistory.amount), 0))
            .where(RewardHistory.user_id == user.id)
        )
        return user.current_reward, ledger


# ===========================================================================
# Scenarios
# ===========================================================================
class TestProcessActivity:
    def test_message_after_cutoff(self, seeded_engine):
        result = _process(seeded_engine, _item(created_at=AFTER))

        assert result.status is IngestStatus.GRANTED
        assert result.granted == 1
        with Session(seeded_engine) as session:
            row = session.scalar(select(RewardHistory))
            assert row.reason == "message activity reward"
            assert row.type == "message"
            assert row.event_id == result.event_id
        assert _balance_and_ledger(seeded_engine) == (1, 1)

    def test_message_before_cutoff_doubled(self, seeded_engine):
        result = _process(seeded_engine, _item(created_at=BEFORE))

        assert result.granted == 2
        with Session(seeded_engine) as session:
            row = session.scalar(select(RewardHistory))
            assert row.reason.endswith("(2x applied)")

    def test_event_keeps_source_timestamp(self, seeded_engine):
        _process(seeded_engine, _item(created_at=BEFORE))
        with Session(seeded_engine) as session:
            event = session.scalar(select(ActivityEvent))
            assert event.created_at.replace(tzinfo=UTC) == BEFORE
            assert event.processed is True

    def test_duplicate_is_not_rewarded_twice(self, seeded_engine):
        first = _process(seeded_engine, _item("m-dup"))
        second = _process(seeded_engine, _item("m-dup"))

        assert first.status is IngestStatus.GRANTED
        assert second.status is IngestStatus.DUPLICATE
        assert _balance_and_ledger(seeded_engine) == (1, 1)
        with Session(seeded_engine) as session:
            assert session.scalar(select(func.count(ActivityEvent.id))) == 1

    def test_unknown_channel_records_event_without_reward(self, seeded_engine):
        result = _process(seeded_engine, _item(channel_id="999"))

        assert result.status is IngestStatus.NOT_REWARDABLE
        with Session(seeded_engine) as session:
            assert session.scalar(select(func.count(RewardHistory.id))) == 0
            event = session.scalar(select(ActivityEvent))
            assert event.processed is True
        assert _balance_and_ledger(seeded_engine) == (0, 0)

    def test_inactive_channel_pays_nothing(self, seeded_engine):
        from tally.services.channel_service import set_rewardable_channel

        set_rewardable_channel(seeded_engine, "500", message_reward=1, is_active=False)
        result = _process(seeded_engine, _item())
        assert result.status is IngestStatus.NOT_REWARDABLE

    def test_zero_amount_channel_writes_no_ledger_row(self, seeded_engine):
        # Channel 600 pays 0 for plain messages.
        result = _process(seeded_engine, _item(channel_id="600"))
        assert result.status is IngestStatus.NOT_REWARDABLE
        assert result.granted == 0
        assert _balance_and_ledger(seeded_engine) == (0, 0)

    def test_profile_refreshed_on_activity(self, seeded_engine):
        _process(seeded_engine, _item("m-1"))
        item = ActivityItem(
            external_id="m-2",
            event_type=EventType.MESSAGE,
            channel_id="500",
            author=make_profile("1000", username="alice_renamed", global_name="Alice"),
            content="hi",
            created_at=AFTER,
        )
        _process(seeded_engine, item)
        with Session(seeded_engine) as session:
            user = session.scalar(select(User))
            assert user.username == "alice_renamed"
            assert user.display_name == "Alice"


# ===========================================================================
# Daily comment cap
# ===========================================================================
class TestDailyCommentCap:
    def test_comments_clamped_then_capped(self, seeded_engine):
        # Channel 500 pays 2 per comment; cap 5 → 2, 2, 1, then nothing.
        amounts = []
        statuses = []
        for i in range(4):
            result = _process(
                seeded_engine, _item(f"c-{i}", EventType.COMMENT, created_at=AFTER)
            )
            amounts.append(result.granted)
            statuses.append(result.status)

        assert amounts == [2, 2, 1, 0]
        assert statuses[-1] is IngestStatus.CAPPED
        assert _balance_and_ledger(seeded_engine) == (5, 5)

    def test_promotion_applies_before_cap(self, seeded_engine):
        # Forum channel 600 pays 5 per comment; doubled to 10, clamped to 5.
        result = _process(
            seeded_engine, _item("c-1", EventType.COMMENT, channel_id="600", created_at=BEFORE)
        )
        assert result.plan.nominal == 10
        assert result.granted == 5

    def test_cap_resets_next_utc_day(self, seeded_engine):
        for i in range(3):
            _process(seeded_engine, _item(f"c-{i}", EventType.COMMENT))
        tomorrow = NOW + timedelta(days=1)
        result = _process(seeded_engine, _item("c-next", EventType.COMMENT), now=tomorrow)
        assert result.granted == 2

    def test_messages_do_not_count_toward_cap(self, seeded_engine):
        for i in range(10):
            _process(seeded_engine, _item(f"m-{i}"))
        result = _process(seeded_engine, _item("c-1", EventType.COMMENT))
        assert result.granted == 2

    def test_cap_is_configurable(self, seeded_engine):
        amounts = [
            _process(seeded_engine, _item(f"c-{i}", EventType.COMMENT), cap=15).granted
            for i in range(9)
        ]
        assert sum(amounts) == 15


# ===========================================================================
# Dedup guard
# ===========================================================================
class TestDedupGuard:
    def test_event_exists(self, seeded_engine):
        assert not reward_service.event_exists(seeded_engine, "m-1")
        _process(seeded_engine, _item("m-1"))
        assert reward_service.event_exists(seeded_engine, "m-1")

    def test_unique_index_is_authoritative(self, seeded_engine, monkeypatch):
        """A racing insert that slipped past the read check is still a duplicate."""
        _process(seeded_engine, _item("m-race"))
        monkeypatch.setattr(reward_service, "_event_exists", lambda session, ext: False)

        result = _process(seeded_engine, _item("m-race"))

        assert result.status is IngestStatus.DUPLICATE
        assert _balance_and_ledger(seeded_engine) == (1, 1)


# ===========================================================================
# Ledger
# ===========================================================================
class TestLedger:
    def _user_id(self, engine) -> int:
        with get_session(engine) as session:
            return reward_service.find_or_create_user(session, make_profile()).id

    def test_grant_rejects_non_positive(self, seeded_engine):
        user_id = self._user_id(seeded_engine)
        with get_session(seeded_engine) as session:
            with pytest.raises(ValueError):
                reward_service.grant(session, user_id, 0, RewardType.MANUAL, "nothing")

    def test_grant_unknown_user(self, seeded_engine):
        with pytest.raises(LookupError):
            with get_session(seeded_engine) as session:
                reward_service.grant(session, 12345, 5, RewardType.MANUAL, "x")

    def test_failed_transaction_rolls_back_both_sides(self, seeded_engine):
        user_id = self._user_id(seeded_engine)
        with pytest.raises(RuntimeError):
            with get_session(seeded_engine) as session:
                reward_service.grant(session, user_id, 10, RewardType.MANUAL, "boom")
                raise RuntimeError("crash after grant")
        assert _balance_and_ledger(seeded_engine) == (0, 0)

    def test_grants_accumulate_in_one_transaction(self, seeded_engine):
        user_id = self._user_id(seeded_engine)
        with get_session(seeded_engine) as session:
            reward_service.grant(session, user_id, 3, RewardType.MANUAL, "a")
            reward_service.grant(session, user_id, 4, RewardType.MANUAL, "b")
        assert _balance_and_ledger(seeded_engine) == (7, 7)

    def test_award_manual(self, seeded_engine):
        user = reward_service.award_manual(
            seeded_engine, make_profile(), amount=25, reason="Great talk", admin_id="42"
        )
        assert user.current_reward == 25
        with Session(seeded_engine) as session:
            row = session.scalar(select(RewardHistory))
            assert row.type == "manual"
            assert "Great talk" in row.reason
            assert row.event_id is None


# ===========================================================================
# Daily bonus
# ===========================================================================
class TestDailyBonus:
    def test_claim_once_per_kst_day(self, seeded_engine):
        first = reward_service.claim_daily_bonus(
            seeded_engine, make_profile(), now=NOW, rng=random.Random(1)
        )
        second = reward_service.claim_daily_bonus(
            seeded_engine, make_profile(), now=NOW + timedelta(hours=2)
        )

        assert first.claimed
        assert first.amount in (1, 2, 3, 5, 10)
        assert first.total_reward == first.amount
        assert not second.claimed
        assert second.hours_remaining > 0
        assert _balance_and_ledger(seeded_engine) == (first.amount, first.amount)

    def test_claim_again_after_kst_midnight(self, seeded_engine):
        # 12:00 UTC is 21:00 KST; 15:00 UTC is the next KST day.
        reward_service.claim_daily_bonus(seeded_engine, make_profile(), now=NOW)
        later = reward_service.claim_daily_bonus(
            seeded_engine, make_profile(), now=NOW + timedelta(hours=3)
        )
        assert later.claimed
        with Session(seeded_engine) as session:
            types = session.scalars(select(RewardHistory.type)).all()
            assert types == ["daily_bonus", "daily_bonus"]
