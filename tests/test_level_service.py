"""
tests/test_level_service.py — Level Trigger & Side Effects
==========================================================
"""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy import select
from sqlalchemy.orm import Session

from conftest import make_profile, run_async
from tally.database.engine import get_session
from tally.database.models import RewardType, User
from tally.engine.events import ActivityItem, EventType
from tally.services import activity_service, reward_service
from tally.services.activity_service import ingest_activity
from tally.services.level_service import (
    LevelUp,
    announce_level_up,
    check_level_up,
    get_ladder,
)
from tally.services.reward_service import IngestStatus

NOW = datetime(2025, 8, 1, 12, 0, tzinfo=UTC)


def _user_with_points(engine, points: int, level: int | None = None) -> int:
    with get_session(engine) as session:
        user = reward_service.find_or_create_user(session, make_profile())
        if points:
            reward_service.grant(session, user.id, points, RewardType.MANUAL, "setup")
        if level is not None:
            user.current_level = level
        return user.id


def _sink(*, assign_error: Exception | None = None, dm_ok: bool = True) -> MagicMock:
    sink = MagicMock()
    sink.assign_role = AsyncMock(side_effect=assign_error)
    sink.send_direct_notification = AsyncMock(return_value=dm_ok)
    return sink


# ===========================================================================
# Recompute
# ===========================================================================
class TestCheckLevelUp:
    def test_crossing_threshold_persists_new_level(self, seeded_engine):
        user_id = _user_with_points(seeded_engine, 60)

        level_up = check_level_up(seeded_engine, user_id)

        assert level_up == LevelUp(
            discord_id="1000",
            old_level=1,
            new_level=2,
            level_name="Regular",
            role_id="7001",
            role_name="Regular",
        )
        with Session(seeded_engine) as session:
            assert session.get(User, user_id).current_level == 2

    def test_second_check_is_a_no_op(self, seeded_engine):
        user_id = _user_with_points(seeded_engine, 60)
        check_level_up(seeded_engine, user_id)
        assert check_level_up(seeded_engine, user_id) is None

    def test_can_skip_levels(self, seeded_engine):
        user_id = _user_with_points(seeded_engine, 500)
        level_up = check_level_up(seeded_engine, user_id)
        assert level_up.new_level == 4
        assert level_up.role_id is None

    def test_level_never_decreases(self, seeded_engine):
        user_id = _user_with_points(seeded_engine, 60, level=4)
        assert check_level_up(seeded_engine, user_id) is None
        with Session(seeded_engine) as session:
            assert session.get(User, user_id).current_level == 4

    def test_unknown_user(self, seeded_engine):
        assert check_level_up(seeded_engine, 999) is None


class TestLadderQueries:
    def test_ladder_lowest_first_with_role_names(self, seeded_engine):
        ladder = get_ladder(seeded_engine)
        assert [r["level"] for r in ladder] == [1, 2, 3, 4, 5]
        assert ladder[1] == {
            "level": 2, "name": "Regular", "required_reward": 50, "role_name": "Regular",
        }
        assert ladder[0]["role_name"] is None


# ===========================================================================
# Side effects
# ===========================================================================
LEVEL_UP = LevelUp("1000", 1, 2, "Regular", role_id="7001", role_name="Regular")


class TestAnnounceLevelUp:
    def test_assigns_role_and_dms(self):
        sink = _sink()
        report = run_async(announce_level_up(sink, LEVEL_UP))

        sink.assign_role.assert_awaited_once_with("1000", "7001")
        text = sink.send_direct_notification.await_args.args[1]
        assert "level 2" in text
        assert "Regular" in text
        assert report.role_assigned and report.dm_sent and report.ok

    def test_role_failure_is_reported_not_raised(self):
        sink = _sink(assign_error=RuntimeError("missing permissions"))
        report = run_async(announce_level_up(sink, LEVEL_UP))

        assert not report.role_assigned
        assert report.dm_sent
        assert not report.ok
        assert "missing permissions" in report.errors[0]

    def test_closed_dms(self):
        report = run_async(announce_level_up(_sink(dm_ok=False), LEVEL_UP))
        assert report.role_assigned
        assert not report.dm_sent
        assert report.ok

    def test_no_role_bound_does_nothing(self):
        sink = _sink()
        report = run_async(announce_level_up(sink, LevelUp("1000", 3, 4, "Veteran")))
        sink.assign_role.assert_not_awaited()
        sink.send_direct_notification.assert_not_awaited()
        assert report.ok


# ===========================================================================
# Pipeline glue
# ===========================================================================
class TestIngestActivity:
    def _item(self, external_id="m-1"):
        return ActivityItem(
            external_id=external_id,
            event_type=EventType.MESSAGE,
            channel_id="500",
            author=make_profile(),
            content="hello",
            created_at=NOW,
        )

    def test_grant_that_crosses_threshold_triggers_role(self, seeded_engine):
        _user_with_points(seeded_engine, 49)
        sink = _sink()

        outcome = run_async(
            ingest_activity(seeded_engine, sink, self._item(), daily_comment_cap=5, now=NOW)
        )

        assert outcome.status is IngestStatus.GRANTED
        assert outcome.level_up is not None and outcome.level_up.new_level == 2
        assert outcome.side_effects.role_assigned
        sink.assign_role.assert_awaited_once()

    def test_side_effect_failure_keeps_the_grant(self, seeded_engine):
        _user_with_points(seeded_engine, 49)
        sink = _sink(assign_error=RuntimeError("gone"))

        outcome = run_async(
            ingest_activity(seeded_engine, sink, self._item(), daily_comment_cap=5, now=NOW)
        )

        assert outcome.granted == 1
        assert not outcome.side_effects.ok
        with Session(seeded_engine) as session:
            user = session.scalar(select(User))
            assert user.current_reward == 50
            assert user.current_level == 2

    def test_failed_level_check_keeps_the_grant(self, seeded_engine, monkeypatch):
        def locked(engine, user_id):
            raise RuntimeError("levels table locked")

        monkeypatch.setattr(activity_service, "check_level_up", locked)
        sink = _sink()

        outcome = run_async(
            ingest_activity(seeded_engine, sink, self._item(), daily_comment_cap=5, now=NOW)
        )

        assert outcome.status is IngestStatus.GRANTED
        assert outcome.granted == 1
        assert outcome.level_up is None
        assert not outcome.side_effects.ok
        assert "levels table locked" in outcome.side_effects.errors[0]
        sink.assign_role.assert_not_awaited()
        with Session(seeded_engine) as session:
            assert session.scalar(select(User)).current_reward == 1

    def test_duplicate_skips_level_trigger(self, seeded_engine):
        sink = _sink()
        run_async(ingest_activity(seeded_engine, sink, self._item(), daily_comment_cap=5))
        outcome = run_async(
            ingest_activity(seeded_engine, sink, self._item(), daily_comment_cap=5)
        )
        assert outcome.status is IngestStatus.DUPLICATE
        assert outcome.level_up is None
