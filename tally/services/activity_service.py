"""
tally.services.activity_service — Async Pipeline Glue
=====================================================

The single entry point shared by the live listeners and the migration
orchestrator: persist and price one :class:`ActivityItem`, then run the
level trigger once the grant has committed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from tally.database.engine import run_db
from tally.engine.reward import GrantPlan
from tally.services.level_service import (
    LevelUp,
    RoleNotificationSink,
    SideEffectReport,
    announce_level_up,
    check_level_up,
)
from tally.services.reward_service import IngestStatus, process_activity

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from tally.engine.events import ActivityItem

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class IngestOutcome:
    status: IngestStatus
    plan: GrantPlan | None = None
    level_up: LevelUp | None = None
    side_effects: SideEffectReport = field(default_factory=SideEffectReport)

    @property
    def granted(self) -> int:
        if self.status is IngestStatus.GRANTED and self.plan is not None:
            return self.plan.amount
        return 0


async def after_grant(
    engine: Engine, sink: RoleNotificationSink | None, user_id: int
) -> tuple[LevelUp | None, SideEffectReport]:
    """Level trigger for any committed grant (activity, manual, daily).

    Never raises: a failed recompute is logged and recorded in the report.
    """
    report = SideEffectReport()
    try:
        level_up = await run_db(check_level_up, engine, user_id)
    except Exception as exc:
        logger.exception("Level check failed for user %s", user_id)
        report.errors.append(f"check_level_up: {exc}")
        return None, report

    if level_up is not None and sink is not None:
        report = await announce_level_up(sink, level_up)
    return level_up, report


async def ingest_activity(
    engine: Engine,
    sink: RoleNotificationSink | None,
    item: ActivityItem,
    *,
    daily_comment_cap: int,
    now: datetime | None = None,
) -> IngestOutcome:
    """Run *item* through the reward pipeline.

    Raises whatever the ledger raises; side-effect failures only show up in
    ``outcome.side_effects``.
    """
    result = await run_db(
        process_activity,
        engine,
        item,
        daily_comment_cap=daily_comment_cap,
        now=now,
    )
    outcome = IngestOutcome(status=result.status, plan=result.plan)
    if result.status is IngestStatus.GRANTED and result.user_id is not None:
        outcome.level_up, outcome.side_effects = await after_grant(
            engine, sink, result.user_id
        )
    return outcome
