"""
tally.services.level_service — Level Recompute & Role Side Effects
==================================================================

Runs after a grant has committed.  :func:`check_level_up` is the DB half
(recompute and persist, never downwards); :func:`announce_level_up` is the
Discord half (role + DM), which is best-effort: a failed role assignment or
a closed DM never undoes the points.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from sqlalchemy import select

from tally.database.engine import get_session
from tally.database.models import Level, User
from tally.engine.levels import level_for_total

if TYPE_CHECKING:
    from sqlalchemy import Engine
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class RoleNotificationSink(Protocol):
    """Where level-up side effects go.  Implemented on discord.py by
    :class:`tally.services.discord_gateway.DiscordGateway`."""

    async def assign_role(self, discord_id: str, role_id: str) -> None: ...

    async def send_direct_notification(self, discord_id: str, text: str) -> bool: ...


@dataclass(frozen=True, slots=True)
class LevelUp:
    discord_id: str
    old_level: int
    new_level: int
    level_name: str
    role_id: str | None = None
    role_name: str | None = None


@dataclass(slots=True)
class SideEffectReport:
    """What happened on the Discord side of a level-up."""

    role_assigned: bool = False
    dm_sent: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


# ---------------------------------------------------------------------------
# Ladder queries
# ---------------------------------------------------------------------------
def _load_ladder(session: Session) -> list[Level]:
    return list(session.scalars(select(Level).order_by(Level.level_number)))


def get_ladder(engine: Engine) -> list[dict]:
    """Every rung with its threshold and bound role name, lowest first."""
    with get_session(engine) as session:
        return [
            {
                "level": rung.level_number,
                "name": rung.level_name,
                "required_reward": rung.required_reward_amount,
                "role_name": rung.role.role_name if rung.role else None,
            }
            for rung in _load_ladder(session)
        ]


# ---------------------------------------------------------------------------
# Recompute
# ---------------------------------------------------------------------------
def check_level_up(engine: Engine, user_id: int) -> LevelUp | None:
    """Recompute the user's level from their balance.

    Persists and returns a :class:`LevelUp` only when the computed level is
    strictly greater than the stored one.
    """
    with get_session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            return None

        ladder = _load_ladder(session)
        new_level = level_for_total(ladder, user.current_reward)
        if new_level <= user.current_level:
            return None

        old_level = user.current_level
        user.current_level = new_level
        rung = next(r for r in ladder if r.level_number == new_level)
        role = rung.role
        level_up = LevelUp(
            discord_id=user.discord_id,
            old_level=old_level,
            new_level=new_level,
            level_name=rung.level_name,
            role_id=role.discord_role_id if role else None,
            role_name=role.role_name if role else None,
        )

    logger.info(
        "Level up: %s %d → %d (%s)",
        level_up.discord_id, old_level, new_level, level_up.level_name,
    )
    return level_up


# ---------------------------------------------------------------------------
# Side effects (best-effort)
# ---------------------------------------------------------------------------
def level_up_message(level_up: LevelUp) -> str:
    text = (
        f"\U0001f389 Congratulations! You reached level {level_up.new_level} "
        f"({level_up.level_name})"
    )
    if level_up.role_name:
        text += f" and earned the **{level_up.role_name}** role"
    return text + "!"


async def announce_level_up(
    sink: RoleNotificationSink, level_up: LevelUp
) -> SideEffectReport:
    """Assign the level's role (if bound) and DM the member.

    Never raises: every failure is logged and recorded in the report.
    """
    report = SideEffectReport()
    if level_up.role_id is None:
        return report

    try:
        await sink.assign_role(level_up.discord_id, level_up.role_id)
        report.role_assigned = True
    except Exception as exc:
        logger.exception(
            "Failed to assign role %s to %s", level_up.role_id, level_up.discord_id
        )
        report.errors.append(f"assign_role: {exc}")

    try:
        report.dm_sent = await sink.send_direct_notification(
            level_up.discord_id, level_up_message(level_up)
        )
    except Exception as exc:
        logger.exception("Failed to DM %s about level up", level_up.discord_id)
        report.errors.append(f"send_direct_notification: {exc}")

    return report
