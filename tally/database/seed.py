"""
tally.database.seed — Default Level Ladder
===========================================

A baseline ladder seeded on first startup so level-ups work before an admin
has configured anything.  Idempotent — only inserts levels whose number
doesn't exist yet.  Roles are never seeded; admins bind them later.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, select

from tally.database.engine import get_session
from tally.database.models import Level

logger = logging.getLogger(__name__)


# level_number → (required_reward_amount, level_name)
DEFAULT_LEVELS: dict[int, tuple[int, str]] = {
    1: (0, "Newcomer"),
    2: (50, "Regular"),
    3: (150, "Contributor"),
    4: (400, "Veteran"),
    5: (1000, "Legend"),
}


def seed_default_levels(engine: Engine) -> int:
    """Insert any missing default levels.  Returns the number inserted."""
    inserted = 0
    with get_session(engine) as session:
        existing = set(session.scalars(select(Level.level_number)).all())
        for number, (required, name) in DEFAULT_LEVELS.items():
            if number in existing:
                continue
            session.add(Level(
                level_number=number,
                required_reward_amount=required,
                level_name=name,
            ))
            inserted += 1

    if inserted:
        logger.info("Seeded %d default levels.", inserted)
    return inserted
