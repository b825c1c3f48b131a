"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import asyncio
import os

# API keys are read per request; set them before any app import.
os.environ.setdefault("API_SECRET_KEY", "test-api-key")
os.environ.setdefault("ADMIN_SECRET_KEY", "test-admin-key")

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from tally.database.models import Base, Level, RewardableChannel, Role  # noqa: E402
from tally.database.seed import seed_default_levels  # noqa: E402
from tally.engine.events import AuthorProfile  # noqa: E402

API_KEY = os.environ["API_SECRET_KEY"]
ADMIN_KEY = os.environ["ADMIN_SECRET_KEY"]


def run_async(coro):
    """Run *coro* on a fresh event loop (no pytest-asyncio needed)."""
    loop = asyncio.get_event_loop_policy().new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def make_profile(discord_id: str = "1000", username: str = "alice", **kw) -> AuthorProfile:
    return AuthorProfile(discord_id=discord_id, username=username, **kw)


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Tally tables.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in ``run_db``).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def seeded_engine(db_engine: Engine) -> Engine:
    """Engine with the default ladder, a bound role on level 2 and two
    configured channels: ``500`` (text) and ``600`` (forum)."""
    seed_default_levels(db_engine)
    with Session(db_engine) as session:
        role = Role(discord_role_id="7001", role_name="Regular")
        session.add(role)
        session.flush()
        session.get(Level, 2).role_id = role.id
        session.add_all([
            RewardableChannel(
                channel_id="500",
                channel_name="general",
                message_reward_amount=1,
                comment_reward_amount=2,
                forum_post_reward_amount=0,
                is_active=True,
            ),
            RewardableChannel(
                channel_id="600",
                channel_name="forum",
                message_reward_amount=0,
                comment_reward_amount=5,
                forum_post_reward_amount=3,
                is_active=True,
            ),
        ])
        session.commit()
    return db_engine
