"""
tally.database.models — SQLAlchemy 2.0 Data Models
===================================================

Tables:
- users               — Community members (lazy find-or-create by Discord ID)
- activity_events     — One row per observed message / thread (dedup key)
- reward_history      — Append-only point ledger
- rewardable_channels — Per-channel base reward amounts
- roles               — Discord roles that levels hand out
- levels              — Ordered level ladder

Ledger invariant: ``users.current_reward`` equals the sum of the user's
``reward_history.amount`` rows.  Only the reward service writes either side.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Tally ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class EventType(enum.StrEnum):
    """Kinds of member activity that can earn points."""
    MESSAGE = "message"
    COMMENT = "comment"
    FORUM_POST = "forum_post"


class RewardType(enum.StrEnum):
    """Ledger row categories.  Activity types plus out-of-band grants."""
    MESSAGE = "message"
    COMMENT = "comment"
    FORUM_POST = "forum_post"
    MANUAL = "manual"
    DAILY_BONUS = "daily_bonus"


# ---------------------------------------------------------------------------
# Users — one row per Discord member
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    discord_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    global_name: Mapped[str | None] = mapped_column(String(100), default=None)
    discriminator: Mapped[str | None] = mapped_column(String(10), default=None)
    avatar_url: Mapped[str | None] = mapped_column(Text, default=None)
    current_reward: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    current_level: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    last_daily_bonus: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
    )

    events: Mapped[list[ActivityEvent]] = relationship(back_populates="user")
    rewards: Mapped[list[RewardHistory]] = relationship(back_populates="user")

    __table_args__ = (
        Index("ix_users_reward_desc", "current_reward"),
    )

    @property
    def display_name(self) -> str:
        return self.global_name or self.username

    def __repr__(self) -> str:
        return (
            f"<User id={self.id} discord={self.discord_id} "
            f"pts={self.current_reward} lvl={self.current_level}>"
        )


# ---------------------------------------------------------------------------
# ActivityEvent — one observed message / thread
# ---------------------------------------------------------------------------
class ActivityEvent(Base):
    """A single observed unit of activity, live or backfilled.

    ``external_id`` (the Discord message or thread snowflake) is unique:
    the index is the authoritative "already processed" signal.
    ``created_at`` is copied from the source, never insertion time.
    """
    __tablename__ = "activity_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    event_type: Mapped[str] = mapped_column(String(20), nullable=False)
    channel_id: Mapped[str] = mapped_column(String(32), nullable=False)
    external_id: Mapped[str] = mapped_column(String(32), nullable=False)
    content: Mapped[str | None] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    processed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    user: Mapped[User] = relationship(back_populates="events")
    reward: Mapped[RewardHistory | None] = relationship(
        back_populates="event", uselist=False
    )

    __table_args__ = (
        Index("ix_activity_events_external_id", "external_id", unique=True),
        Index("ix_activity_events_channel", "channel_id"),
        Index("ix_activity_events_user_time", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ActivityEvent id={self.id} ext={self.external_id} "
            f"type={self.event_type}>"
        )


# ---------------------------------------------------------------------------
# RewardHistory — append-only point ledger
# ---------------------------------------------------------------------------
class RewardHistory(Base):
    __tablename__ = "reward_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, default=None)
    event_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("activity_events.id", ondelete="SET NULL"),
        nullable=True,
        unique=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    user: Mapped[User] = relationship(back_populates="rewards")
    event: Mapped[ActivityEvent | None] = relationship(back_populates="reward")

    __table_args__ = (
        Index("ix_reward_history_user_type_time", "user_id", "type", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<RewardHistory id={self.id} user={self.user_id} "
            f"amount={self.amount} type={self.type}>"
        )


# ---------------------------------------------------------------------------
# RewardableChannel — per-channel base amounts
# ---------------------------------------------------------------------------
class RewardableChannel(Base):
    """Base reward amounts for one channel.  Absent or inactive → no points."""
    __tablename__ = "rewardable_channels"

    channel_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    channel_name: Mapped[str | None] = mapped_column(String(100), default=None)
    message_reward_amount: Mapped[int] = mapped_column(Integer, default=0)
    comment_reward_amount: Mapped[int] = mapped_column(Integer, default=0)
    forum_post_reward_amount: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    def __repr__(self) -> str:
        return (
            f"<RewardableChannel {self.channel_id} name={self.channel_name!r} "
            f"active={self.is_active}>"
        )


# ---------------------------------------------------------------------------
# Role / Level — the ladder
# ---------------------------------------------------------------------------
class Role(Base):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    discord_role_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    role_name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)

    levels: Mapped[list[Level]] = relationship(back_populates="role")

    def __repr__(self) -> str:
        return f"<Role {self.discord_role_id} name={self.role_name!r}>"


class Level(Base):
    __tablename__ = "levels"

    level_number: Mapped[int] = mapped_column(Integer, primary_key=True)
    required_reward_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    level_name: Mapped[str] = mapped_column(String(100), nullable=False)
    role_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("roles.id", ondelete="SET NULL"), nullable=True
    )

    role: Mapped[Role | None] = relationship(back_populates="levels")

    def __repr__(self) -> str:
        return (
            f"<Level {self.level_number} name={self.level_name!r} "
            f"req={self.required_reward_amount}>"
        )
