"""
tally.engine.events — ActivityItem envelope
============================================

Every observed piece of activity — a live gateway message, a live thread,
or a message pulled from channel history — is normalized into an
:class:`ActivityItem` before it reaches the reward pipeline.  Nothing below
this layer knows about discord.py objects.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from tally.database.models import EventType

__all__ = ["ActivityItem", "AuthorProfile", "EventType", "SourceMessage", "ThreadItem"]


@dataclass(frozen=True, slots=True)
class AuthorProfile:
    """Who did it.  Enough to find-or-create the ``users`` row."""

    discord_id: str
    username: str
    global_name: str | None = None
    discriminator: str | None = None
    avatar_url: str | None = None
    bot: bool = False

    @property
    def display_name(self) -> str:
        return self.global_name or self.username


@dataclass(frozen=True, slots=True)
class ActivityItem:
    """One rewardable unit of activity.

    ``external_id`` is the dedup key (message or thread snowflake).
    ``channel_id`` is the channel whose :class:`RewardableChannel` config
    prices the event — for thread replies inside a forum that is the
    parent forum, not the thread.
    ``created_at`` is the source timestamp and drives the promotion rule.
    """

    external_id: str
    event_type: EventType
    channel_id: str
    author: AuthorProfile
    content: str | None
    created_at: datetime
    system: bool = False


@dataclass(frozen=True, slots=True)
class ThreadItem:
    """A forum thread as seen by the migration orchestrator."""

    thread_id: str
    parent_id: str
    name: str
    owner_id: str | None
    created_at: datetime | None


@dataclass(frozen=True, slots=True)
class SourceMessage:
    """A message as returned by a history fetch, before it is classified."""

    message_id: str
    author: AuthorProfile
    content: str | None
    created_at: datetime
    system: bool = False
