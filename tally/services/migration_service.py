"""
tally.services.migration_service — Channel History Migration
============================================================

Replays a channel's history through the same reward pipeline the live
listeners use, so members are credited for activity that happened before
the bot was running (or while it was down).

State machine::

    IDLE → PAGING → ITEM_PROCESSING → PAGING … → DONE
                                              ↘ FAILED (page fetch error)

Text channels are read newest-first in pages of ``min(100, remaining)``,
each page asking for messages *before* the oldest ID of the previous one.
Forum channels fetch active + archived threads once, record each thread as
a ``forum_post`` and replay up to :data:`THREAD_MESSAGE_LIMIT` replies as
``comment`` events priced by the parent forum.

Re-running a migration is safe: every item goes through the dedup guard,
so only items the ledger hasn't seen are credited.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

from tally.constants import (
    DEFAULT_FORUM_LIMIT,
    DEFAULT_MIGRATION_LIMIT,
    DEFAULT_PAGE_DELAY_SECONDS,
    MESSAGE_PAGE_SIZE,
    THREAD_MESSAGE_LIMIT,
)
from tally.database.engine import run_db
from tally.engine.events import ActivityItem, AuthorProfile, EventType
from tally.services.activity_service import IngestOutcome, ingest_activity
from tally.services.reward_service import IngestStatus, event_exists

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from tally.engine.events import SourceMessage, ThreadItem
    from tally.services.level_service import RoleNotificationSink

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Channel classification
# ---------------------------------------------------------------------------
class ChannelKind(enum.StrEnum):
    TEXT = "text"
    FORUM = "forum"


@dataclass(frozen=True, slots=True)
class ChannelInfo:
    """What the migration endpoint needs to know about a channel.

    ``kind`` is ``None`` for channels that are neither text-based nor a
    forum (voice-only, categories, …); those can't be migrated.
    """

    id: str
    name: str
    type_name: str
    kind: ChannelKind | None
    is_thread: bool = False
    parent_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type_name,
            "isTextBased": self.kind is ChannelKind.TEXT,
            "isForum": self.kind is ChannelKind.FORUM,
        }


# ---------------------------------------------------------------------------
# Ports
# ---------------------------------------------------------------------------
class ActivitySource(Protocol):
    async def resolve_channel(self, channel_id: str) -> ChannelInfo | None: ...

    async def fetch_messages_before(
        self, channel_id: str, before: str | None, limit: int
    ) -> list[SourceMessage]:
        """Up to *limit* messages older than *before*, newest first."""
        ...

    async def fetch_active_threads(self, channel_id: str) -> list[ThreadItem]: ...

    async def fetch_archived_threads(self, channel_id: str) -> list[ThreadItem]: ...


class IdentityDirectory(Protocol):
    async def fetch_profile(self, discord_id: str) -> AuthorProfile | None: ...


# ---------------------------------------------------------------------------
# Run bookkeeping
# ---------------------------------------------------------------------------
class MigrationState(enum.StrEnum):
    IDLE = "idle"
    PAGING = "paging"
    ITEM_PROCESSING = "item_processing"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True)
class MigrationReport:
    channel_id: str
    limit: int
    state: MigrationState = MigrationState.IDLE
    pages: int = 0
    threads: int = 0
    processed: int = 0
    granted: int = 0
    duplicates: int = 0
    skipped: int = 0
    errors: int = 0
    level_ups: int = 0
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error: str | None = None

    def record(self, outcome: IngestOutcome) -> None:
        if outcome.status is IngestStatus.DUPLICATE:
            self.duplicates += 1
            return
        self.processed += 1
        self.granted += outcome.granted
        if outcome.level_up is not None:
            self.level_ups += 1

    def summary(self) -> dict[str, Any]:
        return {
            "channelId": self.channel_id,
            "state": self.state.value,
            "pages": self.pages,
            "threads": self.threads,
            "processed": self.processed,
            "granted": self.granted,
            "duplicates": self.duplicates,
            "skipped": self.skipped,
            "errors": self.errors,
        }


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------
class MigrationOrchestrator:
    """Drives one migration at a time over an :class:`ActivitySource`.

    Items are processed one by one in source order; the only waits are the
    DB round-trips and the fixed *page_delay* between history pages.
    """

    def __init__(
        self,
        engine: Engine,
        source: ActivitySource,
        directory: IdentityDirectory,
        sink: RoleNotificationSink | None,
        *,
        daily_comment_cap: int,
        page_delay: float = DEFAULT_PAGE_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.engine = engine
        self.source = source
        self.directory = directory
        self.sink = sink
        self.daily_comment_cap = daily_comment_cap
        self.page_delay = page_delay
        self._sleep = sleep
        self.last_report: MigrationReport | None = None

    # -- entry points ------------------------------------------------------
    async def run_migration(
        self, channel_id: str, limit: int | None = None
    ) -> MigrationReport:
        """Resolve the channel kind once and dispatch to the right migration.

        Raises
        ------
        LookupError
            If the channel can't be found.
        ValueError
            If the channel is neither text-based nor a forum.
        """
        info = await self.source.resolve_channel(channel_id)
        if info is None:
            raise LookupError(f"channel {channel_id} not found")

        match info.kind:
            case ChannelKind.FORUM:
                return await self.migrate_forum(
                    channel_id, limit or DEFAULT_FORUM_LIMIT, info=info
                )
            case ChannelKind.TEXT:
                return await self.migrate_messages(
                    channel_id, limit or DEFAULT_MIGRATION_LIMIT, info=info
                )
            case _:
                raise ValueError(
                    f"channel {channel_id} ({info.type_name}) is neither "
                    "text-based nor a forum"
                )

    async def migrate_messages(
        self,
        channel_id: str,
        limit: int = DEFAULT_MIGRATION_LIMIT,
        *,
        info: ChannelInfo | None = None,
    ) -> MigrationReport:
        """Backfill up to *limit* messages of a text channel or thread."""
        report = self._start(channel_id, limit)
        if info is None:
            info = await self.source.resolve_channel(channel_id)

        # Thread replies are comments, priced by the parent channel.
        event_type = EventType.MESSAGE
        pricing_channel_id = channel_id
        if info is not None and info.is_thread:
            event_type = EventType.COMMENT
            pricing_channel_id = info.parent_id or channel_id

        try:
            await self._replay_history(
                channel_id, limit, event_type, pricing_channel_id, report
            )
        except Exception as exc:
            self._fail(report, exc)
            raise
        return self._finish(report)

    async def migrate_forum(
        self,
        channel_id: str,
        limit: int = DEFAULT_FORUM_LIMIT,
        *,
        info: ChannelInfo | None = None,
    ) -> MigrationReport:
        """Backfill up to *limit* threads of a forum, plus their replies."""
        report = self._start(channel_id, limit)
        try:
            threads = await self._list_threads(channel_id)
        except Exception as exc:
            self._fail(report, exc)
            raise

        report.state = MigrationState.ITEM_PROCESSING
        for thread in threads:
            if report.threads >= limit:
                break
            report.threads += 1
            try:
                await self._process_thread(channel_id, thread, report)
            except Exception:
                logger.exception(
                    "Migration: failed to process thread %s", thread.thread_id
                )
                report.errors += 1

        return self._finish(report)

    # -- paging --------------------------------------------------------------
    async def _replay_history(
        self,
        channel_id: str,
        limit: int,
        event_type: EventType,
        pricing_channel_id: str,
        report: MigrationReport,
    ) -> None:
        before: str | None = None
        fetched = 0

        while fetched < limit:
            report.state = MigrationState.PAGING
            page_size = min(MESSAGE_PAGE_SIZE, limit - fetched)
            page = await self.source.fetch_messages_before(channel_id, before, page_size)
            if not page:
                break

            report.pages += 1
            report.state = MigrationState.ITEM_PROCESSING
            for message in page:
                fetched += 1
                await self._process_message(
                    message, event_type, pricing_channel_id, report
                )

            before = page[-1].message_id
            logger.info(
                "Migration %s: %d/%d messages fetched (%d granted so far)",
                channel_id, fetched, limit, report.granted,
            )
            if fetched < limit:
                await self._sleep(self.page_delay)

    async def _list_threads(self, channel_id: str) -> list[ThreadItem]:
        active = await self.source.fetch_active_threads(channel_id)
        archived = await self.source.fetch_archived_threads(channel_id)

        merged: dict[str, ThreadItem] = {}
        for thread in [*active, *archived]:
            merged.setdefault(thread.thread_id, thread)
        return list(merged.values())

    # -- items ---------------------------------------------------------------
    async def _process_message(
        self,
        message: SourceMessage,
        event_type: EventType,
        pricing_channel_id: str,
        report: MigrationReport,
    ) -> None:
        if message.author.bot or message.system:
            report.skipped += 1
            return

        try:
            if await run_db(event_exists, self.engine, message.message_id):
                report.duplicates += 1
                return

            item = ActivityItem(
                external_id=message.message_id,
                event_type=event_type,
                channel_id=pricing_channel_id,
                author=message.author,
                content=message.content,
                created_at=message.created_at,
            )
            outcome = await ingest_activity(
                self.engine,
                self.sink,
                item,
                daily_comment_cap=self.daily_comment_cap,
            )
        except Exception:
            logger.exception("Migration: failed to process message %s", message.message_id)
            report.errors += 1
            return

        report.record(outcome)

    async def _process_thread(
        self, forum_id: str, thread: ThreadItem, report: MigrationReport
    ) -> None:
        if thread.owner_id is not None:
            if await run_db(event_exists, self.engine, thread.thread_id):
                logger.debug("Migration: thread %s already recorded", thread.thread_id)
                report.duplicates += 1
                return

            owner = await self.directory.fetch_profile(thread.owner_id)
            if owner is None or owner.bot:
                report.skipped += 1
            else:
                item = ActivityItem(
                    external_id=thread.thread_id,
                    event_type=EventType.FORUM_POST,
                    channel_id=forum_id,
                    author=owner,
                    content=thread.name,
                    created_at=thread.created_at or datetime.now(UTC),
                )
                report.record(await ingest_activity(
                    self.engine,
                    self.sink,
                    item,
                    daily_comment_cap=self.daily_comment_cap,
                ))

        await self._replay_history(
            thread.thread_id,
            THREAD_MESSAGE_LIMIT,
            EventType.COMMENT,
            forum_id,
            report,
        )

    # -- state ---------------------------------------------------------------
    def _start(self, channel_id: str, limit: int) -> MigrationReport:
        logger.info("Migration started: channel %s (limit %d)", channel_id, limit)
        self.last_report = MigrationReport(
            channel_id=channel_id,
            limit=limit,
            state=MigrationState.PAGING,
            started_at=datetime.now(UTC),
        )
        return self.last_report

    @staticmethod
    def _finish(report: MigrationReport) -> MigrationReport:
        report.state = MigrationState.DONE
        report.finished_at = datetime.now(UTC)
        logger.info("Migration finished: %s", report.summary())
        return report

    @staticmethod
    def _fail(report: MigrationReport, exc: BaseException) -> None:
        report.state = MigrationState.FAILED
        report.finished_at = datetime.now(UTC)
        report.error = str(exc)
        logger.error("Migration of %s failed: %s", report.channel_id, exc)
