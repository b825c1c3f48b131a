"""
tally.bot.core — Bot Instance, Cog Loader & API Server
======================================================

:class:`TallyBot` is a ``commands.Bot`` subclass that:

1. Stores the shared config (``bot.cfg``) and DB engine (``bot.engine``)
   so every Cog can reach them via ``self.bot``.
2. Builds the :class:`DiscordGateway` (role/DM sink + history source) and
   the :class:`MigrationOrchestrator` that the HTTP API drives.
3. Loads every Cog listed in :data:`EXTENSIONS`.
4. Serves the FastAPI app with uvicorn on the same event loop, so the
   migration endpoint can use the live gateway connection.
5. Syncs the slash-command tree on ready (guild-scoped when
   ``DEV_GUILD_ID`` is set, global otherwise).
"""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import UTC, datetime

import discord
import uvicorn
from discord.ext import commands
from sqlalchemy import Engine

from tally.config import TallyConfig
from tally.services.discord_gateway import DiscordGateway
from tally.services.migration_service import MigrationOrchestrator

logger = logging.getLogger(__name__)

EXTENSIONS: list[str] = [
    "tally.bot.cogs.social",
    "tally.bot.cogs.threads",
    "tally.bot.cogs.meta",
    "tally.bot.cogs.admin",
]


class TallyBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state.

    Parameters
    ----------
    cfg:
        The parsed :class:`TallyConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine` connected to PostgreSQL.
    serve_api:
        Start the HTTP API alongside the gateway connection.
    """

    def __init__(self, cfg: TallyConfig, engine: Engine, *, serve_api: bool = True) -> None:
        intents = discord.Intents.default()
        intents.message_content = True    # Privileged: stored content snapshots
        intents.members = True            # Privileged: role assignment

        super().__init__(
            command_prefix=cfg.bot_prefix,
            intents=intents,
            description=f"{cfg.community_name} activity rewards",
        )

        self.cfg = cfg
        self.engine = engine
        self.serve_api = serve_api
        self.started_at: datetime | None = None

        self.gateway = DiscordGateway(self, cfg.guild_id)
        self.migrations = MigrationOrchestrator(
            engine,
            source=self.gateway,
            directory=self.gateway,
            sink=self.gateway,
            daily_comment_cap=cfg.daily_comment_cap,
            page_delay=cfg.migration_page_delay,
        )
        # Strong refs so running migrations aren't garbage-collected.
        self.background_tasks: set[asyncio.Task] = set()

        self._api_server: uvicorn.Server | None = None
        self._api_task: asyncio.Task | None = None

    def spawn(self, coro, *, name: str | None = None) -> asyncio.Task:
        """Schedule *coro* on the bot loop and keep a reference to it."""
        task = asyncio.create_task(coro, name=name)
        self.background_tasks.add(task)
        task.add_done_callback(self.background_tasks.discard)
        return task

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Load Cogs and start the API server before connecting.

        A Cog that fails to load is logged and skipped.
        """
        self.started_at = datetime.now(UTC)

        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

        if self.serve_api:
            await self._start_api()

    async def _start_api(self) -> None:
        from tally.api.main import create_app

        app = create_app(engine=self.engine, bot=self)
        config = uvicorn.Config(
            app,
            host=os.getenv("API_HOST", "0.0.0.0"),
            port=self.cfg.api_port,
            log_config=None,
        )
        self._api_server = uvicorn.Server(config)
        self._api_task = asyncio.create_task(self._api_server.serve(), name="tally-api")
        logger.info("API server starting on port %d", self.cfg.api_port)

    async def on_ready(self) -> None:
        assert self.user is not None
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)

        dev_guild_id = os.getenv("DEV_GUILD_ID")
        if dev_guild_id:
            guild = discord.Object(id=int(dev_guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synced %d commands to dev guild %s", len(synced), dev_guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Synced %d commands globally", len(synced))

    async def close(self) -> None:
        """Graceful shutdown — stop the API server and running migrations."""
        logger.info("Bot shutting down…")
        if self._api_server is not None:
            self._api_server.should_exit = True
        if self._api_task is not None:
            await asyncio.gather(self._api_task, return_exceptions=True)
        for task in list(self.background_tasks):
            task.cancel()
        await super().close()
