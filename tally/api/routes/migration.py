"""
tally.api.routes.migration — History migration trigger, bot status & channels
=============================================================================
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, StrictInt, StrictStr

from tally import __version__
from tally.api.deps import BotDep, EngineDep, require_admin_key, require_api_key
from tally.constants import DEFAULT_MIGRATION_LIMIT
from tally.services.channel_service import get_rewardable_channels
from tally.services.migration_service import MigrationOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/discord", tags=["migration"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class MigrateRequest(BaseModel):
    channelId: Annotated[StrictStr, Field(min_length=1)]
    limit: Annotated[StrictInt, Field(gt=0)] = DEFAULT_MIGRATION_LIMIT


async def _run_migration(
    orchestrator: MigrationOrchestrator, channel_id: str, limit: int
) -> None:
    try:
        report = await orchestrator.run_migration(channel_id, limit)
    except Exception:
        logger.exception("Migration of channel %s failed", channel_id)
        return
    logger.info("Migration of channel %s complete: %s", channel_id, report.summary())


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@router.post("/migrate", dependencies=[Depends(require_admin_key)])
async def migrate_channel_history(body: MigrateRequest, bot: BotDep):
    """Validate the channel, schedule the migration and return 202 at once."""
    logger.info("Migration requested: channel %s, limit %d", body.channelId, body.limit)

    info = await bot.gateway.resolve_channel(body.channelId)
    if info is None:
        raise HTTPException(
            status.HTTP_404_NOT_FOUND,
            "Channel not found. Check the channel ID.",
        )
    if info.kind is None:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": "Unsupported channel type. Only text and forum channels can be migrated.",
                "channelType": info.type_name,
            },
        )

    bot.spawn(
        _run_migration(bot.migrations, body.channelId, body.limit),
        name=f"migration-{body.channelId}",
    )
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content={
            "message": "Migration started.",
            "channelInfo": info.to_dict(),
            "limit": body.limit,
            "status": "processing",
        },
    )


@router.get("/status", dependencies=[Depends(require_api_key)])
def migration_status(bot: BotDep):
    last = bot.migrations.last_report
    return {
        "message": "Migration service status",
        "botStatus": bot.gateway.bot_status(),
        "lastMigration": last.summary() if last is not None else None,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/channels/{channel_id}", dependencies=[Depends(require_api_key)])
async def channel_info(channel_id: str, bot: BotDep):
    info = await bot.gateway.resolve_channel(channel_id)
    if info is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Channel not found.")
    return {"message": "Channel info", "channelInfo": info.to_dict()}


@router.get("/reward-channels", dependencies=[Depends(require_api_key)])
def reward_channels(engine: EngineDep, include_inactive: bool = False):
    """Configured channels and their per-type reward amounts."""
    channels = get_rewardable_channels(engine, active_only=not include_inactive)
    return {
        "message": "Rewardable channels",
        "channels": [
            {
                "channelId": ch.channel_id,
                "channelName": ch.channel_name,
                "messageReward": ch.message_reward_amount,
                "commentReward": ch.comment_reward_amount,
                "forumPostReward": ch.forum_post_reward_amount,
                "isActive": ch.is_active,
            }
            for ch in channels
        ],
    }


@router.get("/health")
def discord_health():
    return {
        "status": "healthy",
        "message": "Discord bot API is running",
        "timestamp": datetime.now(UTC).isoformat(),
        "version": __version__,
    }
