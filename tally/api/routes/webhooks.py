"""
tally.api.routes.webhooks — Vercel deployment notifications
===========================================================

Vercel signs the raw request body with HMAC-SHA1 using the integration
secret and sends the hex digest in ``x-vercel-signature``.  Verified
payloads are announced as a plain-text message in the configured channel.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import os
from typing import Annotated

from fastapi import APIRouter, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse

from tally.api.deps import BotDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


def sign_body(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), raw_body, hashlib.sha1).hexdigest()


def verify_signature(raw_body: bytes, signature: str | None, secret: str) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(sign_body(raw_body, secret), signature)


def deployment_message(payload: dict) -> str:
    inner = payload.get("payload") or {}
    deployment = inner.get("deployment") or {}
    target = inner.get("target") or "preview"
    lines = [
        f"\U0001f680 Vercel deployment {payload.get('type', 'event')}",
        f"Project: {deployment.get('name', 'unknown')} ({target})",
    ]
    url = (inner.get("links") or {}).get("deployment") or deployment.get("url")
    if url:
        lines.append(url)
    if deployment.get("id"):
        lines.append(f"Deployment ID: {deployment['id']}")
    return "\n".join(lines)


@router.post("/vercel-webhook")
async def vercel_webhook(
    request: Request,
    bot: BotDep,
    x_vercel_signature: Annotated[str | None, Header()] = None,
):
    secret = os.getenv("VERCEL_INTEGRATION_SECRET")
    if not secret:
        raise HTTPException(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "No integration secret configured"
        )

    raw_body = await request.body()
    if not verify_signature(raw_body, x_vercel_signature, secret):
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={"code": "invalid_signature", "error": "signature didn't match"},
        )

    try:
        payload = json.loads(raw_body)
    except json.JSONDecodeError:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Body is not valid JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Body must be a JSON object")

    channel_id = os.getenv("VERCEL_NOTIFICATION_CHANNEL_ID", "")
    channel = bot.get_channel(int(channel_id)) if channel_id.isdigit() else None
    if channel is None:
        logger.error("Notification channel %r not found", channel_id)
        raise HTTPException(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "Notification channel not found"
        )

    await channel.send(deployment_message(payload))
    logger.info("Vercel webhook: %s announced in %s", payload.get("type"), channel_id)
    return {"success": True}
