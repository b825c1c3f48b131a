"""
tally.api.deps — FastAPI dependency injection
=============================================

Static API-key auth: every protected route wants
``Authorization: Bearer <API_SECRET_KEY>``; the migration trigger also
wants ``X-Admin-Key: <ADMIN_SECRET_KEY>`` (falls back to the API key).
Keys are read from the environment on each request.
"""

from __future__ import annotations

import hmac
import os
from functools import lru_cache
from typing import TYPE_CHECKING, Annotated, Any

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy import Engine

from tally.database.engine import create_db_engine

if TYPE_CHECKING:
    from tally.bot.core import TallyBot


@lru_cache(maxsize=1)
def _default_engine() -> Engine:
    return create_db_engine()


def get_engine(request: Request) -> Engine:
    """The engine the app was created with, else one built from ``DATABASE_URL``."""
    engine = getattr(request.app.state, "engine", None)
    return engine if engine is not None else _default_engine()


def get_bot(request: Request) -> TallyBot:
    bot = getattr(request.app.state, "bot", None)
    if bot is None:
        raise HTTPException(
            status.HTTP_503_SERVICE_UNAVAILABLE, "Discord bot is not attached"
        )
    return bot


def _keys_match(given: str, expected: str) -> bool:
    return hmac.compare_digest(given.encode(), expected.encode())


def require_api_key(
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    """401 unless the Bearer token equals ``API_SECRET_KEY``."""
    expected = os.getenv("API_SECRET_KEY", "")
    if not expected:
        raise HTTPException(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "API_SECRET_KEY is not configured"
        )
    if not authorization:
        raise HTTPException(
            status.HTTP_401_UNAUTHORIZED,
            "Authentication required: send 'Authorization: Bearer <api key>'",
        )
    token = authorization[7:] if authorization.startswith("Bearer ") else authorization
    if not token or not _keys_match(token, expected):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid API key")


def require_admin_key(
    _: Annotated[None, Depends(require_api_key)],
    x_admin_key: Annotated[str | None, Header()] = None,
) -> None:
    """403 unless ``X-Admin-Key`` equals the admin key."""
    expected = os.getenv("ADMIN_SECRET_KEY") or os.getenv("API_SECRET_KEY", "")
    if not x_admin_key:
        raise HTTPException(
            status.HTTP_403_FORBIDDEN, "Admin access required: send 'X-Admin-Key'"
        )
    if not _keys_match(x_admin_key, expected):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Invalid admin key")


EngineDep = Annotated[Engine, Depends(get_engine)]
BotDep = Annotated[Any, Depends(get_bot)]
