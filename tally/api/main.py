"""
tally.api.main — FastAPI application
====================================

The bot serves this app with uvicorn on its own event loop (see
:mod:`tally.bot.core`), passing itself in so routes can reach the live
gateway.  Standalone, it still answers the health checks::

    uvicorn tally.api.main:app --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import Engine
from starlette.exceptions import HTTPException as StarletteHTTPException

from tally import __version__
from tally.api.routes.migration import router as migration_router
from tally.api.routes.webhooks import router as webhooks_router

if TYPE_CHECKING:
    from tally.bot.core import TallyBot

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    attached = "attached" if app.state.bot is not None else "not attached"
    logger.info("Tally API started — bot %s", attached)
    yield
    logger.info("Tally API shutting down")


# ---------------------------------------------------------------------------
# Error bodies: always {"error": ...}
# ---------------------------------------------------------------------------
async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={
            "error": f"{field}: {message}" if field else message,
            "example": {"channelId": "123456789", "limit": 1000},
        },
    )


def create_app(engine: Engine | None = None, bot: TallyBot | None = None) -> FastAPI:
    app = FastAPI(title="Tally API", version=__version__, lifespan=lifespan)
    app.state.engine = engine
    app.state.bot = bot

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(StarletteHTTPException, _http_error)
    app.add_exception_handler(RequestValidationError, _validation_error)

    app.include_router(migration_router, prefix="/api")
    app.include_router(webhooks_router, prefix="/api")

    @app.get("/api/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
