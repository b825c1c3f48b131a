"""
tally.bot.__main__ — Entry point for ``python -m tally.bot``
============================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (infrastructure settings).
3. Create the SQLAlchemy engine, ensure tables exist, seed the ladder.
4. Create the TallyBot and hand it config + engine.
5. Start the bot (blocking — runs the asyncio event loop, which also
   serves the HTTP API).

Run with::

    python -m tally.bot
"""

from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv

from tally.bot.core import TallyBot
from tally.config import load_config, require_env
from tally.database.engine import create_db_engine, init_db

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("tally")


def main() -> None:
    """Bootstrap and run the Tally bot."""

    # 1. Environment variables (secrets).
    load_dotenv()

    try:
        token = require_env("DISCORD_TOKEN")
    except RuntimeError as exc:
        logger.critical("%s", exc)
        sys.exit(1)
    if token == "your-discord-bot-token-here":
        logger.critical("DISCORD_TOKEN still holds the .env.example placeholder.")
        sys.exit(1)

    if not os.getenv("API_SECRET_KEY"):
        logger.warning("API_SECRET_KEY is not set — the migration API will reject every request.")

    # 2. Configuration.
    cfg = load_config(os.getenv("TALLY_CONFIG", "config.yaml"))
    logger.info(
        "Config loaded — %s (daily comment cap %d)",
        cfg.community_name, cfg.daily_comment_cap,
    )

    # 3. Database.
    engine = create_db_engine()
    init_db(engine)

    # 4. Bot.
    bot = TallyBot(cfg=cfg, engine=engine)

    # 5. Run (blocks until Ctrl+C or SIGTERM).
    logger.info("Starting Tally bot…")
    try:
        bot.run(token, log_handler=None)
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
