"""
tally.config — YAML Configuration Loader
=========================================

Reads ``config.yaml`` for infrastructure settings (guild identity, API port,
admin role) plus the two engine knobs that operators tune: the daily comment
cap and the pause between migration pages.

Secrets (bot token, database URL, API keys) never live in YAML; they come
from the environment, usually via a ``.env`` file loaded with
:func:`dotenv.load_dotenv` at process start.

Usage::

    from tally.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.guild_id)
    print(cfg.daily_comment_cap) # 5 unless overridden
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import yaml

from tally.constants import DEFAULT_DAILY_COMMENT_CAP, DEFAULT_PAGE_DELAY_SECONDS


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class TallyConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str

    # Discord
    bot_prefix: str
    guild_id: int  # Guild whose members receive roles

    # HTTP API
    api_port: int

    # Admin
    admin_role_id: int  # Discord role required for admin slash commands

    # Engine tuning
    daily_comment_cap: int = DEFAULT_DAILY_COMMENT_CAP
    migration_page_delay: float = DEFAULT_PAGE_DELAY_SECONDS


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> TallyConfig:
    """Read *path* and return a :class:`TallyConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return TallyConfig(
        community_name=raw["community_name"],
        bot_prefix=raw["bot_prefix"],
        guild_id=int(raw["guild_id"]),
        api_port=int(raw["api_port"]),
        admin_role_id=int(raw["admin_role_id"]),
        daily_comment_cap=int(raw.get("daily_comment_cap", DEFAULT_DAILY_COMMENT_CAP)),
        migration_page_delay=float(
            raw.get("migration_page_delay", DEFAULT_PAGE_DELAY_SECONDS)
        ),
    )


def require_env(name: str) -> str:
    """Return environment variable *name* or raise a clear ``RuntimeError``."""
    value = os.getenv(name, "").strip()
    if not value:
        raise RuntimeError(
            f"{name} is not set.  Copy .env.example → .env and fill it in."
        )
    return value
