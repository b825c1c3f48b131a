"""
Tally — Activity Points & Levels for Discord Communities
=========================================================
Counts what members contribute (messages, forum posts, thread comments),
pays it out as points on an append-only ledger, climbs a level ladder, and
hands out Discord roles along the way.  A small HTTP API replays channel
history through the very same pipeline.

Package layout::

    tally/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Promotion cutoff, caps, text helpers
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # ORM models (users, events, ledger, ladder)
    │   └── seed.py        # Default level ladder
    ├── engine/
    │   ├── events.py      # ActivityItem envelope
    │   ├── reward.py      # Pure reward rules (policy, 2x promo, cap)
    │   └── levels.py      # Pure ladder math
    ├── services/
    │   ├── reward_service.py     # Dedup guard + atomic ledger
    │   ├── level_service.py      # Level-up + role / DM side effects
    │   ├── activity_service.py   # Live + backfill ingestion pipeline
    │   ├── migration_service.py  # History migration orchestrator
    │   ├── discord_gateway.py    # discord.py adapters
    │   ├── user_service.py       # Profile, ranking, leaderboard
    │   └── channel_service.py    # Rewardable channel admin
    ├── bot/
    │   ├── core.py        # Bot subclass, cog loader, API server
    │   └── cogs/          # social, threads, meta, admin
    └── api/
        ├── main.py        # FastAPI app
        └── routes/        # migration + webhook endpoints
"""

__version__ = "0.1.0"
