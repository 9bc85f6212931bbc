"""
RankUp — Activity Ranks for a Discord Community
================================================
Counts member messages and voice time, turns accumulated activity into a
ladder of role-based ranks, and wipes the counters on a fixed cadence.

Package layout::

    rankup/
    ├── config.py          # YAML → typed Python config + rank ladder
    ├── constants.py       # Defaults, time helpers, duration formatting
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # ORM models (ledger, blacklist, settings, audit)
    ├── engine/
    │   ├── records.py     # MemberSnapshot — detached ledger view
    │   ├── ranks.py       # Rank ladder + eligibility evaluator
    │   ├── roles.py       # Grant/revoke plans for rank moves
    │   ├── voice.py       # Voice session state machine
    │   ├── locks.py       # Per-member asyncio locks
    │   └── errors.py      # Result enums + exceptions
    ├── services/
    │   ├── ledger.py          # Activity Ledger (atomic counters, reset)
    │   ├── blacklist_service.py
    │   ├── schedule_service.py # Persisted reset boundary + catch-up
    │   ├── scheduler.py       # Reset Scheduler (asyncio timer)
    │   ├── advancement.py     # Advancement Coordinator
    │   ├── admin_service.py   # admin_log audit writes
    │   └── embeds.py          # Discord embed builders
    └── bot/
        ├── __main__.py    # python -m rankup.bot
        ├── core.py        # Bot subclass, cog loader, notifications
        ├── gateway.py     # discord.py RoleGateway adapter
        └── cogs/
            ├── activity.py # on_message / on_voice_state_update capture
            ├── ranks.py    # /rank, /rankup + Rank Up button
            ├── roles.py    # Permission role auto-assignment
            ├── admin.py    # Operator commands
            └── tasks.py    # Reset scheduler lifecycle
"""

__version__ = "0.1.0"
