"""
SquadPlanner — Session Lifecycle & Attendance Engine
=====================================================
Plans recurring squad play sessions, tracks who is coming and who showed up,
and turns attendance into confirmations, chat notices and challenge progress.

Package layout::

    squadplanner/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Defaults, labels, progress counter keys
    ├── errors.py          # Error taxonomy shared by every layer
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # All ORM models
    │   └── seed.py        # Default challenge seeder
    ├── engine/
    │   ├── recurrence.py  # Weekly recurrence rules + next occurrence
    │   ├── attendance.py  # RSVP / check-in aggregation
    │   ├── lifecycle.py   # Session status state machine
    │   └── cache.py       # Explicit session detail/list cache
    ├── services/
    │   ├── repositories.py      # Typed repositories over SQLAlchemy
    │   ├── session_service.py   # Session reads with fresh aggregates
    │   ├── coordinator.py       # RSVP / check-in / confirm / cancel pipeline
    │   ├── dispatch.py          # Best-effort side-effect fan-out
    │   ├── system_messages.py   # Squad chat system notices
    │   ├── challenge_tracker.py # Gamification progress counters
    │   ├── recurring_service.py # Recurring templates + materialization
    │   ├── identity.py          # Acting member resolution
    │   └── embeds.py            # Discord embed builders
    ├── api/
    │   ├── main.py        # FastAPI app
    │   ├── deps.py        # JWT → Actor, engine, cache, coordinator
    │   └── routes/        # Session + recurring endpoints
    └── bot/
        ├── core.py        # Bot subclass, cog loader
        └── cogs/
            ├── sessions.py  # /session create|list|join
            └── tasks.py     # Recurring materialization loop
"""

__version__ = "0.1.0"
