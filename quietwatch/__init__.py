"""
Quietwatch — Community Activity Tracking & Re-engagement Reminders
===================================================================
Watches engagement in a Discord community, sorts every member into an
activity tier, and nudges members who have gone quiet with paced,
cooldown-aware reminders.  An operator dashboard reads the same database
through a small REST API.

Package layout::

    quietwatch/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Tier boundaries, windows, time helpers
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # ORM models (members, activities, reminders, settings)
    │   └── seed.py        # Default configuration row
    ├── engine/
    │   └── classification.py  # Pure tier rule, weekly counters, template render
    ├── services/
    │   ├── repository.py      # Repository protocol + SQLAlchemy implementation
    │   ├── activity_tracker.py # Event ingestion + classification
    │   ├── reminder_service.py # Periodic scheduler + manual dispatch
    │   ├── delivery.py        # Reminder delivery transports
    │   ├── settings_service.py # Configuration reads / partial writes
    │   └── log_buffer.py      # In-memory log buffer + persisted bot logs
    ├── bot/
    │   ├── core.py        # Bot subclass, cog loader, scheduler lifecycle
    │   └── cogs/
    │       ├── activity.py    # on_message / voice state capture
    │       ├── membership.py  # on_member_join capture
    │       └── admin.py       # /remind, /force-check
    └── api/
        ├── main.py        # FastAPI app
        └── routes/        # Bot, members, reminders, settings endpoints
"""

__version__ = "0.1.0"
