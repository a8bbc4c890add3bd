"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import Engine, create_engine

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite has no JSONB; SQLAlchemy's JSON handling still (de)serialises the
# values, so the column only needs to render as TEXT in DDL.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB

from quietwatch.database.models import Base
from quietwatch.database.seed import seed_default_settings
from quietwatch.services.repository import SqlRepository

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent)."""
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------
START = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


class FakeClock:
    """Injectable clock.  Call it for "now"; move it with :meth:`advance`."""

    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta) -> datetime:
        self.current += timedelta(**delta)
        return self.current

    def set(self, value: datetime) -> None:
        self.current = value


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------
@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with all Quietwatch tables.

    Uses StaticPool so every thread shares the same in-memory database
    (required by ``asyncio.to_thread`` behind ``run_db``).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repo(db_engine: Engine, clock: FakeClock) -> SqlRepository:
    """Repository over an empty schema with the default settings row seeded."""
    seed_default_settings(db_engine)
    return SqlRepository(db_engine, clock=clock)


@pytest.fixture
def bare_repo(db_engine: Engine, clock: FakeClock) -> SqlRepository:
    """Repository over an empty schema with no settings row."""
    return SqlRepository(db_engine, clock=clock)
