from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import sessionmaker


@pytest.fixture()
def isolated_db(monkeypatch, tmp_path):
    """
    Point the engine at a throwaway sqlite file for repository/worker/API tests.

    ``get_session`` reads ``SessionLocal`` from the database module at call
    time, so patching the engine and session factory covers every importer.
    """
    from orbitagent.db import database as db_module
    from orbitagent.models.action_log import ActionLog  # noqa: F401
    from orbitagent.models.job_post import JobPost  # noqa: F401
    from orbitagent.models.search_profile import SearchProfile  # noqa: F401

    test_engine = db_module.build_engine(f"sqlite:///{tmp_path / 'test_orbitagent.db'}")
    TestingSessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=test_engine,
        expire_on_commit=False,
    )
    monkeypatch.setattr(db_module, "engine", test_engine, raising=True)
    monkeypatch.setattr(db_module, "SessionLocal", TestingSessionLocal, raising=True)

    db_module.Base.metadata.create_all(bind=test_engine)
    yield TestingSessionLocal
    test_engine.dispose()


class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000.0


@pytest.fixture()
def fake_clock():
    return FakeClock()


class BreakerClock:
    """Wall clock seen by pybreaker's open-state timeout, advanced by hand."""

    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def advance_ms(self, ms: float) -> None:
        self.now += timedelta(milliseconds=ms)


@pytest.fixture()
def breaker_clock(monkeypatch):
    import pybreaker

    clock = BreakerClock()

    class _FrozenDatetime(datetime):
        @classmethod
        def now(cls, tz=None):
            return clock.now if tz is not None else clock.now.replace(tzinfo=None)

        @classmethod
        def utcnow(cls):
            return clock.now.replace(tzinfo=None)

    monkeypatch.setattr(pybreaker, "datetime", _FrozenDatetime)
    return clock
