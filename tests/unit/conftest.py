"""
Shared fixtures for sysinv unit tests.

Every test gets a fresh SQLite in-memory database (StaticPool, so all sessions
share one connection) and a store whose clock advances one second per call,
which keeps updated_at / end_time ordering deterministic.
"""

from datetime import datetime, timedelta, timezone

import pytest
import structlog

from sysinv.services.shared.database import create_all_tables, make_engine, make_session_factory
from sysinv.services.store.history import HistoryReader
from sysinv.services.store.reconciler import ReconciliationStore


class StepClock:
    """Returns 2024-01-01T00:00:00Z, then +1s on every call."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + timedelta(seconds=1)
        return current


@pytest.fixture
def engine():
    eng = make_engine("sqlite:///:memory:")
    create_all_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def sessions(engine):
    return make_session_factory(engine)


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def store(sessions, clock):
    return ReconciliationStore(sessions, log=structlog.get_logger(), clock=clock)


@pytest.fixture
def history(sessions):
    return HistoryReader(sessions)
