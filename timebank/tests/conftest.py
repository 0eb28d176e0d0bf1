"""
Shared fixtures for the time bank tests.

Environment is configured before any timebank module is imported so the
engine binds to in-memory SQLite and the app never starts the scheduler.
"""
import os
import tempfile

os.environ["TIMEBANK_DATABASE_URL"] = "sqlite://"
os.environ["TIMEBANK_API_KEY"] = "test-api-key"
os.environ["TIMEBANK_ENABLE_SCHEDULER"] = "false"
os.environ.setdefault("TIMEBANK_LOG_DIR", tempfile.mkdtemp(prefix="timebank-logs-"))

import pytest
from datetime import date, timedelta

from timebank.database import Base, engine, SessionLocal
from timebank import models  # noqa: F401  registers tables
from timebank.exceptions import PersistenceException
from timebank.repositories.state_repository import InMemoryStateStore
from timebank.services.ledger_service import TimeBankLedger

API_KEY = "test-api-key"


class FakeClock:
    """Clock with a settable local date and instant"""

    def __init__(self, today: date = date(2026, 3, 10), now_ms: int = 1_773_100_800_000):
        self.today = today
        self.now_ms = now_ms
        self.timezone = None

    def now(self) -> int:
        self.now_ms += 1
        return self.now_ms

    def today_local_date(self) -> str:
        return self.today.isoformat()

    def advance_days(self, days: int = 1) -> None:
        self.today = self.today + timedelta(days=days)
        self.now_ms += days * 86_400_000


class FailingStore(InMemoryStateStore):
    """In-memory store whose saves fail while fail_saves is set"""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_saves = False
        self.save_attempts = 0

    def save(self, state) -> None:
        self.save_attempts += 1
        if self.fail_saves:
            raise PersistenceException("save", "disk full")
        super().save(state)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def today(clock):
    return clock.today_local_date()


@pytest.fixture
def memory_store():
    return InMemoryStateStore()


@pytest.fixture
def failing_store():
    return FailingStore()


@pytest.fixture
def ledger(memory_store, clock):
    return TimeBankLedger(memory_store, clock=clock)


@pytest.fixture
def db_session():
    """Fresh schema per test on the shared in-memory engine"""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
