"""
Shared fixtures: settings, a temp-file SQLite store, and a fake clock.

No test touches the network or sleeps for real.
"""

from __future__ import annotations

from typing import List

import pytest

from alert_relay.alerts.store import AlertStore
from alert_relay.alerts.subscribers import SubscriberRepository, ZoneRepository
from alert_relay.core.config import Settings
from alert_relay.core.database import close_db, create_db_engine, init_db


class FakeClock:
    """Monotonic clock whose sleep() just advances time."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingPacer:
    """Stands in for a limiter; counts acquire() calls."""

    def __init__(self):
        self.calls = 0

    def acquire(self) -> None:
        self.calls += 1


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def pacer() -> RecordingPacer:
    return RecordingPacer()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        ENVIRONMENT="testing",
        CONTACT_EMAIL="ops@example.org",
        DATABASE_URL=f"sqlite:///{tmp_path / 'alerts.sqlite'}",
        TIMEZONE="America/Indianapolis",
        PUSHOVER_ENABLED=True,
        NTFY_ENABLED=True,
        NTFY_TOPIC="weather-alerts",
        NTFY_BASE_URL="https://ntfy.example.org",
    )


@pytest.fixture
def engine(settings):
    engine = create_db_engine(settings)
    init_db(engine)
    yield engine
    close_db(engine)


@pytest.fixture
def store(engine) -> AlertStore:
    return AlertStore(engine, sleep=lambda seconds: None)


@pytest.fixture
def subscribers(store) -> SubscriberRepository:
    return SubscriberRepository(store)


@pytest.fixture
def zones(store) -> ZoneRepository:
    return ZoneRepository(store)
