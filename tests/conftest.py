"""Pytest fixtures for payout engine tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Iterator
from uuid import uuid4

import pytest
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from payout_engine.config import PayoutConfig, Settings
from payout_engine.database import create_engine_for, create_schema, create_session_factory
from payout_engine.gateways import StubGateway
from payout_engine.models import AppointmentSessionRow
from payout_engine.notifications import NotificationDispatcher, RecordingNotifier
from payout_engine.services.policies import FlatFeeRatePolicy
from payout_engine.services.scheduled_run import ScheduledPaymentRun
from payout_engine.store.sql import SqlDataStore

UTC = timezone.utc

# Monday 2024-01-08 16:00 UTC: one hour past the cutoff of cycle 2024-01-01
FIXED_NOW = datetime(2024, 1, 8, 16, 0, tzinfo=UTC)


def utc(*args: int) -> datetime:
    """Shorthand for an aware UTC datetime."""
    return datetime(*args, tzinfo=UTC)


class FixedClock:
    """Clock returning a settable instant."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> datetime:
        self.now = self.now + delta
        return self.now


def make_settings(**overrides: Any) -> Settings:
    """Settings for tests, without reading the environment."""
    values: dict[str, Any] = {
        "database_url": "sqlite://",
        "cron_secret": None,
        "host": "127.0.0.1",
        "port": 8000,
        "debug": False,
        "log_level": "INFO",
        "gateway": "stub",
        "gateway_url": None,
        "gateway_api_key": None,
        "gateway_timeout_seconds": 5.0,
        "max_charge_attempts": 3,
        "default_hourly_rate": Decimal("0.00"),
        "default_fee_rate": Decimal("0.20"),
    }
    values.update(overrides)
    return Settings(**values)


class PayoutTestData:
    """Helper for writing booking-side rows the engine reads."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    def add_session(
        self,
        start: datetime,
        end: datetime,
        *,
        professional_id: str = "pro-1",
        session_id: str | None = None,
        completed: bool = True,
        hourly_rate: Decimal | None = Decimal("25.00"),
        platform_fee_rate: Decimal | None = None,
    ) -> str:
        """Insert an appointment session and return its id."""
        session_id = session_id or f"sess-{uuid4().hex[:10]}"
        with self.session_factory.begin() as session:
            session.add(
                AppointmentSessionRow(
                    session_id=session_id,
                    professional_id=professional_id,
                    start_time=start,
                    end_time=end,
                    completed=completed,
                    hourly_rate=hourly_rate,
                    platform_fee_rate=platform_fee_rate,
                )
            )
        return session_id


@pytest.fixture
def database_url(tmp_path) -> str:
    """File-backed SQLite so several connections see the same data."""
    return f"sqlite:///{tmp_path / 'payouts.db'}"


@pytest.fixture
def engine(database_url: str) -> Iterator[Engine]:
    """Create test database engine with the schema applied."""
    engine = create_engine_for(database_url)
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return create_session_factory(engine)


@pytest.fixture
def store(session_factory: sessionmaker[Session]) -> SqlDataStore:
    return SqlDataStore(session_factory, retry_attempts=3, retry_pause_seconds=0)


@pytest.fixture
def config() -> PayoutConfig:
    return PayoutConfig(store_retry_pause_seconds=0, gateway_timeout_seconds=2.0)


@pytest.fixture
def gateway() -> StubGateway:
    return StubGateway()


@pytest.fixture
def recorder() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def dispatcher(recorder: RecordingNotifier) -> NotificationDispatcher:
    dispatcher = NotificationDispatcher()
    dispatcher.on_all(recorder)
    return dispatcher


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(FIXED_NOW)


@pytest.fixture
def runner(
    store: SqlDataStore,
    gateway: StubGateway,
    config: PayoutConfig,
    dispatcher: NotificationDispatcher,
    clock: FixedClock,
) -> Iterator[ScheduledPaymentRun]:
    """Payment run wired to the test database, stub gateway and fixed clock."""
    runner = ScheduledPaymentRun(
        store,
        gateway,
        config=config,
        dispatcher=dispatcher,
        fee_rate_policy=FlatFeeRatePolicy(Decimal("0.20")),
        clock=clock,
    )
    yield runner
    runner.close()


@pytest.fixture
def data(session_factory: sessionmaker[Session]) -> PayoutTestData:
    return PayoutTestData(session_factory)
