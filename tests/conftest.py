"""Shared test fixtures."""
from datetime import datetime
from typing import Generator

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from screener.models import market, sync  # noqa: F401
from screener.models.market import LatestSnapshot


class FakeClock:
    """Monotonic-style clock + sleep that only advance when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeWallClock:
    """datetime clock for components that stamp naive-UTC datetimes."""

    def __init__(self, start: datetime = datetime(2025, 1, 15, 12, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="clock")
def clock_fixture() -> FakeClock:
    return FakeClock()


@pytest.fixture(name="wall_clock")
def wall_clock_fixture() -> FakeWallClock:
    return FakeWallClock()


@pytest.fixture(name="seed_snapshots")
def seed_snapshots_fixture(engine):
    """Insert LatestSnapshot rows: seed({"symbol": "AAA", "volume": 1e6, ...}, ...)."""

    def seed(*rows):
        with Session(engine) as s:
            for row in rows:
                s.add(LatestSnapshot(**{"price": 100.0, "volume": 1_000_000, **row}))
            s.commit()

    return seed
