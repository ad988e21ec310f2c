"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.pool import StaticPool

from canopy.database.engine import create_db_engine, enable_sqlite_transactions
from canopy.database.models import Base
from canopy.engine.catalog import ChallengeCatalog
from canopy.errors import RewardDispatchError
from canopy.services.challenge_service import ChallengeService


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Canopy tables.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in the API layer).
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_transactions(engine)
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def file_engine(tmp_path) -> Engine:
    """File-backed SQLite engine with a real connection pool.

    Needed by tests that run many threads at once, where a single shared
    in-memory connection would interleave transactions.
    """
    engine = create_db_engine(f"sqlite:///{tmp_path / 'canopy.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


class FakeClock:
    """Settable clock; starts at 2024-01-01 12:00 UTC."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeLedger:
    """In-memory points ledger honouring idempotency keys.

    Set ``fail = True`` to simulate an unreachable ledger.
    """

    def __init__(self) -> None:
        self.fail = False
        self.calls: list[tuple[str, int, str]] = []
        self.applied: dict[str, int] = {}

    def award(self, user_id: str, amount: int, idempotency_key: str) -> bool:
        self.calls.append((user_id, amount, idempotency_key))
        if self.fail:
            raise RewardDispatchError("ledger offline", user_id=user_id)
        self.applied.setdefault(f"{user_id}/{idempotency_key}", amount)
        return True

    def balance(self, user_id: str) -> int:
        prefix = f"{user_id}/"
        return sum(v for k, v in self.applied.items() if k.startswith(prefix))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def catalog() -> ChallengeCatalog:
    return ChallengeCatalog()


@pytest.fixture
def service(db_engine, catalog, ledger, clock) -> ChallengeService:
    """ChallengeService over the in-memory database with the built-in catalog."""
    return ChallengeService(db_engine, catalog, ledger, clock=clock)
