import pytest
from datetime import UTC, datetime, timedelta

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from contentflow.storage.memory_storage import MemoryJobStore
from contentflow.storage.sql_storage import SqlJobStore


class FrozenClock:
    """A settable clock; tests move time forward explicitly."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FrozenClock(datetime(2024, 3, 15, 12, 0, tzinfo=UTC))


def make_sql_store(clock=None) -> SqlJobStore:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    return SqlJobStore(engine=engine, create_tables=True, clock=clock)


@pytest.fixture(params=["memory", "sql"])
def store(request, clock):
    if request.param == "memory":
        return MemoryJobStore(clock=clock)
    return make_sql_store(clock)


@pytest.fixture
def memory_store(clock):
    return MemoryJobStore(clock=clock)
