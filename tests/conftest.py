from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from feedai.database import Base, init_db, make_engine, make_session_factory
from feedai.model_router import ModelRouter
from feedai.settings import DEFAULT_MODEL_TABLE


# ---------------------------------------------------------------------------
# Databases
# ---------------------------------------------------------------------------

@pytest.fixture
def session_factory():
    """In-memory SQLite shared by every session. Single-threaded use only."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield make_session_factory(engine)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def file_session_factory(tmp_path):
    """File-backed SQLite, one connection per thread, for worker-pool and concurrency tests."""
    engine = make_engine(f"sqlite:///{tmp_path / 'feedai-test.db'}")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


# ---------------------------------------------------------------------------
# Routing and time
# ---------------------------------------------------------------------------

TEST_CREDENTIALS = {"openai": "sk-test", "deepseek": "sk-test", "gemini": "test-key"}


@pytest.fixture
def model_router():
    return ModelRouter(DEFAULT_MODEL_TABLE, credentials=TEST_CREDENTIALS, timeout=5)


class FakeClock:
    """Naive-UTC clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2025, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()
