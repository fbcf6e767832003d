import os
import tempfile
from datetime import datetime, timedelta

# The app module builds its engine at import time; point it at a throwaway SQLite file.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///" + os.path.join(
    tempfile.mkdtemp(prefix="ventushub-tests-"), "app.db"
)
os.environ["DEBUG"] = "false"

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ventushub.config import Settings
from ventushub.models import Base


class FakeClock:
    """Settable naive-UTC clock injected wherever services take `clock=`."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ventushub.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    # 12:00 in São Paulo
    return FakeClock(datetime(2026, 3, 10, 15, 0, 0))


@pytest.fixture
def settings():
    return Settings(
        queue_backoff_jitter=0.0,
        queue_backoff_base_seconds=30.0,
        queue_max_attempts=3,
        delivery_timeout_seconds=0.05,
        smtp_host="",
        push_gateway_url="",
    )
