"""Shared test fixtures for the progression API test suite."""

import os

# Settings are read at import time; point the app at SQLite before anything imports it.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DATABASE_URL_SYNC"] = "sqlite:///:memory:"
os.environ["APP_ENV"] = "test"

import uuid  # noqa: E402
from collections.abc import AsyncGenerator  # noqa: E402
from datetime import datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine  # noqa: E402

import progression.models  # noqa: E402,F401  populate Base.metadata
from progression.core.database import Base  # noqa: E402
from progression.core.security import create_access_token  # noqa: E402
from progression.main import app  # noqa: E402
from progression.modules.gamification.router import (  # noqa: E402
    get_progression_service,
    get_readonly_progression_service,
)
from progression.modules.gamification.service import ProgressionService  # noqa: E402


class FakeClock:
    """Injectable clock; tests move it between UTC days."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, days: int = 0, hours: int = 0) -> None:
        self.now = self.now + timedelta(days=days, hours=hours)


START = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)

SAMPLE_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000002")
OTHER_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000003")
THIRD_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000004")


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine]:
    """File-backed SQLite per test, schema created from the models."""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'progression.db'}")

    # pysqlite defers BEGIN; take over transaction control so SAVEPOINT behaves
    @event.listens_for(test_engine.sync_engine, "connect")
    def _connect(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(test_engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
async def db(engine: AsyncEngine) -> AsyncGenerator[AsyncSession]:
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(START)


@pytest.fixture
def svc(db: AsyncSession, clock: FakeClock) -> ProgressionService:
    return ProgressionService(db, clock=clock)


@pytest.fixture
async def client(svc: ProgressionService) -> AsyncGenerator[AsyncClient]:
    app.dependency_overrides[get_progression_service] = lambda: svc
    app.dependency_overrides[get_readonly_progression_service] = lambda: svc
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(str(SAMPLE_USER_ID))}"}


@pytest.fixture
async def authenticated_client(client: AsyncClient, auth_headers: dict[str, str]) -> AsyncClient:
    client.headers.update(auth_headers)
    return client
