import structlog
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from progression.core.config import settings

logger = structlog.get_logger()


def _engine_kwargs(url: str) -> dict:
    """Pool and timeout settings; SQLite (local dev) gets none of them."""
    if make_url(url).get_backend_name() != "postgresql":
        return {}
    return {
        "pool_size": 20,
        "max_overflow": 10,
        "pool_pre_ping": True,               # Drop stale connections before use
        "pool_recycle": 1800,                # Recycle connections every 30 min
        "pool_timeout": 30,
        "connect_args": {
            "server_settings": {
                "statement_timeout": "30000",                    # 30s max per SQL statement
                "idle_in_transaction_session_timeout": "60000",
                "lock_timeout": "10000",                         # 10s max waiting for a row lock
            },
            "command_timeout": 30,
        },
    }


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.APP_DEBUG,
    **_engine_kwargs(settings.DATABASE_URL),
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# ── Read replica (optional) ───────────────────────────────────────────────────
# Falls back to primary when DATABASE_URL_READ_REPLICA is not set.

_read_replica_url = settings.DATABASE_URL_READ_REPLICA
if _read_replica_url:
    _read_engine = create_async_engine(
        _read_replica_url,
        echo=settings.APP_DEBUG,
        **_engine_kwargs(_read_replica_url),
    )
    logger.info("read_replica_configured")
else:
    _read_engine = engine  # type: ignore[assignment]

read_only_session_factory = async_sessionmaker(
    _read_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncSession:  # type: ignore[misc]
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def get_readonly_db() -> AsyncSession:  # type: ignore[misc]
    """Read-only session: routed to replica if DATABASE_URL_READ_REPLICA is set.

    Use for dashboards and leaderboards; never for the award path.
    """
    async with read_only_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
