"""Synchronous SQLAlchemy session factory for Celery tasks.

Celery tasks run in separate processes and cannot use the async engine.
The engine is created lazily so importing the task module never opens a pool.
"""

from contextlib import contextmanager
from collections.abc import Generator

import structlog
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from progression.core.config import settings

logger = structlog.get_logger()

_engine: Engine | None = None
_SessionFactory: sessionmaker | None = None


def _session_factory() -> sessionmaker:
    global _engine, _SessionFactory
    if _SessionFactory is None:
        sync_url = (
            str(settings.DATABASE_URL_SYNC)
            .replace("postgresql+asyncpg://", "postgresql://")
            .replace("+asyncpg", "")
        )
        _engine = create_engine(
            sync_url,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)
        logger.info("celery_db.engine_created")
    return _SessionFactory


@contextmanager
def get_celery_db_session() -> Generator[Session, None, None]:
    """Yield a sync session. Commits on clean exit, rolls back on exception."""
    session: Session = _session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
