from __future__ import annotations

from contextlib import contextmanager

import redis
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from hostfleet.config import settings

_engine_kwargs: dict = dict(
    pool_pre_ping=True,
    future=True,
)

if settings.database_url.startswith("sqlite"):
    _engine_kwargs["connect_args"] = {"check_same_thread": False}
else:
    _engine_kwargs.update(
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_recycle=300,       # Recycle connections after 5 minutes
        pool_timeout=settings.db_pool_timeout,
        connect_args={"options": "-c statement_timeout=30000"},  # 30s max per SQL statement
    )

engine = create_engine(settings.database_url, **_engine_kwargs)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

# Shared Redis client for the reconciliation pass lock
_redis: redis.Redis | None = None


def get_redis() -> redis.Redis:
    """Get the shared Redis client, creating it if necessary."""
    global _redis
    if _redis is None:
        _redis = redis.from_url(settings.redis_url)
    return _redis


@contextmanager
def get_session():
    """Get a database session with proper cleanup for background tasks.

    Usage:
        with get_session() as session:
            # do work
            session.commit()  # if needed

    Rollback is always called before close (a no-op after a commit) so no
    "idle in transaction" connections leak from background work.
    """
    session = SessionLocal()
    try:
        yield session
    finally:
        try:
            session.rollback()
        except Exception:
            pass  # Ignore rollback errors
        session.close()
