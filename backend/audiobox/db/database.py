"""Database engine & session utilities.

The DB helper is deliberately minimal: sync engine + classic session maker.
Async callers hop onto a worker thread (see :mod:`audiobox.stores.records`).
"""

import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from audiobox.config import settings
from audiobox.db.base import Base

logger = logging.getLogger(__name__)


def _engine_kwargs(url: str) -> dict:
    kwargs: dict = {"echo": settings.DB_ECHO, "future": True}
    if url.startswith("sqlite"):
        # Sessions are opened from worker threads.
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url:
            # A single shared connection, otherwise every thread sees an empty DB.
            kwargs["poolclass"] = StaticPool
    return kwargs


logger.info("Creating database engine for %s", settings.DATABASE_URL.split('@')[-1])
engine = create_engine(settings.DATABASE_URL, **_engine_kwargs(settings.DATABASE_URL))

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
)


def create_tables() -> None:
    """Create all tables if they do not yet exist. Harmless when they do."""
    from audiobox import models  # noqa: F401 - registers every mapped class

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ensured")
