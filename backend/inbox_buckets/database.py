"""Database engine and sessions.

API handlers, Celery tasks and the CLI share one sync engine. Classification
workers never open a session: the caller persists results after a run settles.
"""

from __future__ import annotations

from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import URL, Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from .config import settings


def _is_sqlite(url: URL) -> bool:
    return url.drivername.startswith("sqlite")


def _sqlite_engine(url: URL) -> Engine:
    # One connection per checkout so worker threads never share a handle.
    engine = create_engine(
        url,
        connect_args={
            "check_same_thread": False,
            "timeout": max(0.0, settings.sqlite_busy_timeout_ms / 1000.0),
        },
        poolclass=NullPool,
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        """WAL for concurrent readers, busy_timeout to wait on locks, FKs for ON DELETE SET NULL."""
        cursor = dbapi_connection.cursor()
        try:
            for pragma in (
                "journal_mode=WAL",
                "synchronous=NORMAL",
                f"busy_timeout={int(settings.sqlite_busy_timeout_ms)}",
                "foreign_keys=ON",
            ):
                cursor.execute(f"PRAGMA {pragma};")
        finally:
            cursor.close()

    return engine


def _postgres_engine(url: URL) -> Engine:
    # Plain postgresql:// would pick psycopg2; this project ships psycopg 3.
    if url.drivername == "postgresql":
        url = url.set(drivername="postgresql+psycopg")
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=max(1, settings.db_pool_size),
        max_overflow=max(0, settings.db_max_overflow),
        pool_timeout=max(1, settings.db_pool_timeout_s),
        pool_recycle=max(0, settings.db_pool_recycle_s),
    )


def make_engine(database_url: str) -> Engine:
    url = make_url(database_url)
    return _sqlite_engine(url) if _is_sqlite(url) else _postgres_engine(url)


engine = make_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db():
    """
    Create tables for SQLite only.

    Postgres schema is managed via Alembic.
    """
    if not _is_sqlite(engine.url):
        return
    from .models import Base
    Base.metadata.create_all(bind=engine)


def get_sync_db() -> Generator:
    """Dependency that yields a sync DB session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
