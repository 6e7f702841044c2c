"""Database configuration and session management.

Two engines are built from the same ``DATABASE_URL``:

* an asynchronous engine + ``AsyncSessionLocal`` used by the FastAPI
  request handlers;
* a synchronous engine + ``SessionLocal`` used by Dramatiq worker
  processes, where the batch-session merge runs inside a short
  ``SELECT ... FOR UPDATE`` transaction.

PostgreSQL URLs are normalised to the psycopg (v3) driver, which serves
both engines.  SQLite URLs use ``aiosqlite`` for the async engine and
``pysqlite`` for the sync one.  SQLite has no row locks, so the sync
engine opens every transaction with ``BEGIN IMMEDIATE``; concurrent
writers then serialise on the database-level reserved lock, which gives
the merge the same mutual exclusion a Postgres row lock provides.
"""

from __future__ import annotations

import logging
import os
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from reimburseme.core.config import settings

logger = logging.getLogger(__name__)

_POSTGRES_DRIVERS = {
    "postgres",
    "postgresql",
    "postgresql+psycopg",
    "postgresql+psycopg2",
    "postgresql+asyncpg",
}

# Seconds a SQLite connection waits on a locked database before failing.
SQLITE_BUSY_TIMEOUT = 30


def resolve_database_url() -> str:
    """Return the configured database URL or the development SQLite fallback."""
    db_url = settings.DATABASE_URL or os.getenv("DATABASE_URL")
    if db_url:
        return db_url
    if not settings.DB_DEV_FALLBACK_SQLITE:
        raise RuntimeError(
            "No database URL provided via DATABASE_URL; with "
            "DB_DEV_FALLBACK_SQLITE=false, a Postgres URL is required."
        )
    return "sqlite:///./reimburseme.db"


def normalise_url(raw: str, *, use_async: bool) -> URL:
    """Pick the driver for ``raw`` according to the engine flavour."""
    url_obj = make_url(raw)
    driver = url_obj.drivername or ""
    if driver.startswith("sqlite"):
        return url_obj.set(drivername="sqlite+aiosqlite" if use_async else "sqlite")
    if driver in _POSTGRES_DRIVERS:
        q = dict(url_obj.query or {})
        # Ensure channel binding doesn't block authentication
        if q.get("channel_binding") == "require" or "channel_binding" not in q:
            q["channel_binding"] = "disable"
        return url_obj.set(drivername="postgresql+psycopg", query=q)
    return url_obj


def is_sqlite(url: URL) -> bool:
    return url.get_backend_name() == "sqlite"


def enable_sqlite_write_locking(sync_engine: Engine) -> None:
    """Make every transaction on ``sync_engine`` take SQLite's reserved lock.

    pysqlite normally defers ``BEGIN`` until the first write, so two workers
    could both read the same ``files`` column before either writes.  Taking
    over transaction control and issuing ``BEGIN IMMEDIATE`` forces the
    second writer to wait at the start of its transaction.
    """

    @event.listens_for(sync_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):  # pragma: no cover - driver hook
        dbapi_connection.isolation_level = None

    @event.listens_for(sync_engine, "begin")
    def _begin_immediate(conn):  # pragma: no cover - driver hook
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_sync_engine(raw_url: str) -> Engine:
    url = normalise_url(raw_url, use_async=False)
    if is_sqlite(url):
        sync_engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
        )
        enable_sqlite_write_locking(sync_engine)
        return sync_engine
    return create_engine(
        url,
        pool_pre_ping=True,  # Test connections before using them
        pool_size=5,
        max_overflow=10,
        pool_recycle=3600,  # Recycle connections after 1 hour
    )


def build_async_engine(raw_url: str):
    url = normalise_url(raw_url, use_async=True)
    connect_args: dict[str, Any] = {}
    if is_sqlite(url):
        connect_args["timeout"] = SQLITE_BUSY_TIMEOUT
    return create_async_engine(url, echo=False, pool_pre_ping=True, connect_args=connect_args)


db_url = resolve_database_url()

engine = build_async_engine(db_url)
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

sync_engine = build_sync_engine(db_url)
SessionLocal = sessionmaker(bind=sync_engine, autoflush=False, expire_on_commit=False)

# Declarative base
Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that yields a database session.

    Each session is scoped to the request and closed after use.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db() -> None:
    """Create all tables declared on ``Base`` (development convenience)."""
    async with engine.begin() as conn:
        # Import all models to ensure metadata is populated
        from reimburseme.models import tables  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)


def get_db_debug_info() -> Dict[str, Any]:
    """Return non-sensitive information about the current DB engine for debugging."""
    info: Dict[str, Any] = {"environment": (settings.ENVIRONMENT or "development")}
    try:
        url_obj: Optional[URL] = engine.url
        info.update(
            {
                "drivername": url_obj.drivername,
                "host": url_obj.host,
                "port": url_obj.port,
                "database": url_obj.database,
                # render_as_string hides the password by default
                "url": url_obj.render_as_string(),
            }
        )
    except Exception as ex:
        info.update({"error": f"unable to parse engine url: {ex}"})
    return info
