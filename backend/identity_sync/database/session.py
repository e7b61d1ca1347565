"""
Database engine and session management.

The engine and session factory are built once at application startup
from Settings and stored on app.state; there is no module-level engine
singleton. Routes obtain a session through the get_db_session dependency.

Usage:
    from identity_sync.database.session import get_db_session

    @router.get("/items")
    def get_items(db: Session = Depends(get_db_session)):
        return db.query(Item).all()
"""

import logging
from typing import Generator

from fastapi import HTTPException, Request, status
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from identity_sync.config.settings import Settings
from identity_sync.db_base import Base

logger = logging.getLogger(__name__)


def enable_sqlite_foreign_keys(engine: Engine) -> None:
    """Turn on FK enforcement (and ON DELETE CASCADE) for SQLite connections."""

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_engine_from_settings(settings: Settings) -> Engine:
    """
    Create the database engine for the Local Identity Store.

    PostgreSQL uses connection pooling with sensible defaults:
    - pool_size: 5 connections
    - max_overflow: 10 additional connections under load
    - pool_pre_ping: Verify connections before use
    - statement_timeout: STORE_TIMEOUT_SECONDS, so a hung store call
      surfaces as a transient error instead of blocking the webhook
    """
    timeout_ms = int(settings.store_timeout_seconds * 1000)

    if settings.is_sqlite:
        connect_args = {
            "check_same_thread": False,
            "timeout": settings.store_timeout_seconds,
        }
        if ":memory:" in settings.database_url:
            engine = create_engine(
                settings.database_url,
                connect_args=connect_args,
                poolclass=StaticPool,
            )
        else:
            engine = create_engine(settings.database_url, connect_args=connect_args)
        enable_sqlite_foreign_keys(engine)
    else:
        engine = create_engine(
            settings.database_url,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
            pool_recycle=1800,
            pool_timeout=settings.store_timeout_seconds,
            connect_args={
                "connect_timeout": max(1, int(settings.store_timeout_seconds)),
                "options": f"-c statement_timeout={timeout_ms}",
            },
        )

    logger.info(
        "Database engine created",
        extra={"dialect": engine.dialect.name, "store_timeout_ms": timeout_ms},
    )
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create the session factory bound to the given engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_schema(engine: Engine) -> None:
    """Create all identity tables that do not exist yet."""
    import identity_sync.models  # noqa: F401 - registers model metadata

    Base.metadata.create_all(bind=engine)
    logger.info("Identity schema ready", extra={"tables": sorted(Base.metadata.tables)})


def get_db_session(request: Request) -> Generator[Session, None, None]:
    """
    FastAPI dependency for database sessions.

    Creates a new session for each request from the factory held on
    app.state and ensures proper cleanup. Raises HTTP 503 if the
    application started without a session factory.
    """
    session_factory = getattr(request.app.state, "session_factory", None)
    if session_factory is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not configured"
        )

    session = session_factory()
    try:
        yield session
    finally:
        session.close()
