"""
Database layer — SQLite via SQLAlchemy 2.0.

Provides:
    • Engine construction with per-connection pragmas (WAL, foreign keys)
    • Session factory and a transactional session scope
    • Base model for ORM entities
    • Schema creation

Usage:
    from alert_relay.core.database import create_db_engine, init_db, session_scope

    engine = create_db_engine(settings)
    init_db(engine)
    factory = create_session_factory(engine)
    with session_scope(factory) as session:
        session.execute(select(IncomingAlertRow))
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from alert_relay.core.config import Settings

logger = logging.getLogger(__name__)


# ── ORM Base ──
class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


def _set_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _ensure_sqlite_directory(url: str) -> None:
    database = make_url(url).database
    if database and database != ":memory:":
        Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)


# ── Engine ──
def create_db_engine(settings: Settings) -> Engine:
    """Build the engine for ``settings.DATABASE_URL``."""
    url = settings.DATABASE_URL
    connect_args: Dict[str, Any] = {}
    if url.startswith("sqlite"):
        _ensure_sqlite_directory(url)
        # sqlite3 busy handler: wait this long on a locked database
        connect_args["timeout"] = settings.DATABASE_BUSY_TIMEOUT

    engine = create_engine(
        url,
        echo=settings.DATABASE_ECHO,
        connect_args=connect_args,
    )
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


# ── Session Factory ──
def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """Yield a session that commits on success and rolls back on any error."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ── Lifecycle ──
def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    from alert_relay.alerts import tables  # noqa: F401  (registers models)

    Base.metadata.create_all(engine)
    logger.info("Database tables initialised")


def close_db(engine: Engine) -> None:
    """Dispose engine connections."""
    engine.dispose()
    logger.info("Database connections closed")
