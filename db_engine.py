"""
Database engine and session management for BahtLedger.

One process-wide SQLModel engine over SQLite. Every pooled connection is
switched to WAL journaling with a busy timeout when it is opened, so the
monitor process and an interactive session can share the database file.
"""

import logging
from typing import Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, Session, create_engine

from config import get_settings

logger = logging.getLogger(__name__)

SQLITE_PRAGMAS = (
    ("journal_mode", "WAL"),
    ("busy_timeout", "5000"),
    ("synchronous", "NORMAL"),
)

_engine: Optional[Engine] = None


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _apply_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    """Connection hook: set the per-connection PRAGMAs."""
    cursor = dbapi_connection.cursor()
    try:
        for name, value in SQLITE_PRAGMAS:
            cursor.execute(f"PRAGMA {name}={value}")
    finally:
        cursor.close()


def get_engine() -> Engine:
    """Get or create the database engine for the configured URL."""
    global _engine
    if _engine is None:
        settings = get_settings()
        sqlite = _is_sqlite(settings.database_url)
        _engine = create_engine(
            settings.database_url,
            echo=settings.db_echo,
            # Sessions are opened from scheduler and quote worker threads
            connect_args={"check_same_thread": False} if sqlite else {},
        )
        if sqlite:
            event.listen(_engine, "connect", _apply_sqlite_pragmas)
            logger.info(f"SQLite engine ready ({settings.database_url}, WAL)")
    return _engine


def init_db() -> None:
    """Create all tables."""
    from models import Portfolio, Holding, Transaction, AppSettings, CurrencyRate  # noqa: F401

    SQLModel.metadata.create_all(get_engine())
    logger.info("Database initialized")


def reset_engine() -> None:
    """Dispose the current engine so the next call picks up fresh settings."""
    global _engine
    if _engine is not None:
        _engine.dispose()
        _engine = None


def get_session(expire_on_commit: bool = True) -> Session:
    """
    Open a new session on the shared engine.
    Pass expire_on_commit=False when returned objects must stay readable after commit.
    """
    return Session(get_engine(), expire_on_commit=expire_on_commit)
