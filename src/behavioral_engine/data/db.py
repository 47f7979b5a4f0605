"""Database engine, session factory and declarative base."""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _is_memory_sqlite(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url


class Database:
    """Owns the engine and hands out transactional sessions.

    Every pipeline unit of work opens its own session through
    ``session_scope`` so units stay independent of each other.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        engine_kwargs = {"echo": echo, "pool_pre_ping": True}

        if _is_sqlite(url):
            engine_kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
            if _is_memory_sqlite(url):
                engine_kwargs["poolclass"] = StaticPool

        self.engine: Engine = create_engine(url, **engine_kwargs)

        if _is_sqlite(url):
            event.listen(self.engine, "connect", _sqlite_pragmas)

        self.SessionLocal = sessionmaker(
            bind=self.engine, expire_on_commit=False, autoflush=False
        )

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def create_all(self) -> None:
        """Create all tables (idempotent)."""
        # Import models so they register on Base.metadata
        from behavioral_engine.data import models  # noqa: F401
        Base.metadata.create_all(self.engine)

    def drop_all(self) -> None:
        from behavioral_engine.data import models  # noqa: F401
        Base.metadata.drop_all(self.engine)

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Transactional scope: commit on success, roll back on error."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()


def _sqlite_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


# Singleton instance
_database: Optional[Database] = None
_database_lock = threading.Lock()


def get_database() -> Database:
    """Get the process-wide database built from configuration."""
    global _database
    if _database is None:
        with _database_lock:
            if _database is None:
                from behavioral_engine.common.config import get_config
                config = get_config()
                _database = Database(config.database_url, echo=config.database_echo)
                logger.info("Database engine created for dialect %s", _database.dialect)
    return _database


def reset_database() -> None:
    """Dispose and forget the process-wide database (for testing)."""
    global _database
    with _database_lock:
        if _database is not None:
            _database.dispose()
        _database = None
