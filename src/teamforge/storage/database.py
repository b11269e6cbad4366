"""
Database — SQLAlchemy engine and session management.

Sessions are short-lived: every store operation opens one, commits on success,
rolls back on error. No session is held across an adapter call.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .models import Base

logger = logging.getLogger(__name__)


class Database:
    """
    Engine + session factory.

    Usage:
        db = Database("sqlite:///.data/teamforge.db")
        with db.session() as session:
            session.add(...)
    """

    def __init__(self, url: str, echo: bool = False, create_tables: bool = True):
        """
        Initialize database.

        Args:
            url: SQLAlchemy database URL
            echo: Log SQL statements
            create_tables: Create missing tables on startup
        """
        self.url = url
        connect_args = {}
        if url.startswith("sqlite"):
            # Workers and the API run sessions from multiple threads.
            connect_args = {"check_same_thread": False}
            self._ensure_sqlite_dir(url)

        self.engine: Engine = create_engine(
            url, echo=echo, pool_pre_ping=True, connect_args=connect_args
        )
        if url.startswith("sqlite"):
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

        self.SessionLocal = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False
        )

        if create_tables:
            Base.metadata.create_all(self.engine)

        logger.info(f"Database initialized: {self.engine.url.render_as_string(hide_password=True)}")

    @staticmethod
    def _ensure_sqlite_dir(url: str) -> None:
        prefix = "sqlite:///"
        if url.startswith(prefix) and url != prefix and ":memory:" not in url:
            Path(url[len(prefix):]).parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Transactional session scope."""
        s: Session = self.SessionLocal()
        try:
            yield s
            s.commit()
        except Exception:
            s.rollback()
            raise
        finally:
            s.close()

    def dispose(self) -> None:
        """Close all pooled connections."""
        self.engine.dispose()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
