"""SQLite database operations.

Handles database connection, session management and table creation.
"""

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..errors import StorageUnavailable
from .models import Base


class Database:
    """Database connection and session manager."""

    def __init__(self, db_path: Optional[str] = None, busy_timeout: float = 30.0):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file. If None, uses
                     CIRCULATION_DB_PATH env var or default location.
            busy_timeout: Seconds a writer waits for the database lock
        """
        if db_path is None:
            db_path = os.environ.get(
                "CIRCULATION_DB_PATH",
                str(Path.home() / ".circulation" / "library.db"),
            )

        self.db_path = Path(db_path)
        self._is_memory = str(db_path) == ":memory:"

        if not self._is_memory:
            self._ensure_directory()

        # For in-memory databases, use StaticPool to reuse the same connection
        # This ensures all sessions share the same in-memory database
        if self._is_memory:
            self.engine = create_engine(
                "sqlite:///:memory:",
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.engine = create_engine(
                f"sqlite:///{self.db_path}",
                echo=False,
                connect_args={"check_same_thread": False, "timeout": busy_timeout},
            )
            self._serialize_writers()
        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)
        self.ReadSessionLocal = sessionmaker(
            bind=self.engine.execution_options(circulation_read_only=True),
            autocommit=False,
            autoflush=False,
        )

    def _ensure_directory(self) -> None:
        """Ensure the database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _serialize_writers(self) -> None:
        """Start every write transaction with BEGIN IMMEDIATE.

        pysqlite defers BEGIN until the first write, so two sessions that
        both read before writing can deadlock on lock upgrade. Taking the
        write lock up front makes them queue on the busy timeout instead.
        Read-only sessions use a plain deferred BEGIN and never take it.
        """

        @event.listens_for(self.engine, "connect")
        def _disable_driver_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(self.engine, "begin")
        def _begin(conn):
            if conn.get_execution_options().get("circulation_read_only"):
                conn.exec_driver_sql("BEGIN")
            else:
                conn.exec_driver_sql("BEGIN IMMEDIATE")

    @property
    def is_memory(self) -> bool:
        """Whether this is a private in-memory database."""
        return self._is_memory

    def create_tables(self) -> None:
        """Create all database tables."""
        # Import store models to register them with Base
        from ..copies.models import BookCopy  # noqa: F401
        from ..ledger.models import BorrowingTransaction  # noqa: F401

        Base.metadata.create_all(self.engine)

    @contextmanager
    def get_session(self, write: bool = True) -> Generator[Session, None, None]:
        """Get a database session context manager.

        Commits on success and rolls back on any exception. Driver-level
        operational failures (locked or unreachable database) surface as
        StorageUnavailable.

        Args:
            write: False for read-only work, which must not hold the
                   database write lock
        """
        session = self.SessionLocal() if write else self.ReadSessionLocal()
        try:
            yield session
            session.commit()
        except OperationalError as e:
            session.rollback()
            raise StorageUnavailable(str(e.orig or e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


# Global database instance
_db: Optional[Database] = None


def get_db(db_path: Optional[str] = None, busy_timeout: float = 30.0) -> Database:
    """Get or create the global database instance."""
    global _db
    if _db is None:
        _db = Database(db_path, busy_timeout=busy_timeout)
        _db.create_tables()
    return _db


def reset_db() -> None:
    """Reset the global database instance. Used for testing."""
    global _db
    if _db is not None:
        _db.engine.dispose()
    _db = None
