"""SQLite database operations.

Handles database connection and session management. Each session is one
transaction: it commits when the block exits cleanly and rolls back on any
exception.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import get_config
from .models import Base, Item, LedgerEntry


class Database:
    """Database connection and session manager."""

    def __init__(self, db_path: Optional[str] = None, busy_timeout: Optional[float] = None):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file, or ":memory:". If None,
                     uses LIBCIRC_DB_PATH via the global config.
            busy_timeout: Seconds to wait on a locked database before the
                          driver raises OperationalError.
        """
        if db_path is None or busy_timeout is None:
            config = get_config()
            db_path = db_path if db_path is not None else str(config.db_path)
            busy_timeout = busy_timeout if busy_timeout is not None else config.busy_timeout

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
        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)

    @property
    def is_memory(self) -> bool:
        return self._is_memory

    def _ensure_directory(self) -> None:
        """Ensure the database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def create_tables(self) -> None:
        """Create all database tables."""
        Base.metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        """Drop all database tables. Use with caution!"""
        Base.metadata.drop_all(self.engine)

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Get a database session context manager."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ========================================================================
    # Read helpers
    # ========================================================================

    def count_items(self, session: Optional[Session] = None) -> int:
        """Count registered items."""

        def _count(s: Session) -> int:
            return s.execute(select(func.count()).select_from(Item)).scalar() or 0

        if session:
            return _count(session)
        with self.get_session() as s:
            return _count(s)

    def get_ledger_entries(self, session: Optional[Session] = None) -> list[LedgerEntry]:
        """Get every ledger tally."""

        def _get(s: Session) -> list[LedgerEntry]:
            stmt = select(LedgerEntry).order_by(LedgerEntry.borrower_id, LedgerEntry.item_type)
            return list(s.execute(stmt).scalars().all())

        if session:
            return _get(session)
        with self.get_session() as s:
            entries = _get(s)
            for entry in entries:
                s.expunge(entry)
            return entries


# Global database instance
_db: Optional[Database] = None


def get_db(db_path: Optional[str] = None) -> Database:
    """Get or create the global database instance."""
    global _db
    if _db is None:
        _db = Database(db_path)
        _db.create_tables()
    return _db


def reset_db() -> None:
    """Reset the global database instance. Used for testing."""
    global _db
    _db = None
