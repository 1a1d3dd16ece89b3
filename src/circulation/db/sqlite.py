"""SQLite database operations.

Handles database connection, session management, contention detection and
CRUD for the catalog and membership tables.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import Engine, create_engine, event, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool

from ..config import get_config
from ..errors import ContentionError
from .models import Base, Book, Member
from .schemas import BookCreate, MemberCreate

# SQLITE_BUSY, SQLITE_LOCKED (primary result codes; extended codes share the low byte)
_SQLITE_CONTENTION_CODES = frozenset({5, 6})


def is_contention(error: Exception) -> bool:
    """Check whether a storage error is a transient write conflict.

    Matches on exception type and SQLite result code only.
    """
    if isinstance(error, StaleDataError):
        return True
    if isinstance(error, OperationalError):
        code = getattr(error.orig, "sqlite_errorcode", None)
        return code is not None and (code & 0xFF) in _SQLITE_CONTENTION_CODES
    return False


def _serialize_writers(engine: Engine) -> None:
    """Open every transaction with BEGIN IMMEDIATE.

    A command's reads and the writes based on them then share one write
    lock. A lock still held elsewhere after the busy timeout surfaces as
    SQLITE_BUSY.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    """Database connection and operations manager."""

    def __init__(self, db_path: Optional[str] = None, busy_timeout: float = 5.0):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file, or ":memory:". If None,
                     uses the configured CIRCULATION_DB_PATH.
            busy_timeout: Seconds a file database waits for the write lock
        """
        if db_path is None:
            db_path = str(get_config().db_path)

        self.db_path = Path(db_path)
        self._is_memory = str(db_path) == ":memory:"

        if not self._is_memory:
            self._ensure_directory()

        # For in-memory databases, use StaticPool to reuse the same connection
        # so all sessions share the same in-memory database
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
            _serialize_writers(self.engine)
        # Returned entities stay readable after their session closes
        self.SessionLocal = sessionmaker(
            bind=self.engine, autocommit=False, autoflush=False, expire_on_commit=False
        )

    def _ensure_directory(self) -> None:
        """Ensure the database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def create_tables(self) -> None:
        """Create all database tables."""
        # Import loan and reservation models to register them with Base
        from ..loans.models import Loan  # noqa: F401
        from ..reservations.models import Reservation  # noqa: F401

        Base.metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        """Drop all database tables. Use with caution!"""
        Base.metadata.drop_all(self.engine)

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Get a transactional session context manager.

        Commits on success and rolls back on any error, so each block is
        all-or-nothing. Transient write conflicts surface as ContentionError.
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except (StaleDataError, OperationalError) as e:
            session.rollback()
            if is_contention(e):
                raise ContentionError(f"Storage contention: {e}") from e
            raise
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ========================================================================
    # Member Operations
    # ========================================================================

    def create_member(self, member: MemberCreate, session: Optional[Session] = None) -> Member:
        """Register a new member."""

        def _create(s: Session) -> Member:
            existing = s.execute(
                select(Member).where(Member.username == member.username)
            ).scalar_one_or_none()
            if existing:
                raise ValueError(f"Member already exists: {member.username}")

            db_member = Member(
                username=member.username,
                full_name=member.full_name,
                email=member.email,
            )
            s.add(db_member)
            s.flush()
            return db_member

        if session:
            return _create(session)
        else:
            with self.get_session() as s:
                return _create(s)

    def get_member(self, member_id: str, session: Optional[Session] = None) -> Optional[Member]:
        """Get a member by ID."""

        def _get(s: Session) -> Optional[Member]:
            return s.get(Member, member_id)

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                return _get(s)

    def get_member_by_username(
        self, username: str, session: Optional[Session] = None
    ) -> Optional[Member]:
        """Get a member by username (case insensitive)."""

        def _get(s: Session) -> Optional[Member]:
            stmt = select(Member).where(Member.username == username.strip().lower())
            return s.execute(stmt).scalar_one_or_none()

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                return _get(s)

    def set_member_active(
        self, member_id: str, active: bool, session: Optional[Session] = None
    ) -> Optional[Member]:
        """Activate or deactivate a member. Inactive members cannot borrow or reserve."""

        def _set(s: Session) -> Optional[Member]:
            member = s.get(Member, member_id)
            if member:
                member.active = active
                s.flush()
            return member

        if session:
            return _set(session)
        else:
            with self.get_session() as s:
                return _set(s)

    def get_all_members(self, session: Optional[Session] = None) -> list[Member]:
        """Get all members ordered by username."""

        def _get(s: Session) -> list[Member]:
            stmt = select(Member).order_by(Member.username)
            return list(s.execute(stmt).scalars().all())

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                return _get(s)

    # ========================================================================
    # Book Operations
    # ========================================================================

    def create_book(self, book: BookCreate, session: Optional[Session] = None) -> Book:
        """Add a book to the catalog. New books start AVAILABLE."""

        def _create(s: Session) -> Book:
            if self.get_book_by_isbn(book.isbn, s):
                raise ValueError(f"Book with ISBN {book.isbn} already exists")

            db_book = Book(
                isbn=book.isbn,
                title=book.title,
                author=book.author,
                publisher=book.publisher,
            )
            s.add(db_book)
            s.flush()
            return db_book

        if session:
            return _create(session)
        else:
            with self.get_session() as s:
                return _create(s)

    def get_book(self, book_id: str, session: Optional[Session] = None) -> Optional[Book]:
        """Get a book by ID."""

        def _get(s: Session) -> Optional[Book]:
            return s.get(Book, book_id)

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                return _get(s)

    def get_book_by_isbn(self, isbn: str, session: Optional[Session] = None) -> Optional[Book]:
        """Get a book by ISBN."""

        def _get(s: Session) -> Optional[Book]:
            stmt = select(Book).where(Book.isbn == isbn.strip())
            return s.execute(stmt).scalar_one_or_none()

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                return _get(s)


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
