"""Book availability tracking.

Holds each book's circulation status and exposes status reads and writes.
Has no knowledge of loans or reservation queues; callers pick the target
status.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.models import Book
from ..db.schemas import BookStatus
from ..db.sqlite import Database, get_db
from ..errors import NotFoundError

logger = logging.getLogger(__name__)


class AvailabilityTracker:
    """Reads and writes book availability status."""

    def __init__(self, db: Optional[Database] = None):
        """Initialize availability tracker.

        Args:
            db: Database instance
        """
        self.db = db or get_db()

    def is_available(self, book_id: str, session: Optional[Session] = None) -> bool:
        """Check whether a book can be borrowed.

        A book that does not exist is reported as not available.
        """

        def _check(s: Session) -> bool:
            book = s.get(Book, book_id)
            return book is not None and book.status == BookStatus.AVAILABLE.value

        if session:
            return _check(session)
        else:
            with self.db.get_session() as s:
                return _check(s)

    def get_book(self, book_id: str, session: Optional[Session] = None) -> Book:
        """Get a book by ID.

        Raises:
            NotFoundError: If the book does not exist
        """

        def _get(s: Session) -> Book:
            book = s.get(Book, book_id)
            if not book:
                raise NotFoundError("Book", book_id)
            return book

        if session:
            return _get(session)
        else:
            with self.db.get_session() as s:
                return _get(s)

    def get_status(self, book_id: str, session: Optional[Session] = None) -> BookStatus:
        """Get the current status of a book.

        Raises:
            NotFoundError: If the book does not exist
        """
        return BookStatus(self.get_book(book_id, session).status)

    def set_status(
        self,
        book_id: str,
        status: BookStatus,
        session: Optional[Session] = None,
    ) -> Book:
        """Write a book's status unconditionally.

        Args:
            book_id: Book ID
            status: Target status
            session: Session of the enclosing command, if any

        Returns:
            Updated book

        Raises:
            NotFoundError: If the book does not exist
        """

        def _set(s: Session) -> Book:
            book = self.get_book(book_id, s)
            if book.status != status.value:
                logger.debug("Book %s status %s -> %s", book_id, book.status, status.value)
            book.status = status.value
            s.flush()
            return book

        if session:
            return _set(session)
        else:
            with self.db.get_session() as s:
                return _set(s)

    def list_books(self, status: Optional[BookStatus] = None) -> list[Book]:
        """List books ordered by title.

        Args:
            status: Only return books with this status

        Returns:
            List of books
        """
        with self.db.get_session() as session:
            stmt = select(Book).order_by(Book.title)
            if status:
                stmt = stmt.where(Book.status == status.value)
            return list(session.execute(stmt).scalars().all())

    def get_available_books(self) -> list[Book]:
        """List books currently available for borrowing."""
        return self.list_books(BookStatus.AVAILABLE)
