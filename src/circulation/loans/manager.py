"""Loan lifecycle manager.

Orchestrates borrow, return and extend against the availability tracker and
the reservation queues. Each command runs in a single session so its loan,
book and reservation writes commit together or not at all.
"""

import logging
import time
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..availability.tracker import AvailabilityTracker
from ..config import Config, get_config
from ..db.models import Member
from ..db.schemas import BookStatus
from ..db.sqlite import Database, get_db
from ..errors import (
    ConflictError,
    ConflictReason,
    ContentionError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
)
from ..reservations.manager import ReservationManager
from .models import Loan
from .schemas import ACTIVE_LOAN_STATUSES, LoanStatus

logger = logging.getLogger(__name__)

_ACTIVE_VALUES = [s.value for s in ACTIVE_LOAN_STATUSES]


class LoanManager:
    """Manages the borrow/extend/return lifecycle of loans."""

    def __init__(
        self,
        db: Optional[Database] = None,
        config: Optional[Config] = None,
        tracker: Optional[AvailabilityTracker] = None,
        reservations: Optional[ReservationManager] = None,
    ):
        """Initialize loan manager.

        Args:
            db: Database instance
            config: Configuration (uses global if not provided)
            tracker: Availability tracker sharing the same database
            reservations: Reservation manager sharing the same database
        """
        self.db = db or get_db()
        self.config = config or get_config()
        self.tracker = tracker or AvailabilityTracker(self.db)
        self.reservations = reservations or ReservationManager(self.db, self.config)

    @property
    def loan_period(self) -> timedelta:
        return timedelta(days=self.config.loan_period_days)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_loan(self, loan_id: str, session: Optional[Session] = None) -> Optional[Loan]:
        """Get a loan by ID."""

        def _get(s: Session) -> Optional[Loan]:
            return s.get(Loan, loan_id)

        if session:
            return _get(session)
        else:
            with self.db.get_session() as s:
                return _get(s)

    def get_active_loans(self, member_id: str) -> list[Loan]:
        """Get the loans a member currently holds (ACTIVE or EXTENDED)."""
        with self.db.get_session() as session:
            stmt = (
                select(Loan)
                .where(Loan.member_id == member_id, Loan.status.in_(_ACTIVE_VALUES))
                .order_by(Loan.due_date)
            )
            return list(session.execute(stmt).scalars().all())

    def get_loans_by_member(self, member_id: str) -> list[Loan]:
        """Get a member's full loan history, most recent first."""
        with self.db.get_session() as session:
            stmt = (
                select(Loan)
                .where(Loan.member_id == member_id)
                .order_by(Loan.borrow_date.desc(), Loan.created_at.desc())
            )
            return list(session.execute(stmt).scalars().all())

    def get_overdue_loans(self, today: Optional[date] = None) -> list[Loan]:
        """Get held loans whose due date has passed."""
        today = today or date.today()

        with self.db.get_session() as session:
            stmt = (
                select(Loan)
                .where(Loan.status.in_(_ACTIVE_VALUES), Loan.due_date < today)
                .order_by(Loan.due_date)
            )
            return list(session.execute(stmt).scalars().all())

    def get_loans_due_within(self, days: int, today: Optional[date] = None) -> list[Loan]:
        """Get held loans due between today and today + days (inclusive)."""
        today = today or date.today()
        end = today + timedelta(days=days)

        with self.db.get_session() as session:
            stmt = (
                select(Loan)
                .where(
                    Loan.status.in_(_ACTIVE_VALUES),
                    Loan.due_date >= today,
                    Loan.due_date <= end,
                )
                .order_by(Loan.due_date)
            )
            return list(session.execute(stmt).scalars().all())

    def count_active_loans(self, member_id: str, session: Optional[Session] = None) -> int:
        """Count the loans a member currently holds."""

        def _count(s: Session) -> int:
            stmt = select(func.count(Loan.id)).where(
                Loan.member_id == member_id, Loan.status.in_(_ACTIVE_VALUES)
            )
            return s.execute(stmt).scalar_one()

        if session:
            return _count(session)
        else:
            with self.db.get_session() as s:
                return _count(s)

    def _find_active_loan(self, member_id: str, book_id: str, session: Session) -> Optional[Loan]:
        stmt = select(Loan).where(
            Loan.member_id == member_id,
            Loan.book_id == book_id,
            Loan.status.in_(_ACTIVE_VALUES),
        )
        return session.execute(stmt).scalars().first()

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def borrow(self, member_id: str, book_id: str, today: Optional[date] = None) -> Loan:
        """Lend a book to a member.

        Transient storage contention is retried with linearly increasing
        backoff; business-rule rejections propagate on the first attempt.

        Args:
            member_id: Borrowing member
            book_id: Book to borrow
            today: Borrow date (default: today)

        Returns:
            Created ACTIVE loan

        Raises:
            NotFoundError: If the member or book does not exist
            ForbiddenError: If the member account is inactive
            ConflictError: ALREADY_BORROWED, NOT_AVAILABLE or LIMIT_REACHED
            ContentionError: If every attempt hit storage contention
        """
        max_attempts = max(1, self.config.borrow_retry_max)
        attempt = 0

        while True:
            attempt += 1
            try:
                return self._borrow_once(member_id, book_id, today or date.today())
            except ContentionError as e:
                if attempt == max_attempts:
                    logger.error(
                        "Borrow of book %s by %s failed after %d attempts",
                        book_id,
                        member_id,
                        attempt,
                    )
                    raise ContentionError(
                        f"Borrow failed after {attempt} attempts due to storage contention",
                        attempts=attempt,
                    ) from e
                delay = self.config.borrow_retry_delay * attempt
                logger.warning(
                    "Contention borrowing book %s (attempt %d/%d), retrying in %.2fs",
                    book_id,
                    attempt,
                    max_attempts,
                    delay,
                )
                time.sleep(delay)

    def _borrow_once(self, member_id: str, book_id: str, today: date) -> Loan:
        """Run the borrow checks and writes in one transaction."""
        with self.db.get_session() as session:
            member = session.get(Member, member_id)
            if not member:
                raise NotFoundError("Member", member_id)
            if not member.active:
                raise ForbiddenError("Member account is inactive")
            book = self.tracker.get_book(book_id, session)

            if self._find_active_loan(member_id, book_id, session):
                raise ConflictError(
                    ConflictReason.ALREADY_BORROWED, "Member already has this book borrowed"
                )

            if book.status != BookStatus.AVAILABLE.value:
                raise ConflictError(
                    ConflictReason.NOT_AVAILABLE, "Book is not available for borrowing"
                )

            held = self.reservations.get_ready_reservation(book_id, session)
            if held and held.member_id != member_id:
                raise ConflictError(
                    ConflictReason.NOT_AVAILABLE, "Book is held for another member's pickup"
                )

            if self.count_active_loans(member_id, session) >= self.config.max_active_loans:
                raise ConflictError(
                    ConflictReason.LIMIT_REACHED, "Member has reached the maximum loan limit"
                )

            loan = Loan(
                member=member,
                book=book,
                borrow_date=today,
                due_date=today + self.loan_period,
                status=LoanStatus.ACTIVE.value,
            )
            session.add(loan)
            self.tracker.set_status(book_id, BookStatus.BORROWED, session)
            fulfilled = self.reservations.fulfil_for_borrower(member_id, book_id, session)
            session.flush()

            logger.info(
                "Member %s borrowed book %s, due %s",
                member_id,
                book_id,
                loan.due_date.isoformat(),
            )
            if fulfilled:
                logger.info("Reservation %s fulfilled by loan %s", fulfilled.id, loan.id)
            return loan

    def return_book(self, loan_id: str, today: Optional[date] = None) -> Loan:
        """Close a loan and make the book available again.

        If members are waiting, the first in line is offered the book; the
        book itself stays AVAILABLE and the hold lives on the reservation.

        Raises:
            NotFoundError: If the loan does not exist
            InvalidStateError: If the loan is already returned
        """
        today = today or date.today()

        with self.db.get_session() as session:
            loan = self.get_loan(loan_id, session)
            if not loan:
                raise NotFoundError("Loan", loan_id)
            if not loan.is_active:
                raise InvalidStateError("Loan is not active")

            loan.return_date = today
            loan.status = LoanStatus.RETURNED.value
            loan.reminder_sent_at = None
            loan.updated_at = datetime.now()
            session.flush()

            self.tracker.set_status(loan.book_id, BookStatus.AVAILABLE, session)
            if self.reservations.has_active_demand(loan.book_id, session):
                self.reservations.promote_next(loan.book_id, session=session)

            logger.info("Loan %s returned on %s", loan_id, today.isoformat())
            return loan

    def extend(self, loan_id: str, today: Optional[date] = None) -> Loan:
        """Push a loan's due date out by one loan period.

        Raises:
            NotFoundError: If the loan does not exist
            InvalidStateError: If the loan is already returned
            ConflictError: OVERDUE if past due, HAS_DEMAND if members are
                waiting for the book
        """
        today = today or date.today()

        with self.db.get_session() as session:
            loan = self.get_loan(loan_id, session)
            if not loan:
                raise NotFoundError("Loan", loan_id)
            if not loan.is_active:
                raise InvalidStateError("Loan is not active")

            if loan.due_date < today:
                raise ConflictError(ConflictReason.OVERDUE, "Cannot extend an overdue loan")

            if self.reservations.has_active_demand(loan.book_id, session):
                raise ConflictError(
                    ConflictReason.HAS_DEMAND,
                    "Cannot extend loan - book has pending reservations",
                )

            loan.due_date = loan.due_date + self.loan_period
            loan.status = LoanStatus.EXTENDED.value
            loan.reminder_sent_at = None
            loan.updated_at = datetime.now()
            session.flush()

            logger.info("Loan %s extended, now due %s", loan_id, loan.due_date.isoformat())
            return loan

    def due_soon_reminder_sweep(self, now: Optional[datetime] = None) -> list[Loan]:
        """Mark held loans falling due soon as reminded.

        Selects loans without a reminder whose due date lies in the
        configured window (1-2 days ahead by default), logs a due-soon
        notice for each and stamps reminder_sent_at. Delivery is left to
        whatever consumes the log.

        Returns:
            Loans marked by this run
        """
        now = now or datetime.now()
        today = now.date()
        window_start = today + timedelta(days=self.config.reminder_start_days)
        window_end = today + timedelta(days=self.config.reminder_end_days)

        with self.db.get_session() as session:
            stmt = (
                select(Loan)
                .where(
                    Loan.status.in_(_ACTIVE_VALUES),
                    Loan.reminder_sent_at.is_(None),
                    Loan.due_date >= window_start,
                    Loan.due_date <= window_end,
                )
                .order_by(Loan.due_date)
            )
            due_soon = list(session.execute(stmt).scalars().all())

            if not due_soon:
                logger.debug(
                    "No loans due between %s and %s", window_start.isoformat(), window_end.isoformat()
                )
                return []

            for loan in due_soon:
                logger.info(
                    "Due-soon reminder -> %s <%s> | Book: '%s' | Due: %s",
                    loan.member.full_name,
                    loan.member.email or "no email",
                    loan.book.title,
                    loan.due_date.isoformat(),
                )
                loan.reminder_sent_at = now
                loan.updated_at = now
            session.flush()

            return due_soon
