"""Reservation queue manager.

Maintains, per book, an ordered queue of PENDING reservations and at most
one READY_FOR_PICKUP hold. Queue position is the only ordering truth: the
lowest PENDING position is always the next member offered the book.

Whenever a reservation leaves PENDING the queue is renumbered by computing
every entry's final position directly, so the PENDING positions for a book
always read 1..N.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..config import Config, get_config
from ..db.models import Book, Member
from ..db.sqlite import Database, get_db
from ..errors import (
    ConflictError,
    ConflictReason,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
)
from .models import Reservation
from .schemas import ACTIVE_RESERVATION_STATUSES, ReservationStatus

logger = logging.getLogger(__name__)

_ACTIVE_VALUES = [s.value for s in ACTIVE_RESERVATION_STATUSES]


class ReservationManager:
    """Manages per-book reservation queues."""

    def __init__(self, db: Optional[Database] = None, config: Optional[Config] = None):
        """Initialize reservation manager.

        Args:
            db: Database instance
            config: Configuration (uses global if not provided)
        """
        self.db = db or get_db()
        self.config = config or get_config()

    @property
    def pickup_window(self) -> timedelta:
        """How long a promoted reservation is held for pickup."""
        return timedelta(hours=self.config.pickup_window_hours)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_reservation(
        self, reservation_id: str, session: Optional[Session] = None
    ) -> Optional[Reservation]:
        """Get a reservation by ID."""

        def _get(s: Session) -> Optional[Reservation]:
            return s.get(Reservation, reservation_id)

        if session:
            return _get(session)
        else:
            with self.db.get_session() as s:
                return _get(s)

    def get_user_reservations(self, member_id: str) -> list[Reservation]:
        """Get a member's PENDING and READY_FOR_PICKUP reservations, newest first."""
        with self.db.get_session() as session:
            stmt = (
                select(Reservation)
                .where(
                    Reservation.member_id == member_id,
                    Reservation.status.in_(_ACTIVE_VALUES),
                )
                .order_by(Reservation.created_at.desc())
            )
            return list(session.execute(stmt).scalars().all())

    def get_all_reservations(self, member_id: str) -> list[Reservation]:
        """Get a member's full reservation history, newest first."""
        with self.db.get_session() as session:
            stmt = (
                select(Reservation)
                .where(Reservation.member_id == member_id)
                .order_by(Reservation.created_at.desc())
            )
            return list(session.execute(stmt).scalars().all())

    def get_queue(self, book_id: str, session: Optional[Session] = None) -> list[Reservation]:
        """Get the PENDING reservations for a book in queue order."""

        def _get(s: Session) -> list[Reservation]:
            stmt = (
                select(Reservation)
                .where(
                    Reservation.book_id == book_id,
                    Reservation.status == ReservationStatus.PENDING.value,
                )
                .order_by(Reservation.queue_position, Reservation.created_at)
            )
            return list(s.execute(stmt).scalars().all())

        if session:
            return _get(session)
        else:
            with self.db.get_session() as s:
                return _get(s)

    def get_ready_reservation(
        self, book_id: str, session: Optional[Session] = None
    ) -> Optional[Reservation]:
        """Get the outstanding READY_FOR_PICKUP hold on a book, if any."""

        def _get(s: Session) -> Optional[Reservation]:
            stmt = select(Reservation).where(
                Reservation.book_id == book_id,
                Reservation.status == ReservationStatus.READY_FOR_PICKUP.value,
            )
            return s.execute(stmt).scalars().first()

        if session:
            return _get(session)
        else:
            with self.db.get_session() as s:
                return _get(s)

    def get_active_reservation(
        self, member_id: str, book_id: str, session: Optional[Session] = None
    ) -> Optional[Reservation]:
        """Get a member's PENDING or READY_FOR_PICKUP reservation for a book."""

        def _get(s: Session) -> Optional[Reservation]:
            stmt = select(Reservation).where(
                Reservation.member_id == member_id,
                Reservation.book_id == book_id,
                Reservation.status.in_(_ACTIVE_VALUES),
            )
            return s.execute(stmt).scalars().first()

        if session:
            return _get(session)
        else:
            with self.db.get_session() as s:
                return _get(s)

    def count_pending(self, book_id: str, session: Optional[Session] = None) -> int:
        """Count PENDING reservations for a book."""

        def _count(s: Session) -> int:
            stmt = select(func.count(Reservation.id)).where(
                Reservation.book_id == book_id,
                Reservation.status == ReservationStatus.PENDING.value,
            )
            return s.execute(stmt).scalar_one()

        if session:
            return _count(session)
        else:
            with self.db.get_session() as s:
                return _count(s)

    def has_active_demand(self, book_id: str, session: Optional[Session] = None) -> bool:
        """Check if anyone is waiting in the queue for a book."""
        return self.count_pending(book_id, session) > 0

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def reserve(
        self, member_id: str, book_id: str, now: Optional[datetime] = None
    ) -> Reservation:
        """Add a member to the end of a book's queue.

        Args:
            member_id: Requesting member
            book_id: Book to reserve
            now: Creation timestamp (default: now)

        Returns:
            Created PENDING reservation

        Raises:
            NotFoundError: If the member or book does not exist
            ForbiddenError: If the member account is inactive
            ConflictError: ALREADY_RESERVED if the member already waits or
                holds a pickup for this book
        """
        now = now or datetime.now()

        with self.db.get_session() as session:
            member = session.get(Member, member_id)
            if not member:
                raise NotFoundError("Member", member_id)
            if not member.active:
                raise ForbiddenError("Member account is inactive")
            if not session.get(Book, book_id):
                raise NotFoundError("Book", book_id)

            if self.get_active_reservation(member_id, book_id, session):
                raise ConflictError(
                    ConflictReason.ALREADY_RESERVED,
                    "Member already has an active reservation for this book",
                )

            position = self.count_pending(book_id, session) + 1
            reservation = Reservation(
                member_id=member_id,
                book_id=book_id,
                queue_position=position,
                status=ReservationStatus.PENDING.value,
                created_at=now,
                updated_at=now,
            )
            session.add(reservation)
            session.flush()

            logger.info(
                "Member %s joined queue for book %s at position %d",
                member_id,
                book_id,
                position,
            )
            return reservation

    def promote_next(
        self,
        book_id: str,
        now: Optional[datetime] = None,
        session: Optional[Session] = None,
    ) -> Optional[Reservation]:
        """Offer the book to the first member in the queue.

        The lowest-position PENDING reservation becomes READY_FOR_PICKUP with
        a pickup window starting now. Does nothing when the queue is empty or
        when a pickup hold on the book is still outstanding.

        Returns:
            The promoted reservation, or None
        """
        now = now or datetime.now()

        def _promote(s: Session) -> Optional[Reservation]:
            held = self.get_ready_reservation(book_id, s)
            if held:
                logger.debug(
                    "Book %s already held for reservation %s; not promoting",
                    book_id,
                    held.id,
                )
                return None

            queue = self.get_queue(book_id, s)
            if not queue:
                return None

            first = queue[0]
            first.status = ReservationStatus.READY_FOR_PICKUP.value
            first.notified_at = now
            first.expires_at = now + self.pickup_window
            first.updated_at = now
            s.flush()

            self._renumber_queue(book_id, s)

            logger.info(
                "Reservation %s for book %s ready for pickup until %s",
                first.id,
                book_id,
                first.expires_at.isoformat(),
            )
            return first

        if session:
            return _promote(session)
        else:
            with self.db.get_session() as s:
                return _promote(s)

    def cancel(
        self,
        reservation_id: str,
        member_id: str,
        now: Optional[datetime] = None,
    ) -> Reservation:
        """Cancel a member's own reservation and close the gap in the queue.

        Cancelling a pickup hold offers the book to the next member in line.

        Raises:
            NotFoundError: If the reservation does not exist
            ForbiddenError: If the member does not own the reservation
            InvalidStateError: If the reservation already ended
        """
        now = now or datetime.now()

        with self.db.get_session() as session:
            reservation = self.get_reservation(reservation_id, session)
            if not reservation:
                raise NotFoundError("Reservation", reservation_id)

            if reservation.member_id != member_id:
                raise ForbiddenError("Members can only cancel their own reservations")

            if not reservation.is_active:
                raise InvalidStateError(f"Reservation is already {reservation.status}")

            was_ready = reservation.is_ready
            reservation.status = ReservationStatus.CANCELLED.value
            reservation.updated_at = now
            session.flush()

            self._renumber_queue(reservation.book_id, session)
            logger.info("Reservation %s cancelled by member %s", reservation_id, member_id)

            if was_ready:
                self.promote_next(reservation.book_id, now=now, session=session)

            return reservation

    def process_expired(self, now: Optional[datetime] = None) -> list[Reservation]:
        """Expire pickup holds whose window has passed.

        Each expiry immediately offers the book to the next member in line.
        Safe to run at any cadence; a run with nothing to expire changes
        nothing.

        Returns:
            Reservations marked EXPIRED by this run
        """
        now = now or datetime.now()

        with self.db.get_session() as session:
            stmt = (
                select(Reservation)
                .where(
                    Reservation.status == ReservationStatus.READY_FOR_PICKUP.value,
                    Reservation.expires_at < now,
                )
                .order_by(Reservation.expires_at)
            )
            expired = list(session.execute(stmt).scalars().all())

            if not expired:
                logger.debug("No expired pickup holds at %s", now.isoformat())
                return []

            for reservation in expired:
                reservation.status = ReservationStatus.EXPIRED.value
                reservation.updated_at = now
                session.flush()
                logger.info(
                    "Reservation %s for book %s expired uncollected",
                    reservation.id,
                    reservation.book_id,
                )
                self.promote_next(reservation.book_id, now=now, session=session)

            return expired

    def complete(self, reservation_id: str, session: Optional[Session] = None) -> Reservation:
        """Mark a pickup hold as fulfilled once the member borrows the book.

        Raises:
            NotFoundError: If the reservation does not exist
            InvalidStateError: If the reservation is not READY_FOR_PICKUP
        """

        def _complete(s: Session) -> Reservation:
            reservation = self.get_reservation(reservation_id, s)
            if not reservation:
                raise NotFoundError("Reservation", reservation_id)
            if not reservation.is_ready:
                raise InvalidStateError("Only reservations ready for pickup can be fulfilled")

            reservation.status = ReservationStatus.FULFILLED.value
            reservation.updated_at = datetime.now()
            s.flush()
            return reservation

        if session:
            return _complete(session)
        else:
            with self.db.get_session() as s:
                return _complete(s)

    def fulfil_for_borrower(
        self, member_id: str, book_id: str, session: Session
    ) -> Optional[Reservation]:
        """Close the borrowing member's own reservation for a book, if any.

        A pickup hold is completed; a PENDING entry is fulfilled and the
        queue behind it moves up.
        """
        reservation = self.get_active_reservation(member_id, book_id, session)
        if not reservation:
            return None

        if reservation.is_ready:
            return self.complete(reservation.id, session)

        reservation.status = ReservationStatus.FULFILLED.value
        reservation.updated_at = datetime.now()
        session.flush()
        self._renumber_queue(book_id, session)
        return reservation

    # -------------------------------------------------------------------------
    # Queue maintenance
    # -------------------------------------------------------------------------

    def _renumber_queue(self, book_id: str, session: Session) -> None:
        """Assign PENDING reservations their final positions 1..N in queue order."""
        queue = self.get_queue(book_id, session)
        targets = {r.id: position for position, r in enumerate(queue, start=1)}

        for reservation in queue:
            if reservation.queue_position != targets[reservation.id]:
                reservation.queue_position = targets[reservation.id]
        session.flush()
