"""SQLAlchemy models for book reservations.

Tables:
- reservations: Per-book FIFO queue entries and their pickup holds
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..db.models import Base, Book, Member, generate_uuid
from .schemas import ACTIVE_RESERVATION_STATUSES, ReservationStatus


class Reservation(Base):
    """Reservation model - one member's place in a book's queue."""

    __tablename__ = "reservations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    member_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("members.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    book_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("books.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # 1-based; only meaningful while PENDING, kept as history afterwards
    queue_position: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), default=ReservationStatus.PENDING.value, index=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.now, onupdate=datetime.now
    )

    # Relationships
    book: Mapped["Book"] = relationship("Book", lazy="joined")
    member: Mapped["Member"] = relationship("Member", lazy="joined")

    def __repr__(self) -> str:
        return (
            f"<Reservation(id={self.id}, book_id={self.book_id}, "
            f"position={self.queue_position}, status={self.status})>"
        )

    @property
    def is_active(self) -> bool:
        """Check if the reservation is still waiting or held for pickup."""
        return self.status in {s.value for s in ACTIVE_RESERVATION_STATUSES}

    @property
    def is_ready(self) -> bool:
        return self.status == ReservationStatus.READY_FOR_PICKUP.value

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check if a pickup hold has run past its window."""
        if not self.is_ready or self.expires_at is None:
            return False
        return self.expires_at < (now or datetime.now())
