"""SQLAlchemy models for book loans.

Tables:
- loans: Append-only loan history; rows are updated on extend/return but
  never deleted
"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import Date, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..db.models import Base, Book, Member, generate_uuid
from .schemas import ACTIVE_LOAN_STATUSES, LoanStatus


class Loan(Base):
    """Loan model - one member holding one book."""

    __tablename__ = "loans"

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

    status: Mapped[str] = mapped_column(String(20), default=LoanStatus.ACTIVE.value, index=True)

    # Dates
    borrow_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    return_date: Mapped[Optional[date]] = mapped_column(Date)

    # Set by the due-soon sweep; cleared on extend/return
    reminder_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.now, onupdate=datetime.now
    )

    # Relationships
    book: Mapped["Book"] = relationship("Book", lazy="joined")
    member: Mapped["Member"] = relationship("Member", lazy="joined")

    def __repr__(self) -> str:
        return f"<Loan(id={self.id}, book_id={self.book_id}, status={self.status})>"

    @property
    def is_active(self) -> bool:
        """Check if the member still holds the book."""
        return self.status in {s.value for s in ACTIVE_LOAN_STATUSES}

    def days_until_due(self, today: Optional[date] = None) -> int:
        """Days until due (negative if overdue)."""
        return (self.due_date - (today or date.today())).days

    def is_overdue(self, today: Optional[date] = None) -> bool:
        """Check if loan is overdue."""
        return self.is_active and self.due_date < (today or date.today())
