"""Pydantic schemas for book loans."""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class LoanStatus(str, Enum):
    """Status of a loan."""

    ACTIVE = "active"
    EXTENDED = "extended"
    RETURNED = "returned"


# Statuses in which the member still holds the book
ACTIVE_LOAN_STATUSES = (LoanStatus.ACTIVE, LoanStatus.EXTENDED)


class LoanResponse(BaseModel):
    """Schema for loan responses."""

    id: str
    member_id: str
    book_id: str
    status: LoanStatus
    borrow_date: date
    due_date: date
    return_date: Optional[date]
    reminder_sent_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    # Related data (populated from the loaded book)
    book_title: Optional[str] = None

    model_config = {"from_attributes": True}

    @classmethod
    def from_loan(cls, loan) -> "LoanResponse":
        """Build a response including the book title."""
        response = cls.model_validate(loan)
        if loan.book is not None:
            response.book_title = loan.book.title
        return response
