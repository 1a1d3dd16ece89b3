"""Pydantic schemas for book reservations."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class ReservationStatus(str, Enum):
    """Status of a reservation."""

    PENDING = "pending"  # Waiting in the queue
    READY_FOR_PICKUP = "ready_for_pickup"  # Book held, pickup window running
    FULFILLED = "fulfilled"  # Member borrowed the book
    EXPIRED = "expired"  # Pickup window elapsed
    CANCELLED = "cancelled"


ACTIVE_RESERVATION_STATUSES = (
    ReservationStatus.PENDING,
    ReservationStatus.READY_FOR_PICKUP,
)


class ReservationResponse(BaseModel):
    """Schema for reservation responses."""

    id: str
    member_id: str
    book_id: str
    queue_position: int
    status: ReservationStatus
    created_at: datetime
    notified_at: Optional[datetime]
    expires_at: Optional[datetime]

    model_config = {"from_attributes": True}
