"""Book reservation queues.

Provides functionality for:
- Joining and leaving a book's FIFO queue
- Promoting the next member to a timed pickup hold
- Expiring uncollected holds
"""

from .manager import ReservationManager
from .models import Reservation
from .schemas import (
    ACTIVE_RESERVATION_STATUSES,
    ReservationResponse,
    ReservationStatus,
)

__all__ = [
    "ReservationManager",
    "Reservation",
    "ReservationResponse",
    "ReservationStatus",
    "ACTIVE_RESERVATION_STATUSES",
]
