"""Failure types raised by the circulation engine.

Every command either applies all of its effects or raises one of these.
Only ``ContentionError`` is transient; the rest are business outcomes and
are surfaced to the caller unchanged.
"""

from enum import Enum
from typing import Optional


class CirculationError(Exception):
    """Base exception for circulation errors."""

    pass


class NotFoundError(CirculationError):
    """Raised when a referenced member, book, loan or reservation is absent."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class InvalidStateError(CirculationError):
    """Raised when an entity is not in a status that allows the operation."""

    pass


class ConflictReason(str, Enum):
    """Business rule that rejected a command."""

    ALREADY_BORROWED = "already_borrowed"
    NOT_AVAILABLE = "not_available"
    LIMIT_REACHED = "limit_reached"
    OVERDUE = "overdue"
    HAS_DEMAND = "has_demand"
    ALREADY_RESERVED = "already_reserved"


class ConflictError(CirculationError):
    """Raised when a business rule rejects a command. Never retried."""

    def __init__(self, reason: ConflictReason, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or reason.value)


class ForbiddenError(CirculationError):
    """Raised when the acting member does not own the entity."""

    pass


class ContentionError(CirculationError):
    """Raised on a transient storage conflict (lock busy or stale row)."""

    def __init__(self, message: str = "Storage contention", attempts: int = 1):
        self.attempts = attempts
        super().__init__(message)
