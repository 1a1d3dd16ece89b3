"""Book availability tracking."""

from .tracker import AvailabilityTracker

__all__ = [
    "AvailabilityTracker",
]
