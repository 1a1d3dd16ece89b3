"""Book loan lifecycle.

Provides functionality for:
- Borrowing with availability, duplicate and limit checks
- Returning, with hand-off to the reservation queue
- Extending when nobody is waiting
- Overdue and due-soon reporting
"""

from .manager import LoanManager
from .models import Loan
from .schemas import ACTIVE_LOAN_STATUSES, LoanResponse, LoanStatus

__all__ = [
    "LoanManager",
    "Loan",
    "LoanResponse",
    "LoanStatus",
    "ACTIVE_LOAN_STATUSES",
]
