"""Library lending rules.

Provides functionality for:
- Checking out copies within the member borrowing limit
- Returning loans
- Overdue detection sweeps
"""

from .policy import LoanPolicyEngine
from .schemas import BorrowEligibility, LoanPolicy

__all__ = [
    "LoanPolicyEngine",
    "LoanPolicy",
    "BorrowEligibility",
]
