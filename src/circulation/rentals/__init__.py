"""Rental queries.

Provides functionality for:
- Current borrowers of a book and current loans of a member
- Loan history and popularity rankings
- Overdue listings and summary statistics
"""

from .queries import RentalQueryService
from .schemas import (
    BookAvailability,
    CurrentBorrower,
    MemberBorrowingSummary,
    MemberLoan,
    OverdueLoan,
    PopularBook,
    RentalStatistics,
)

__all__ = [
    "RentalQueryService",
    "BookAvailability",
    "CurrentBorrower",
    "MemberBorrowingSummary",
    "MemberLoan",
    "OverdueLoan",
    "PopularBook",
    "RentalStatistics",
]
