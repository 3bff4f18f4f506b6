"""Pydantic schemas for rental read models."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from ..copies.schemas import CopyStatus


class CurrentBorrower(BaseModel):
    """A member currently holding a copy of a book."""

    transaction_id: str
    member_id: str
    copy_id: str
    borrow_date: datetime
    due_date: datetime
    overdue: bool


class MemberLoan(BaseModel):
    """A copy a member currently holds."""

    transaction_id: str
    book_id: Optional[str] = None
    copy_id: str
    title: Optional[str] = None
    borrow_date: datetime
    due_date: datetime
    overdue: bool


class PopularBook(BaseModel):
    """A book ranked by number of loans."""

    rank: int
    book_id: str
    title: Optional[str] = None
    borrow_count: int


class OverdueLoan(BaseModel):
    """An open loan past its due date."""

    transaction_id: str
    member_id: str
    book_id: Optional[str] = None
    copy_id: str
    title: Optional[str] = None
    due_date: datetime
    days_overdue: int


class MemberBorrowingSummary(BaseModel):
    """Loan counts for one member."""

    member_id: str
    open_loans: int
    overdue_loans: int
    total_loans: int
    limit: int
    loans: list[MemberLoan]

    @property
    def remaining(self) -> int:
        """Loans the member may still start."""
        return max(self.limit - self.open_loans, 0)


class BookAvailability(BaseModel):
    """Copy counts and loan totals for one book."""

    book_id: str
    title: Optional[str] = None
    total_copies: int
    copies_by_status: dict[CopyStatus, int]
    total_loans: int

    @property
    def available_copies(self) -> int:
        return self.copies_by_status.get(CopyStatus.AVAILABLE, 0)

    @property
    def borrowed_copies(self) -> int:
        return self.copies_by_status.get(CopyStatus.BORROWED, 0)


class RentalStatistics(BaseModel):
    """Library-wide loan figures."""

    open_loans: int
    overdue_loans: int
    returned_loans: int
    members_with_open_loans: int
    most_borrowed: list[PopularBook]
