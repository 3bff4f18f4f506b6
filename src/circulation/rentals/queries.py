"""Read-only rental queries over the ledger.

Nothing here writes. Results join ledger rows with catalog metadata from the
catalog directory; "overdue" means flagged Overdue by a sweep, or still
Active past the due date.
"""

from datetime import datetime
from typing import Callable, Optional

from ..catalog import CatalogDirectory
from ..config import get_config
from ..copies import CopyAvailabilityStore
from ..db.sqlite import Database, get_db
from ..ledger import (
    BorrowingTransactionLedger,
    TransactionFilter,
    TransactionHistory,
    TransactionStatus,
)
from ..utils import ensure_utc, utcnow
from .schemas import (
    BookAvailability,
    CurrentBorrower,
    MemberBorrowingSummary,
    MemberLoan,
    OverdueLoan,
    PopularBook,
    RentalStatistics,
)


class RentalQueryService:
    """Answers questions about current and past loans."""

    def __init__(
        self,
        db: Optional[Database] = None,
        ledger: Optional[BorrowingTransactionLedger] = None,
        catalog: Optional[CatalogDirectory] = None,
        copies: Optional[CopyAvailabilityStore] = None,
        member_loan_limit: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the service.

        Args:
            db: Database instance
            ledger: Transaction ledger (built on db if omitted)
            catalog: Catalog lookups (built on db if omitted)
            copies: Copy store, for availability counts
            member_loan_limit: Limit reported in member summaries
            clock: Returns the current time; injectable for tests
        """
        self.db = db or get_db()
        self.ledger = ledger or BorrowingTransactionLedger(self.db)
        self.catalog = catalog or CatalogDirectory(self.db)
        self.copies = copies or CopyAvailabilityStore(self.db)
        self.member_loan_limit = (
            member_loan_limit if member_loan_limit is not None else get_config().member_loan_limit
        )
        self.clock = clock or utcnow

    def _now(self) -> datetime:
        return ensure_utc(self.clock())

    # -------------------------------------------------------------------------
    # Current loans
    # -------------------------------------------------------------------------

    def current_borrowers_of(self, book_id: str) -> list[CurrentBorrower]:
        """Members currently holding any copy of a book.

        Args:
            book_id: Catalog book ID

        Returns:
            One entry per copy on loan, in copy order
        """
        now = self._now()
        borrowers = []
        for copy_id in self.catalog.copy_ids_for_book(book_id):
            txn = self.ledger.find_open_by_copy(copy_id)
            if txn is None:
                continue
            borrowers.append(
                CurrentBorrower(
                    transaction_id=txn.id,
                    member_id=txn.member_id,
                    copy_id=copy_id,
                    borrow_date=txn.borrow_date,
                    due_date=txn.due_date,
                    overdue=txn.is_overdue_at(now),
                )
            )
        return borrowers

    def current_books_of(self, member_id: str) -> list[MemberLoan]:
        """Copies a member currently holds, most recent first."""
        now = self._now()
        open_loans = self.ledger.find_open_by_member(member_id)
        book_ids = {txn.copy_id: self.catalog.book_id_for_copy(txn.copy_id) for txn in open_loans}
        books = self.catalog.get_books([b for b in book_ids.values() if b])

        loans = []
        for txn in open_loans:
            book_id = book_ids[txn.copy_id]
            book = books.get(book_id)
            loans.append(
                MemberLoan(
                    transaction_id=txn.id,
                    book_id=book_id,
                    copy_id=txn.copy_id,
                    title=book.title if book else None,
                    borrow_date=txn.borrow_date,
                    due_date=txn.due_date,
                    overdue=txn.is_overdue_at(now),
                )
            )
        return loans

    # -------------------------------------------------------------------------
    # History and popularity
    # -------------------------------------------------------------------------

    def history_of(
        self,
        book_id: Optional[str] = None,
        member_id: Optional[str] = None,
        criteria: Optional[TransactionFilter] = None,
    ) -> TransactionHistory:
        """Loan history of a book or of a member.

        Args:
            book_id: Book whose loans to list
            member_id: Member whose loans to list
            criteria: Extra filters (dates, status, limit)

        Returns:
            Lazy, restartable iterable of transactions

        Raises:
            ValueError: Unless exactly one non-empty book_id or member_id is given
        """
        if bool(book_id) == bool(member_id):
            raise ValueError("Specify exactly one of book_id or member_id")

        scope = {"book_id": book_id} if book_id else {"member_id": member_id}
        base = criteria or TransactionFilter()
        return self.ledger.find_history(base.model_copy(update=scope))

    def popularity(
        self,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 10,
    ) -> list[PopularBook]:
        """Books ranked by number of loans started in a window.

        Args:
            since: Window start (inclusive), unbounded when None
            until: Window end (inclusive), unbounded when None
            limit: Maximum number of books to return

        Returns:
            Ranked books, ties broken by book ID
        """
        counts = self.ledger.borrow_counts_by_book(since, until, limit=limit)
        books = self.catalog.get_books([book_id for book_id, _ in counts])

        return [
            PopularBook(
                rank=rank,
                book_id=book_id,
                title=books[book_id].title if book_id in books else None,
                borrow_count=count,
            )
            for rank, (book_id, count) in enumerate(counts, start=1)
        ]

    # -------------------------------------------------------------------------
    # Overdue and summaries
    # -------------------------------------------------------------------------

    def overdue_loans(self, now: Optional[datetime] = None) -> list[OverdueLoan]:
        """Open loans past due, oldest due date first."""
        now = ensure_utc(now) if now else self._now()
        overdue = [txn for txn in self.ledger.find_open() if txn.is_overdue_at(now)]

        book_ids = {txn.copy_id: self.catalog.book_id_for_copy(txn.copy_id) for txn in overdue}
        books = self.catalog.get_books([b for b in book_ids.values() if b])

        report = []
        for txn in overdue:
            book_id = book_ids[txn.copy_id]
            book = books.get(book_id)
            report.append(
                OverdueLoan(
                    transaction_id=txn.id,
                    member_id=txn.member_id,
                    book_id=book_id,
                    copy_id=txn.copy_id,
                    title=book.title if book else None,
                    due_date=txn.due_date,
                    days_overdue=txn.days_overdue(now),
                )
            )
        return report

    def member_summary(self, member_id: str) -> MemberBorrowingSummary:
        """Open, overdue and lifetime loan counts for a member."""
        loans = self.current_books_of(member_id)
        total = self.ledger.find_history(TransactionFilter(member_id=member_id)).count()

        return MemberBorrowingSummary(
            member_id=member_id,
            open_loans=len(loans),
            overdue_loans=sum(1 for loan in loans if loan.overdue),
            total_loans=total,
            limit=self.member_loan_limit,
            loans=loans,
        )

    def book_availability(self, book_id: str) -> BookAvailability:
        """Copy counts by status and lifetime loans for a book."""
        by_status = self.copies.count_by_status(book_id)
        book = self.catalog.get_book(book_id)
        total_loans = self.ledger.find_history(TransactionFilter(book_id=book_id)).count()

        return BookAvailability(
            book_id=book_id,
            title=book.title if book else None,
            total_copies=sum(by_status.values()),
            copies_by_status=by_status,
            total_loans=total_loans,
        )

    def rental_statistics(self, now: Optional[datetime] = None) -> RentalStatistics:
        """Library-wide loan figures with the five most borrowed books."""
        now = ensure_utc(now) if now else self._now()
        by_status = self.ledger.count_by_status()
        open_loans = self.ledger.find_open()

        return RentalStatistics(
            open_loans=len(open_loans),
            overdue_loans=sum(1 for txn in open_loans if txn.is_overdue_at(now)),
            returned_loans=by_status[TransactionStatus.RETURNED],
            members_with_open_loans=self.ledger.count_members_with_open_loans(),
            most_borrowed=self.popularity(limit=5),
        )
