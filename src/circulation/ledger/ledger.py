"""Borrowing transaction ledger.

Append-mostly record of every loan episode. Rows are created by ``append``
and only ever change status through ``mark_overdue`` and ``mark_returned``.
"""

from datetime import datetime
from typing import Iterator, Optional

from sqlalchemy import String, and_, func, insert, literal, or_, select, update
from sqlalchemy.orm import Session

from ..copies.models import BookCopy
from ..db.models import generate_uuid, now_iso
from ..db.sqlite import Database, get_db
from ..errors import (
    CopyUnavailable,
    InvalidStateTransition,
    MemberLimitExceeded,
    TransactionAlreadyReturned,
    TransactionNotFound,
)
from ..utils import to_iso, utcnow
from .models import BorrowingTransaction
from .schemas import (
    OPEN_STATUSES,
    TransactionFilter,
    TransactionResponse,
    TransactionStatus,
    can_transition,
)

_OPEN = [s.value for s in OPEN_STATUSES]


def _sources(target: TransactionStatus) -> list[str]:
    """Statuses the transition table allows to move to target."""
    return [s.value for s in TransactionStatus if can_transition(s, target)]


class TransactionHistory:
    """Lazy, restartable view of ledger rows matching a filter.

    Nothing is read until iteration starts. Rows are fetched a page at a
    time, each page in its own short read-only session, so no lock is held
    while the caller works through the results. The same object can be
    iterated again to see fresh data.
    """

    def __init__(self, db: Database, criteria: TransactionFilter, batch_size: int = 100):
        self.db = db
        self.criteria = criteria
        self.batch_size = batch_size

    def __iter__(self) -> Iterator[TransactionResponse]:
        remaining = self.criteria.limit
        after: Optional[tuple[str, str]] = None

        while remaining is None or remaining > 0:
            size = self.batch_size if remaining is None else min(self.batch_size, remaining)
            with self.db.get_session(write=False) as session:
                rows = session.execute(self._statement(after).limit(size)).scalars().all()
                page = [TransactionResponse.model_validate(t) for t in rows]
                if rows:
                    after = (rows[-1].borrow_date, rows[-1].id)

            yield from page
            if len(page) < size:
                return
            if remaining is not None:
                remaining -= len(page)

    def __repr__(self) -> str:
        return f"<TransactionHistory({self.criteria!r})>"

    def count(self) -> int:
        """Number of matching rows, ignoring the limit."""
        with self.db.get_session(write=False) as session:
            stmt = select(func.count()).select_from(
                self._filtered(select(BorrowingTransaction)).subquery()
            )
            return session.execute(stmt).scalar() or 0

    def _filtered(self, stmt):
        c = self.criteria
        if c.copy_id:
            stmt = stmt.where(BorrowingTransaction.copy_id == c.copy_id)
        if c.member_id:
            stmt = stmt.where(BorrowingTransaction.member_id == c.member_id)
        if c.book_id:
            stmt = stmt.where(
                BorrowingTransaction.copy_id.in_(
                    select(BookCopy.id).where(BookCopy.book_id == c.book_id)
                )
            )
        if c.borrowed_from:
            stmt = stmt.where(BorrowingTransaction.borrow_date >= to_iso(c.borrowed_from))
        if c.borrowed_until:
            stmt = stmt.where(BorrowingTransaction.borrow_date <= to_iso(c.borrowed_until))
        if c.status:
            stmt = stmt.where(BorrowingTransaction.status.in_([s.value for s in c.status]))
        return stmt

    def _statement(self, after: Optional[tuple[str, str]] = None):
        stmt = self._filtered(select(BorrowingTransaction)).order_by(
            BorrowingTransaction.borrow_date.desc(), BorrowingTransaction.id
        )
        if after:
            # Keyset continuation after the last row of the previous page
            borrow_date, txn_id = after
            stmt = stmt.where(
                or_(
                    BorrowingTransaction.borrow_date < borrow_date,
                    and_(
                        BorrowingTransaction.borrow_date == borrow_date,
                        BorrowingTransaction.id > txn_id,
                    ),
                )
            )
        return stmt


class BorrowingTransactionLedger:
    """Durable, queryable record of loan episodes."""

    def __init__(self, db: Optional[Database] = None):
        """Initialize the ledger.

        Args:
            db: Database instance
        """
        self.db = db or get_db()

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def append(
        self,
        copy_id: str,
        member_id: str,
        borrow_time: datetime,
        due: datetime,
        notes: Optional[str] = None,
        member_limit: Optional[int] = None,
        session: Optional[Session] = None,
    ) -> TransactionResponse:
        """Record a new Active loan.

        The row is written by a single INSERT ... SELECT whose WHERE clause
        re-checks, at write time, that the copy has no open loan and that the
        member is still under ``member_limit``. If either check fails nothing
        is written.

        Args:
            copy_id: Copy being lent
            member_id: Borrowing member
            borrow_time: Start of the loan
            due: Due timestamp
            notes: Free-form notes
            member_limit: Maximum open loans for the member, None to skip
            session: Session of the enclosing unit of work, if any

        Returns:
            The created transaction

        Raises:
            CopyUnavailable: If the copy already has an open loan
            MemberLimitExceeded: If the member is at the limit
        """

        def _append(s: Session) -> TransactionResponse:
            txn_id = generate_uuid()
            stamp = now_iso()

            conditions = [~self._open_for_copy(copy_id).correlate(None).exists()]
            if member_limit is not None:
                conditions.append(
                    self._open_count_for_member(member_id).correlate(None).scalar_subquery()
                    < member_limit
                )

            source = select(
                literal(txn_id, String),
                literal(copy_id, String),
                literal(member_id, String),
                literal(to_iso(borrow_time), String),
                literal(to_iso(due), String),
                literal(TransactionStatus.ACTIVE.value, String),
                literal(notes, String),
                literal(stamp, String),
                literal(stamp, String),
            ).where(*conditions)

            s.execute(
                insert(BorrowingTransaction.__table__).from_select(
                    [
                        "id",
                        "copy_id",
                        "member_id",
                        "borrow_date",
                        "due_date",
                        "status",
                        "notes",
                        "created_at",
                        "updated_at",
                    ],
                    source,
                )
            )

            created = s.get(BorrowingTransaction, txn_id)
            if created is None:
                if s.execute(self._open_for_copy(copy_id)).first() is not None:
                    raise CopyUnavailable(copy_id, "on loan")
                raise MemberLimitExceeded(member_id, member_limit)
            return TransactionResponse.model_validate(created)

        if session:
            return _append(session)
        with self.db.get_session() as s:
            return _append(s)

    def mark_returned(
        self,
        transaction_id: str,
        return_time: datetime,
        notes: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> TransactionResponse:
        """Close an open transaction.

        Args:
            transaction_id: Transaction ID
            return_time: When the copy came back
            notes: Replaces the notes when given

        Raises:
            TransactionNotFound: If no such transaction exists
            TransactionAlreadyReturned: If it is already closed
            InvalidStateTransition: If its status may not move to Returned
        """

        def _mark(s: Session) -> TransactionResponse:
            values = {
                "status": TransactionStatus.RETURNED.value,
                "return_date": to_iso(return_time),
                "updated_at": now_iso(),
            }
            if notes is not None:
                values["notes"] = notes

            result = s.execute(
                update(BorrowingTransaction)
                .where(
                    BorrowingTransaction.id == transaction_id,
                    BorrowingTransaction.status.in_(_sources(TransactionStatus.RETURNED)),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return self._load(s, transaction_id)

            txn = s.get(BorrowingTransaction, transaction_id, populate_existing=True)
            if txn is None:
                raise TransactionNotFound(transaction_id)
            if txn.status == TransactionStatus.RETURNED.value:
                raise TransactionAlreadyReturned(transaction_id)
            raise InvalidStateTransition(
                "transaction", transaction_id, txn.status, TransactionStatus.RETURNED.value
            )

        if session:
            return _mark(session)
        with self.db.get_session() as s:
            return _mark(s)

    def mark_overdue(
        self,
        transaction_id: str,
        now: Optional[datetime] = None,
        session: Optional[Session] = None,
    ) -> TransactionResponse:
        """Flag an Active transaction past its due date as Overdue.

        Calling this on an already Overdue transaction changes nothing.

        Raises:
            TransactionNotFound: If no such transaction exists
            InvalidStateTransition: If it is returned or not yet due
        """
        cutoff = to_iso(now or utcnow())

        def _mark(s: Session) -> TransactionResponse:
            result = s.execute(
                update(BorrowingTransaction)
                .where(
                    BorrowingTransaction.id == transaction_id,
                    BorrowingTransaction.status.in_(_sources(TransactionStatus.OVERDUE)),
                    BorrowingTransaction.return_date.is_(None),
                    BorrowingTransaction.due_date < cutoff,
                )
                .values(status=TransactionStatus.OVERDUE.value, updated_at=now_iso())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return self._load(s, transaction_id)

            txn = s.get(BorrowingTransaction, transaction_id, populate_existing=True)
            if txn is None:
                raise TransactionNotFound(transaction_id)
            if txn.status == TransactionStatus.OVERDUE.value:
                return TransactionResponse.model_validate(txn)
            raise InvalidStateTransition(
                "transaction", transaction_id, txn.status, TransactionStatus.OVERDUE.value
            )

        if session:
            return _mark(session)
        with self.db.get_session() as s:
            return _mark(s)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, transaction_id: str, session: Optional[Session] = None) -> Optional[TransactionResponse]:
        """Get a transaction by ID."""

        def _get(s: Session) -> Optional[TransactionResponse]:
            txn = s.get(BorrowingTransaction, transaction_id, populate_existing=True)
            return TransactionResponse.model_validate(txn) if txn else None

        if session:
            return _get(session)
        with self.db.get_session(write=False) as s:
            return _get(s)

    def find_open_by_copy(self, copy_id: str) -> Optional[TransactionResponse]:
        """Get the open transaction holding a copy, if any."""
        with self.db.get_session(write=False) as session:
            txn = session.execute(self._open_for_copy(copy_id)).scalar_one_or_none()
            return TransactionResponse.model_validate(txn) if txn else None

    def find_open_by_member(self, member_id: str) -> list[TransactionResponse]:
        """Get a member's open transactions, most recent first."""
        with self.db.get_session(write=False) as session:
            stmt = (
                select(BorrowingTransaction)
                .where(
                    BorrowingTransaction.member_id == member_id,
                    BorrowingTransaction.status.in_(_OPEN),
                )
                .order_by(BorrowingTransaction.borrow_date.desc())
            )
            txns = session.execute(stmt).scalars().all()
            return [TransactionResponse.model_validate(t) for t in txns]

    def count_open_by_member(self, member_id: str, session: Optional[Session] = None) -> int:
        """Count a member's open transactions."""

        def _count(s: Session) -> int:
            return s.execute(self._open_count_for_member(member_id)).scalar() or 0

        if session:
            return _count(session)
        with self.db.get_session(write=False) as s:
            return _count(s)

    def find_overdue_candidates(self, now: Optional[datetime] = None) -> list[TransactionResponse]:
        """Get Active transactions whose due date is before now, oldest due first."""
        cutoff = to_iso(now or utcnow())
        with self.db.get_session(write=False) as session:
            stmt = (
                select(BorrowingTransaction)
                .where(
                    BorrowingTransaction.status.in_(_sources(TransactionStatus.OVERDUE)),
                    BorrowingTransaction.return_date.is_(None),
                    BorrowingTransaction.due_date < cutoff,
                )
                .order_by(BorrowingTransaction.due_date)
            )
            txns = session.execute(stmt).scalars().all()
            return [TransactionResponse.model_validate(t) for t in txns]

    def find_open(self) -> list[TransactionResponse]:
        """Get every open transaction, oldest due first."""
        with self.db.get_session(write=False) as session:
            stmt = (
                select(BorrowingTransaction)
                .where(BorrowingTransaction.status.in_(_OPEN))
                .order_by(BorrowingTransaction.due_date)
            )
            txns = session.execute(stmt).scalars().all()
            return [TransactionResponse.model_validate(t) for t in txns]

    def find_history(self, criteria: Optional[TransactionFilter] = None) -> TransactionHistory:
        """Lazy history query over the ledger.

        Args:
            criteria: Filter; None matches every transaction

        Returns:
            Restartable iterable of transactions, most recent borrow first
        """
        return TransactionHistory(self.db, criteria or TransactionFilter())

    # -------------------------------------------------------------------------
    # Aggregates
    # -------------------------------------------------------------------------

    def borrow_counts_by_book(
        self,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[tuple[str, int]]:
        """Count loans per book borrowed within a window.

        Open and closed loans both count. Ordered by count descending, then
        book ID.
        """
        with self.db.get_session(write=False) as session:
            borrow_count = func.count(BorrowingTransaction.id).label("borrow_count")
            stmt = (
                select(BookCopy.book_id, borrow_count)
                .join(BookCopy, BookCopy.id == BorrowingTransaction.copy_id)
                .group_by(BookCopy.book_id)
                .order_by(borrow_count.desc(), BookCopy.book_id)
            )
            if since:
                stmt = stmt.where(BorrowingTransaction.borrow_date >= to_iso(since))
            if until:
                stmt = stmt.where(BorrowingTransaction.borrow_date <= to_iso(until))
            if limit is not None:
                stmt = stmt.limit(limit)

            return [(book_id, count) for book_id, count in session.execute(stmt).all()]

    def count_by_status(self) -> dict[TransactionStatus, int]:
        """Count transactions in each status. Every status is present."""
        with self.db.get_session(write=False) as session:
            rows = session.execute(
                select(BorrowingTransaction.status, func.count()).group_by(
                    BorrowingTransaction.status
                )
            ).all()

        counts = {status: 0 for status in TransactionStatus}
        for status, count in rows:
            counts[TransactionStatus(status)] = count
        return counts

    def count_members_with_open_loans(self) -> int:
        """Number of distinct members holding at least one open loan."""
        with self.db.get_session(write=False) as session:
            stmt = select(func.count(func.distinct(BorrowingTransaction.member_id))).where(
                BorrowingTransaction.status.in_(_OPEN)
            )
            return session.execute(stmt).scalar() or 0

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _open_for_copy(copy_id: str):
        return select(BorrowingTransaction).where(
            BorrowingTransaction.copy_id == copy_id,
            BorrowingTransaction.status.in_(_OPEN),
        )

    @staticmethod
    def _open_count_for_member(member_id: str):
        return (
            select(func.count())
            .select_from(BorrowingTransaction)
            .where(
                BorrowingTransaction.member_id == member_id,
                BorrowingTransaction.status.in_(_OPEN),
            )
        )

    @staticmethod
    def _load(session: Session, transaction_id: str) -> TransactionResponse:
        txn = session.get(BorrowingTransaction, transaction_id, populate_existing=True)
        return TransactionResponse.model_validate(txn)
