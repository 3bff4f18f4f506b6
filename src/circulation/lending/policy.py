"""Loan policy engine.

The only writer that touches both the copy store and the ledger. Checkout
and return each run as one database transaction spanning both tables, so a
reserved copy without a ledger row (or the reverse) is never visible.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..catalog import MemberDirectory
from ..config import get_config
from ..copies import CopyAvailabilityStore
from ..db.sqlite import Database, get_db
from ..errors import (
    CirculationError,
    CopyNotFound,
    InvalidLoanPeriod,
    InvalidStateTransition,
    MemberIneligible,
    MemberLimitExceeded,
    MemberNotFound,
    StorageUnavailable,
    TransactionAlreadyReturned,
    TransactionNotFound,
)
from ..ledger import BorrowingTransactionLedger, TransactionResponse, TransactionStatus
from ..utils import ensure_utc, utcnow
from .schemas import BorrowEligibility, LoanPolicy

logger = logging.getLogger(__name__)


class LoanPolicyEngine:
    """Checkout, return and overdue detection."""

    def __init__(
        self,
        db: Optional[Database] = None,
        copies: Optional[CopyAvailabilityStore] = None,
        ledger: Optional[BorrowingTransactionLedger] = None,
        members: Optional[MemberDirectory] = None,
        policy: Optional[LoanPolicy] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the engine.

        Args:
            db: Database instance shared by both stores
            copies: Copy store (built on db if omitted)
            ledger: Transaction ledger (built on db if omitted)
            members: Member eligibility lookup (built on db if omitted)
            policy: Loan rules (from configuration if omitted)
            clock: Returns the current time; injectable for tests
        """
        self.db = db or get_db()
        self.copies = copies or CopyAvailabilityStore(self.db)
        self.ledger = ledger or BorrowingTransactionLedger(self.db)
        self.members = members or MemberDirectory(self.db)
        self.policy = policy or LoanPolicy.from_config(get_config())
        self.clock = clock or utcnow

    def _now(self) -> datetime:
        return ensure_utc(self.clock())

    # -------------------------------------------------------------------------
    # Checkout and return
    # -------------------------------------------------------------------------

    def checkout(
        self,
        member_id: str,
        copy_id: str,
        loan_period_days: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> TransactionResponse:
        """Lend a specific copy to a member.

        Args:
            member_id: Borrowing member
            copy_id: Copy to lend
            loan_period_days: Loan length; the policy default when None
            notes: Free-form notes stored on the transaction

        Returns:
            The new Active transaction, due ``loan_period_days`` after borrowing

        Raises:
            InvalidLoanPeriod: If the period is outside 1..max_loan_period_days
            MemberNotFound: If the member does not exist
            MemberIneligible: If the member is not active
            MemberLimitExceeded: If the member already holds the limit
            CopyNotFound: If the copy does not exist
            CopyUnavailable: If the copy is not Available
        """
        days = self.policy.loan_period_days if loan_period_days is None else loan_period_days
        if not 1 <= days <= self.policy.max_loan_period_days:
            raise InvalidLoanPeriod(days, self.policy.max_loan_period_days)

        self._require_eligible(member_id)
        limit = self.policy.member_loan_limit

        with self.db.get_session() as session:
            # Early exit; the append below re-checks the count at write time
            if self.ledger.count_open_by_member(member_id, session=session) >= limit:
                raise MemberLimitExceeded(member_id, limit)

            self.copies.try_reserve(copy_id, session=session)

            borrow_time = self._now()
            txn = self.ledger.append(
                copy_id,
                member_id,
                borrow_time,
                borrow_time + timedelta(days=days),
                notes=notes,
                member_limit=limit,
                session=session,
            )

        logger.info(
            "Checked out copy %s to member %s as %s, due %s",
            copy_id,
            member_id,
            txn.id,
            txn.due_date.isoformat(),
        )
        return txn

    def return_book(self, transaction_id: str, notes: Optional[str] = None) -> TransactionResponse:
        """Close a loan and put the copy back on the shelf.

        If the copy was already moved out of Borrowed by an administrative
        override, the return is still recorded and a warning is logged.

        Args:
            transaction_id: Transaction to close
            notes: Replaces the transaction notes when given

        Returns:
            The Returned transaction

        Raises:
            TransactionNotFound: If no such transaction exists
            TransactionAlreadyReturned: If it was already returned
        """
        with self.db.get_session() as session:
            txn = self.ledger.get(transaction_id, session=session)
            if txn is None:
                raise TransactionNotFound(transaction_id)
            if not txn.is_open:
                raise TransactionAlreadyReturned(transaction_id)

            try:
                self.copies.release(txn.copy_id, session=session)
            except (InvalidStateTransition, CopyNotFound) as e:
                logger.warning(
                    "Recording return of %s without releasing copy %s: %s",
                    transaction_id,
                    txn.copy_id,
                    e,
                )

            returned = self.ledger.mark_returned(
                transaction_id, self._now(), notes=notes, session=session
            )

        logger.info(
            "Returned copy %s from member %s (%s)",
            returned.copy_id,
            returned.member_id,
            transaction_id,
        )
        return returned

    # -------------------------------------------------------------------------
    # Overdue detection
    # -------------------------------------------------------------------------

    def sweep_overdue(self, now: Optional[datetime] = None) -> int:
        """Flag every Active transaction past its due date as Overdue.

        Each record is updated in its own unit of work. A record that fails
        is logged and skipped. Running the sweep again with the same ``now``
        flags nothing new.

        Args:
            now: Reference time; the engine clock when None

        Returns:
            Number of transactions flagged by this run
        """
        now = ensure_utc(now) if now else self._now()
        candidates = self.ledger.find_overdue_candidates(now)

        flagged = 0
        for txn in candidates:
            try:
                updated = self.ledger.mark_overdue(txn.id, now)
            except (CirculationError, StorageUnavailable) as e:
                logger.warning("Skipping overdue update for %s: %s", txn.id, e)
                continue
            if updated.status == TransactionStatus.OVERDUE:
                flagged += 1

        logger.info(
            "Overdue sweep at %s flagged %d of %d candidates",
            now.isoformat(),
            flagged,
            len(candidates),
        )
        return flagged

    # -------------------------------------------------------------------------
    # Eligibility
    # -------------------------------------------------------------------------

    def can_borrow(self, member_id: str) -> BorrowEligibility:
        """Check whether a member could check out another copy.

        Does not reserve anything; a later checkout can still fail.
        """
        limit = self.policy.member_loan_limit
        open_loans = self.ledger.count_open_by_member(member_id)

        reason = None
        try:
            self._require_eligible(member_id)
        except (MemberNotFound, MemberIneligible) as e:
            reason = str(e)
        else:
            if open_loans >= limit:
                reason = f"Member has reached maximum borrowing limit ({open_loans}/{limit})"

        return BorrowEligibility(
            member_id=member_id,
            can_borrow=reason is None,
            reason=reason,
            open_loans=open_loans,
            limit=limit,
        )

    def _require_eligible(self, member_id: str) -> None:
        eligibility = self.members.get_eligibility(member_id)
        if eligibility is None:
            raise MemberNotFound(member_id)
        if not eligibility.is_active:
            raise MemberIneligible(member_id, eligibility.status.value)
