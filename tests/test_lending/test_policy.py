"""Tests for LoanPolicyEngine."""

import logging
from datetime import timedelta

import pytest

from circulation.copies import CopyStatus
from circulation.db.schemas import MemberStatus
from circulation.errors import (
    CopyNotFound,
    CopyUnavailable,
    InvalidLoanPeriod,
    MemberIneligible,
    MemberLimitExceeded,
    MemberNotFound,
    StorageUnavailable,
    TransactionAlreadyReturned,
    TransactionNotFound,
)
from circulation.ledger import TransactionFilter, TransactionStatus
from circulation.lending import LoanPolicy, LoanPolicyEngine


class TestCheckout:
    """Tests for lending copies."""

    def test_checkout(self, engine, store, sample_copy, sample_member, clock):
        """Test a checkout creates an Active loan and marks the copy Borrowed."""
        txn = engine.checkout(sample_member, sample_copy.id)

        assert txn.status == TransactionStatus.ACTIVE
        assert txn.member_id == sample_member
        assert txn.copy_id == sample_copy.id
        assert txn.borrow_date == clock()
        assert txn.due_date == clock() + timedelta(days=14)
        assert txn.return_date is None
        assert store.get_copy(sample_copy.id).status == CopyStatus.BORROWED

    def test_checkout_custom_period(self, engine, sample_copy, sample_member):
        txn = engine.checkout(sample_member, sample_copy.id, loan_period_days=7)
        assert txn.due_date - txn.borrow_date == timedelta(days=7)

    def test_checkout_with_notes(self, engine, sample_copy, sample_member):
        txn = engine.checkout(sample_member, sample_copy.id, notes="Reserved at front desk")
        assert txn.notes == "Reserved at front desk"

    def test_checkout_borrowed_copy(self, engine, sample_copy, sample_member, make_member):
        """Test a copy on loan cannot be checked out again."""
        engine.checkout(sample_member, sample_copy.id)
        other = make_member("Bob")

        with pytest.raises(CopyUnavailable) as exc_info:
            engine.checkout(other, sample_copy.id)

        assert exc_info.value.copy_id == sample_copy.id
        assert engine.ledger.count_open_by_member(other) == 0

    def test_checkout_copy_in_maintenance(self, engine, store, sample_copy, sample_member):
        store.set_administrative_status(sample_copy.id, CopyStatus.MAINTENANCE)

        with pytest.raises(CopyUnavailable):
            engine.checkout(sample_member, sample_copy.id)

    def test_checkout_unknown_copy(self, engine, sample_member):
        with pytest.raises(CopyNotFound):
            engine.checkout(sample_member, "non-existent")

    def test_checkout_member_limit(self, engine, store, make_copy, sample_book, sample_member):
        """Test a fourth checkout fails and leaves the copy Available."""
        copies = [make_copy(sample_book) for _ in range(4)]
        for c in copies[:3]:
            engine.checkout(sample_member, c.id)

        with pytest.raises(MemberLimitExceeded) as exc_info:
            engine.checkout(sample_member, copies[3].id)

        assert exc_info.value.limit == 3
        assert "maximum borrowing limit of 3 books" in str(exc_info.value)
        assert store.get_copy(copies[3].id).status == CopyStatus.AVAILABLE
        assert engine.ledger.count_open_by_member(sample_member) == 3

    def test_overdue_loans_count_toward_limit(
        self, engine, make_copy, sample_book, sample_member, clock
    ):
        copies = [make_copy(sample_book) for _ in range(4)]
        for c in copies[:3]:
            engine.checkout(sample_member, c.id)
        clock.advance(days=15)
        engine.sweep_overdue()

        with pytest.raises(MemberLimitExceeded):
            engine.checkout(sample_member, copies[3].id)

    def test_limit_frees_up_after_return(self, engine, make_copy, sample_book, sample_member):
        copies = [make_copy(sample_book) for _ in range(4)]
        loans = [engine.checkout(sample_member, c.id) for c in copies[:3]]
        engine.return_book(loans[0].id)

        txn = engine.checkout(sample_member, copies[3].id)
        assert txn.status == TransactionStatus.ACTIVE

    def test_custom_member_limit(self, db, clock, make_copy, sample_book, sample_member):
        engine = LoanPolicyEngine(db, policy=LoanPolicy(member_loan_limit=1), clock=clock)
        first, second = make_copy(sample_book), make_copy(sample_book)
        engine.checkout(sample_member, first.id)

        with pytest.raises(MemberLimitExceeded):
            engine.checkout(sample_member, second.id)

    def test_checkout_unknown_member(self, engine, store, sample_copy):
        with pytest.raises(MemberNotFound):
            engine.checkout("non-existent", sample_copy.id)
        assert store.get_copy(sample_copy.id).status == CopyStatus.AVAILABLE

    @pytest.mark.parametrize("status", [MemberStatus.INACTIVE, MemberStatus.SUSPENDED])
    def test_checkout_ineligible_member(self, engine, store, sample_copy, make_member, status):
        member = make_member("Dormant", status=status)

        with pytest.raises(MemberIneligible) as exc_info:
            engine.checkout(member, sample_copy.id)

        assert exc_info.value.status == status.value
        assert store.get_copy(sample_copy.id).status == CopyStatus.AVAILABLE

    @pytest.mark.parametrize("days", [0, -3, 91])
    def test_checkout_invalid_period(self, engine, store, sample_copy, sample_member, days):
        with pytest.raises(InvalidLoanPeriod):
            engine.checkout(sample_member, sample_copy.id, loan_period_days=days)
        assert store.get_copy(sample_copy.id).status == CopyStatus.AVAILABLE

    def test_checkout_maximum_period(self, engine, sample_copy, sample_member):
        txn = engine.checkout(sample_member, sample_copy.id, loan_period_days=90)
        assert txn.due_date - txn.borrow_date == timedelta(days=90)

    def test_failed_append_releases_reservation(
        self, engine, store, sample_copy, sample_member, monkeypatch
    ):
        """Test a failure after reserving leaves neither a Borrowed copy nor a loan."""

        def broken_append(*args, **kwargs):
            raise StorageUnavailable("disk I/O error")

        monkeypatch.setattr(engine.ledger, "append", broken_append)

        with pytest.raises(StorageUnavailable):
            engine.checkout(sample_member, sample_copy.id)

        assert store.get_copy(sample_copy.id).status == CopyStatus.AVAILABLE
        assert engine.ledger.count_open_by_member(sample_member) == 0

    def test_checkout_logs(self, engine, sample_copy, sample_member, caplog):
        with caplog.at_level(logging.INFO, logger="circulation"):
            txn = engine.checkout(sample_member, sample_copy.id)

        assert any(txn.id in r.getMessage() for r in caplog.records)


class TestReturn:
    """Tests for returning loans."""

    def test_return(self, engine, store, ledger, sample_copy, sample_member, clock):
        """Test checkout then return leaves one Returned loan and an Available copy."""
        txn = engine.checkout(sample_member, sample_copy.id)
        clock.advance(days=3)

        returned = engine.return_book(txn.id)

        assert returned.status == TransactionStatus.RETURNED
        assert returned.return_date == clock()
        assert store.get_copy(sample_copy.id).status == CopyStatus.AVAILABLE

        history = list(ledger.find_history(TransactionFilter(copy_id=sample_copy.id)))
        assert len(history) == 1
        assert history[0].member_id == sample_member
        assert history[0].status == TransactionStatus.RETURNED

    def test_return_with_notes(self, engine, sample_copy, sample_member):
        txn = engine.checkout(sample_member, sample_copy.id)
        returned = engine.return_book(txn.id, notes="Spine cracked")
        assert returned.notes == "Spine cracked"

    def test_return_twice(self, engine, sample_copy, sample_member):
        txn = engine.checkout(sample_member, sample_copy.id)
        engine.return_book(txn.id)

        with pytest.raises(TransactionAlreadyReturned):
            engine.return_book(txn.id)

    def test_return_unknown(self, engine):
        with pytest.raises(TransactionNotFound):
            engine.return_book("non-existent")

    def test_return_overdue(self, engine, store, sample_copy, sample_member, clock):
        """Test an Overdue loan can be returned after a sweep."""
        txn = engine.checkout(sample_member, sample_copy.id)
        clock.advance(days=15)
        assert engine.sweep_overdue() == 1
        assert engine.ledger.get(txn.id).status == TransactionStatus.OVERDUE

        returned = engine.return_book(txn.id)

        assert returned.status == TransactionStatus.RETURNED
        assert store.get_copy(sample_copy.id).status == CopyStatus.AVAILABLE

    def test_return_after_copy_marked_lost(
        self, engine, store, sample_copy, sample_member, caplog
    ):
        """Test the loan still closes when the copy was moved out of Borrowed."""
        txn = engine.checkout(sample_member, sample_copy.id)
        store.set_administrative_status(sample_copy.id, CopyStatus.LOST)

        with caplog.at_level(logging.WARNING, logger="circulation"):
            returned = engine.return_book(txn.id)

        assert returned.status == TransactionStatus.RETURNED
        assert store.get_copy(sample_copy.id).status == CopyStatus.LOST
        assert any("without releasing copy" in r.getMessage() for r in caplog.records)

    def test_copy_can_be_lent_again(self, engine, sample_copy, sample_member, make_member):
        txn = engine.checkout(sample_member, sample_copy.id)
        engine.return_book(txn.id)
        other = make_member("Bob")

        again = engine.checkout(other, sample_copy.id)
        assert again.member_id == other


class TestSweepOverdue:
    """Tests for overdue sweeps."""

    def test_sweep(self, engine, make_copy, sample_book, sample_member, clock):
        """Test only loans past due are flagged."""
        early = engine.checkout(sample_member, make_copy(sample_book).id, loan_period_days=7)
        late = engine.checkout(sample_member, make_copy(sample_book).id, loan_period_days=30)

        flagged = engine.sweep_overdue(clock() + timedelta(days=8))

        assert flagged == 1
        assert engine.ledger.get(early.id).status == TransactionStatus.OVERDUE
        assert engine.ledger.get(late.id).status == TransactionStatus.ACTIVE

    def test_sweep_exactly_at_due(self, engine, sample_copy, sample_member, clock):
        txn = engine.checkout(sample_member, sample_copy.id)
        assert engine.sweep_overdue(txn.due_date) == 0
        assert engine.ledger.get(txn.id).status == TransactionStatus.ACTIVE

    def test_sweep_is_idempotent(self, engine, make_copy, sample_book, sample_member, clock):
        loans = [engine.checkout(sample_member, make_copy(sample_book).id) for _ in range(2)]
        now = clock() + timedelta(days=20)

        assert engine.sweep_overdue(now) == 2
        first = {t.id for t in engine.ledger.find_open() if t.status == TransactionStatus.OVERDUE}

        assert engine.sweep_overdue(now) == 0
        second = {t.id for t in engine.ledger.find_open() if t.status == TransactionStatus.OVERDUE}

        assert first == second == {t.id for t in loans}

    def test_sweep_ignores_returned(self, engine, sample_copy, sample_member, clock):
        txn = engine.checkout(sample_member, sample_copy.id)
        engine.return_book(txn.id)

        assert engine.sweep_overdue(clock() + timedelta(days=30)) == 0
        assert engine.ledger.get(txn.id).status == TransactionStatus.RETURNED

    def test_sweep_uses_clock(self, engine, sample_copy, sample_member, clock):
        engine.checkout(sample_member, sample_copy.id)
        assert engine.sweep_overdue() == 0

        clock.advance(days=14, seconds=1)
        assert engine.sweep_overdue() == 1

    def test_sweep_skips_failures(
        self, engine, make_copy, sample_book, sample_member, clock, monkeypatch, caplog
    ):
        """Test one failing record is logged and the rest are still flagged."""
        broken = engine.checkout(sample_member, make_copy(sample_book).id)
        fine = engine.checkout(sample_member, make_copy(sample_book).id)
        mark_overdue = engine.ledger.mark_overdue

        def flaky(transaction_id, now=None, session=None):
            if transaction_id == broken.id:
                raise StorageUnavailable("database is locked")
            return mark_overdue(transaction_id, now, session=session)

        monkeypatch.setattr(engine.ledger, "mark_overdue", flaky)

        with caplog.at_level(logging.WARNING, logger="circulation"):
            flagged = engine.sweep_overdue(clock() + timedelta(days=20))

        assert flagged == 1
        assert engine.ledger.get(fine.id).status == TransactionStatus.OVERDUE
        assert engine.ledger.get(broken.id).status == TransactionStatus.ACTIVE
        assert any(broken.id in r.getMessage() for r in caplog.records)


class TestCanBorrow:
    """Tests for eligibility checks."""

    def test_can_borrow(self, engine, sample_member):
        result = engine.can_borrow(sample_member)

        assert result.can_borrow
        assert result.reason is None
        assert result.open_loans == 0
        assert result.limit == 3

    def test_cannot_borrow_at_limit(self, engine, make_copy, sample_book, sample_member):
        for _ in range(3):
            engine.checkout(sample_member, make_copy(sample_book).id)

        result = engine.can_borrow(sample_member)

        assert not result.can_borrow
        assert result.open_loans == 3
        assert "limit" in result.reason

    def test_cannot_borrow_suspended(self, engine, make_member):
        member = make_member("Suspended", status=MemberStatus.SUSPENDED)

        result = engine.can_borrow(member)

        assert not result.can_borrow
        assert "suspended" in result.reason

    def test_cannot_borrow_unknown(self, engine):
        result = engine.can_borrow("non-existent")
        assert not result.can_borrow
        assert "not found" in result.reason


class TestLoanPolicy:
    """Tests for the policy model."""

    def test_defaults(self):
        policy = LoanPolicy()
        assert policy.loan_period_days == 14
        assert policy.max_loan_period_days == 90
        assert policy.member_loan_limit == 3

    def test_default_period_above_maximum(self):
        with pytest.raises(ValueError):
            LoanPolicy(loan_period_days=30, max_loan_period_days=21)

    def test_from_config(self, monkeypatch):
        from circulation.config import Config

        monkeypatch.setenv("CIRCULATION_LOAN_PERIOD_DAYS", "21")
        monkeypatch.setenv("CIRCULATION_MEMBER_LOAN_LIMIT", "5")

        policy = LoanPolicy.from_config(Config.from_env())

        assert policy.loan_period_days == 21
        assert policy.member_loan_limit == 5
