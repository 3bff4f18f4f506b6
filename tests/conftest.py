"""Pytest configuration and shared fixtures.

This module provides fixtures for testing the circulation engine,
including in-memory databases, a controllable clock and catalog data.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Generator

import pytest

from circulation.config import reset_config
from circulation.copies import CopyAvailabilityStore, CopyCreate, CopyResponse
from circulation.db.models import Book, Member
from circulation.db.schemas import MemberStatus
from circulation.db.sqlite import Database, reset_db
from circulation.ledger import BorrowingTransactionLedger
from circulation.lending import LoanPolicy, LoanPolicyEngine
from circulation.rentals import RentalQueryService


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def reset_globals() -> Generator[None, None, None]:
    """Keep global config and database state out of individual tests."""
    reset_db()
    reset_config()
    yield
    reset_db()
    reset_config()


@pytest.fixture
def db() -> Database:
    """Create an in-memory database for testing."""
    database = Database(":memory:")
    database.create_tables()
    return database


@pytest.fixture
def file_db(tmp_path: Path) -> Generator[Database, None, None]:
    """Create a file-backed database, needed for multi-threaded tests."""
    database = Database(str(tmp_path / "library.db"), busy_timeout=30)
    database.create_tables()
    yield database
    database.engine.dispose()


# ============================================================================
# Clock
# ============================================================================


@pytest.fixture
def start_time() -> datetime:
    return datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(start_time: datetime) -> FixedClock:
    """A clock fixed at the start time."""
    return FixedClock(start_time)


# ============================================================================
# Sample Data Factories
# ============================================================================


def _book_factory(database: Database) -> Callable[..., str]:
    def make(title: str = "Test Book", author: str = "Test Author") -> str:
        with database.get_session() as session:
            book = Book(title=title, author=author)
            session.add(book)
            session.flush()
            return book.id

    return make


def _member_factory(database: Database) -> Callable[..., str]:
    def make(name: str = "Test Member", status: MemberStatus = MemberStatus.ACTIVE) -> str:
        with database.get_session() as session:
            member = Member(name=name, status=status.value)
            session.add(member)
            session.flush()
            return member.id

    return make


def _copy_factory(database: Database) -> Callable[..., CopyResponse]:
    store = CopyAvailabilityStore(database)
    counter = {"n": 0}

    def make(book_id: str, copy_number: str = None) -> CopyResponse:
        counter["n"] += 1
        return store.add_copy(
            CopyCreate(book_id=book_id, copy_number=copy_number or f"C{counter['n']:03d}")
        )

    return make


@pytest.fixture
def make_book(db: Database):
    """Factory that adds a catalog book and returns its ID."""
    return _book_factory(db)


@pytest.fixture
def make_member(db: Database):
    """Factory that adds a member and returns its ID."""
    return _member_factory(db)


@pytest.fixture
def make_copy(db: Database):
    """Factory that registers a copy of a book."""
    return _copy_factory(db)


@pytest.fixture
def factories_for():
    """Build book, member and copy factories bound to any database."""

    def build(database: Database):
        return _book_factory(database), _member_factory(database), _copy_factory(database)

    return build


@pytest.fixture
def file_factories(file_db: Database, factories_for):
    """Book, member and copy factories bound to the file database."""
    return factories_for(file_db)


@pytest.fixture
def sample_book(make_book) -> str:
    return make_book("The Left Hand of Darkness", "Ursula K. Le Guin")


@pytest.fixture
def sample_member(make_member) -> str:
    return make_member("Alice Reader")


@pytest.fixture
def sample_copy(make_copy, sample_book: str) -> CopyResponse:
    return make_copy(sample_book)


# ============================================================================
# Component Fixtures
# ============================================================================


@pytest.fixture
def store(db: Database) -> CopyAvailabilityStore:
    return CopyAvailabilityStore(db)


@pytest.fixture
def ledger(db: Database) -> BorrowingTransactionLedger:
    return BorrowingTransactionLedger(db)


@pytest.fixture
def policy() -> LoanPolicy:
    return LoanPolicy()


@pytest.fixture
def engine(db: Database, policy: LoanPolicy, clock: FixedClock) -> LoanPolicyEngine:
    """Loan engine on the in-memory database with the fixed clock."""
    return LoanPolicyEngine(db, policy=policy, clock=clock)


@pytest.fixture
def queries(db: Database, clock: FixedClock) -> RentalQueryService:
    """Query service on the in-memory database with the fixed clock."""
    return RentalQueryService(db, member_loan_limit=3, clock=clock)
