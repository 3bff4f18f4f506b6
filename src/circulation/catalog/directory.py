"""Read-only lookups into the catalog and member services.

The loan engine never writes books or members. It only needs to know which
book a copy belongs to, which copies a book has, and whether a member may
borrow. Anything with the same methods can be passed in their place.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..copies.models import BookCopy
from ..db.models import Book, Member
from ..db.schemas import BookResponse, MemberEligibility, MemberStatus
from ..db.sqlite import Database, get_db


class CatalogDirectory:
    """Copy and book lookups backed by the shared database."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_db()

    def book_id_for_copy(self, copy_id: str, session: Optional[Session] = None) -> Optional[str]:
        """Return the owning book ID of a copy, or None if unknown."""

        def _lookup(s: Session) -> Optional[str]:
            return s.execute(
                select(BookCopy.book_id).where(BookCopy.id == copy_id)
            ).scalar_one_or_none()

        if session:
            return _lookup(session)
        with self.db.get_session(write=False) as s:
            return _lookup(s)

    def copy_ids_for_book(self, book_id: str) -> list[str]:
        """Return every copy ID registered for a book, by copy number."""
        with self.db.get_session(write=False) as session:
            stmt = (
                select(BookCopy.id)
                .where(BookCopy.book_id == book_id)
                .order_by(BookCopy.copy_number)
            )
            return list(session.execute(stmt).scalars().all())

    def get_book(self, book_id: str) -> Optional[BookResponse]:
        """Return catalog metadata for a book."""
        with self.db.get_session(write=False) as session:
            book = session.get(Book, book_id)
            return BookResponse.model_validate(book) if book else None

    def get_books(self, book_ids: list[str]) -> dict[str, BookResponse]:
        """Return metadata for several books keyed by ID. Unknown IDs are skipped."""
        if not book_ids:
            return {}
        with self.db.get_session(write=False) as session:
            books = session.execute(select(Book).where(Book.id.in_(book_ids))).scalars().all()
            return {b.id: BookResponse.model_validate(b) for b in books}


class MemberDirectory:
    """Member eligibility lookups backed by the shared database."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_db()

    def get_eligibility(self, member_id: str) -> Optional[MemberEligibility]:
        """Return the member's eligibility, or None if the member does not exist."""
        with self.db.get_session(write=False) as session:
            status = session.execute(
                select(Member.status).where(Member.id == member_id)
            ).scalar_one_or_none()
            if status is None:
                return None
            return MemberEligibility(member_id=member_id, status=MemberStatus(status))
