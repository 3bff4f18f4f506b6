"""Copy availability store.

Single source of truth for the status of every physical copy. Every status
change is a conditional UPDATE keyed on the status the caller expects, so
concurrent callers are ordered by the database and at most one of them wins.
"""

import logging
from typing import Optional, Union

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ..db.models import Book, now_iso
from ..db.sqlite import Database, get_db
from ..errors import CopyNotFound, CopyUnavailable, DuplicateCopy, InvalidStateTransition
from .models import BookCopy
from .schemas import (
    ADMINISTRATIVE_STATUSES,
    CopyCreate,
    CopyResponse,
    CopyStatus,
    can_transition,
)

logger = logging.getLogger(__name__)


class CopyAvailabilityStore:
    """Holds copy status and performs atomic status transitions."""

    def __init__(self, db: Optional[Database] = None):
        """Initialize the store.

        Args:
            db: Database instance
        """
        self.db = db or get_db()

    # -------------------------------------------------------------------------
    # Registration and lookup
    # -------------------------------------------------------------------------

    def add_copy(self, data: CopyCreate) -> CopyResponse:
        """Register a new physical copy of a catalog book.

        Args:
            data: Copy creation data

        Returns:
            Created copy

        Raises:
            ValueError: If the book is not in the catalog
            DuplicateCopy: If the copy number is already used for the book
        """
        with self.db.get_session() as session:
            if session.get(Book, data.book_id) is None:
                raise ValueError("Book not found")

            existing = session.execute(
                select(BookCopy.id).where(
                    BookCopy.book_id == data.book_id,
                    BookCopy.copy_number == data.copy_number,
                )
            ).scalar_one_or_none()
            if existing:
                raise DuplicateCopy(data.book_id, data.copy_number)

            copy = BookCopy(
                book_id=data.book_id,
                copy_number=data.copy_number,
                status=data.status.value,
                condition_notes=data.condition_notes,
                acquisition_date=(
                    data.acquisition_date.isoformat() if data.acquisition_date else None
                ),
            )
            session.add(copy)
            session.flush()
            session.refresh(copy)
            return CopyResponse.model_validate(copy)

    def get_copy(self, copy_id: str, session: Optional[Session] = None) -> Optional[CopyResponse]:
        """Get a copy by ID.

        Args:
            copy_id: Copy ID
            session: Optional session to read within

        Returns:
            Copy or None
        """

        def _get(s: Session) -> Optional[CopyResponse]:
            copy = s.get(BookCopy, copy_id, populate_existing=True)
            return CopyResponse.model_validate(copy) if copy else None

        if session:
            return _get(session)
        with self.db.get_session(write=False) as s:
            return _get(s)

    def list_copies(
        self,
        book_id: Optional[str] = None,
        status: Optional[CopyStatus] = None,
    ) -> list[CopyResponse]:
        """List copies with optional filters.

        Args:
            book_id: Filter by owning book
            status: Filter by status

        Returns:
            List of copies ordered by book and copy number
        """
        with self.db.get_session(write=False) as session:
            stmt = select(BookCopy)
            if book_id:
                stmt = stmt.where(BookCopy.book_id == book_id)
            if status:
                stmt = stmt.where(BookCopy.status == CopyStatus(status).value)
            stmt = stmt.order_by(BookCopy.book_id, BookCopy.copy_number)

            copies = session.execute(stmt).scalars().all()
            return [CopyResponse.model_validate(c) for c in copies]

    def count_by_status(self, book_id: str) -> dict[CopyStatus, int]:
        """Count a book's copies in each status. Every status is present."""
        with self.db.get_session(write=False) as session:
            rows = session.execute(
                select(BookCopy.status, func.count())
                .where(BookCopy.book_id == book_id)
                .group_by(BookCopy.status)
            ).all()

        counts = {status: 0 for status in CopyStatus}
        for status, count in rows:
            counts[CopyStatus(status)] = count
        return counts

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def try_reserve(self, copy_id: str, session: Optional[Session] = None) -> CopyResponse:
        """Move a copy from Available to Borrowed in one step.

        Args:
            copy_id: Copy ID
            session: Session of the enclosing unit of work, if any

        Returns:
            The reserved copy

        Raises:
            CopyNotFound: If the copy does not exist
            CopyUnavailable: If the copy is not currently Available
        """

        def _reserve(s: Session) -> CopyResponse:
            if self._compare_and_set(s, copy_id, CopyStatus.AVAILABLE, CopyStatus.BORROWED):
                return self._load(s, copy_id)

            current = self._current_status(s, copy_id)
            if current is None:
                raise CopyNotFound(copy_id)
            raise CopyUnavailable(copy_id, current.value)

        if session:
            return _reserve(session)
        with self.db.get_session() as s:
            return _reserve(s)

    def release(self, copy_id: str, session: Optional[Session] = None) -> CopyResponse:
        """Move a copy from Borrowed back to Available.

        Raises:
            CopyNotFound: If the copy does not exist
            InvalidStateTransition: If the copy is not currently Borrowed
        """

        def _release(s: Session) -> CopyResponse:
            if self._compare_and_set(s, copy_id, CopyStatus.BORROWED, CopyStatus.AVAILABLE):
                return self._load(s, copy_id)

            current = self._current_status(s, copy_id)
            if current is None:
                raise CopyNotFound(copy_id)
            raise InvalidStateTransition(
                "copy", copy_id, current.value, CopyStatus.AVAILABLE.value
            )

        if session:
            return _release(session)
        with self.db.get_session() as s:
            return _release(s)

    def set_administrative_status(
        self,
        copy_id: str,
        status: Union[CopyStatus, str],
        notes: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> CopyResponse:
        """Put a copy into Maintenance/Lost/Damaged, or back to Available.

        Used outside the loan cycle by catalog staff. Setting the status a
        copy already has only updates the notes.

        Args:
            copy_id: Copy ID
            status: Target status (never Borrowed)
            notes: Replaces the condition notes when given

        Raises:
            CopyNotFound: If the copy does not exist
            InvalidStateTransition: If the move is not allowed
        """
        target = CopyStatus(status)

        def _set(s: Session) -> CopyResponse:
            current = self._current_status(s, copy_id)
            if current is None:
                raise CopyNotFound(copy_id)
            if target not in ADMINISTRATIVE_STATUSES:
                raise InvalidStateTransition("copy", copy_id, current.value, target.value)

            if current != target:
                if not can_transition(current, target):
                    raise InvalidStateTransition("copy", copy_id, current.value, target.value)
                if not self._compare_and_set(s, copy_id, current, target):
                    # Lost a race with a reservation or release
                    latest = self._current_status(s, copy_id)
                    raise InvalidStateTransition(
                        "copy", copy_id, latest.value if latest else current.value, target.value
                    )
                if current == CopyStatus.BORROWED:
                    logger.warning(
                        "Copy %s moved from Borrowed to %s by administrative override",
                        copy_id,
                        target.value,
                    )

            if notes is not None:
                s.execute(
                    update(BookCopy)
                    .where(BookCopy.id == copy_id)
                    .values(condition_notes=notes, updated_at=now_iso())
                )
            return self._load(s, copy_id)

        if session:
            return _set(session)
        with self.db.get_session() as s:
            return _set(s)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _compare_and_set(
        session: Session,
        copy_id: str,
        expected: CopyStatus,
        target: CopyStatus,
    ) -> bool:
        """Set the status only if it still equals expected. True on success."""
        result = session.execute(
            update(BookCopy)
            .where(BookCopy.id == copy_id, BookCopy.status == expected.value)
            .values(status=target.value, updated_at=now_iso())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def _current_status(session: Session, copy_id: str) -> Optional[CopyStatus]:
        status = session.execute(
            select(BookCopy.status).where(BookCopy.id == copy_id)
        ).scalar_one_or_none()
        return CopyStatus(status) if status else None

    @staticmethod
    def _load(session: Session, copy_id: str) -> CopyResponse:
        copy = session.get(BookCopy, copy_id, populate_existing=True)
        return CopyResponse.model_validate(copy)
