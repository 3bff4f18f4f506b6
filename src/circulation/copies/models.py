"""SQLAlchemy model for physical copies.

Tables:
- book_copies: One row per physical copy of a catalog book
"""

from typing import Optional

from sqlalchemy import ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ..db.models import Base, generate_uuid, now_iso
from .schemas import CopyStatus


class BookCopy(Base):
    """BookCopy model - the unit that is actually lent out."""

    __tablename__ = "book_copies"
    __table_args__ = (
        UniqueConstraint("book_id", "copy_number", name="uq_book_copies_book_number"),
        Index("idx_book_copies_status", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    book_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("books.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    copy_number: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CopyStatus.AVAILABLE.value
    )
    condition_notes: Mapped[Optional[str]] = mapped_column(Text)
    acquisition_date: Mapped[Optional[str]] = mapped_column(String(10))  # ISO date

    # Timestamps
    created_at: Mapped[str] = mapped_column(String(32), default=now_iso)
    updated_at: Mapped[str] = mapped_column(String(32), default=now_iso, onupdate=now_iso)

    def __repr__(self) -> str:
        return f"<BookCopy(id={self.id}, book_id={self.book_id}, status={self.status})>"
