"""SQLAlchemy model for borrowing transactions.

Tables:
- borrowing_transactions: One row per loan episode, never deleted
"""

from typing import Optional

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..db.models import Base, generate_uuid, now_iso
from .schemas import TransactionStatus


class BorrowingTransaction(Base):
    """BorrowingTransaction model - one borrow-to-return cycle."""

    __tablename__ = "borrowing_transactions"
    __table_args__ = (
        Index("idx_borrowing_transactions_copy_status", "copy_id", "status"),
        Index("idx_borrowing_transactions_member_status", "member_id", "status"),
        Index("idx_borrowing_transactions_status_due", "status", "due_date"),
        Index("idx_borrowing_transactions_borrow_date", "borrow_date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    copy_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("book_copies.id"), nullable=False
    )
    member_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("members.id"), nullable=False
    )

    # UTC timestamps in storage format
    borrow_date: Mapped[str] = mapped_column(String(32), nullable=False)
    due_date: Mapped[str] = mapped_column(String(32), nullable=False)
    return_date: Mapped[Optional[str]] = mapped_column(String(32))

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransactionStatus.ACTIVE.value
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[str] = mapped_column(String(32), default=now_iso)
    updated_at: Mapped[str] = mapped_column(String(32), default=now_iso, onupdate=now_iso)

    def __repr__(self) -> str:
        return (
            f"<BorrowingTransaction(id={self.id}, copy_id={self.copy_id}, "
            f"member_id={self.member_id}, status={self.status})>"
        )
