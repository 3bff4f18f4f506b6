"""SQLAlchemy ORM models shared by the circulation engine.

Tables:
- books: Catalog books (owned by the catalog service, read here)
- members: Library members (owned by the member service, read here)

Copy and transaction tables live with their stores in
``circulation.copies.models`` and ``circulation.ledger.models``.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .schemas import MemberStatus


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def generate_uuid() -> str:
    """Generate a UUID string for primary keys."""
    return str(uuid4())


def now_iso() -> str:
    """Current UTC time in the storage format."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class Book(Base):
    """Book model - one catalog title, possibly with many physical copies."""

    __tablename__ = "books"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    title: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    author: Mapped[str] = mapped_column(String(500), nullable=False)
    isbn: Mapped[Optional[str]] = mapped_column(String(13), index=True)

    created_at: Mapped[str] = mapped_column(String(32), default=now_iso)

    def __repr__(self) -> str:
        return f"<Book(id={self.id}, title='{self.title}')>"


class Member(Base):
    """Member model - only the fields the loan engine reads."""

    __tablename__ = "members"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(200))
    status: Mapped[str] = mapped_column(
        String(20), default=MemberStatus.ACTIVE.value, index=True
    )

    created_at: Mapped[str] = mapped_column(String(32), default=now_iso)
    updated_at: Mapped[str] = mapped_column(String(32), default=now_iso, onupdate=now_iso)

    def __repr__(self) -> str:
        return f"<Member(id={self.id}, name='{self.name}', status={self.status})>"
