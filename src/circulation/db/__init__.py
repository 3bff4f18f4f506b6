"""Database module for local SQLite storage."""

from .models import Base, Book, Member
from .schemas import BookResponse, MemberEligibility, MemberStatus
from .sqlite import Database, get_db, reset_db

__all__ = [
    "Base",
    "Book",
    "Member",
    "BookResponse",
    "MemberEligibility",
    "MemberStatus",
    "Database",
    "get_db",
    "reset_db",
]
