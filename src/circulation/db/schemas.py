"""Pydantic schemas for the catalog and member data providers."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class MemberStatus(str, Enum):
    """Eligibility status of a library member."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class BookResponse(BaseModel):
    """Catalog metadata for a book."""

    id: str
    title: str
    author: str
    isbn: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class MemberEligibility(BaseModel):
    """Eligibility facts the loan engine needs about a member."""

    member_id: str
    status: MemberStatus

    @property
    def is_active(self) -> bool:
        """Only active members may borrow."""
        return self.status == MemberStatus.ACTIVE
