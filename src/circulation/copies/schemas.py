"""Pydantic schemas and status rules for physical copies."""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class CopyStatus(str, Enum):
    """Status of one physical copy."""

    AVAILABLE = "Available"
    BORROWED = "Borrowed"
    MAINTENANCE = "Maintenance"
    LOST = "Lost"
    DAMAGED = "Damaged"


# Allowed moves out of each status. Borrowed is only ever entered through
# a reservation, never through an administrative change.
COPY_TRANSITIONS: dict[CopyStatus, frozenset[CopyStatus]] = {
    CopyStatus.AVAILABLE: frozenset(
        {CopyStatus.BORROWED, CopyStatus.MAINTENANCE, CopyStatus.LOST, CopyStatus.DAMAGED}
    ),
    CopyStatus.BORROWED: frozenset(
        {CopyStatus.AVAILABLE, CopyStatus.LOST, CopyStatus.DAMAGED}
    ),
    CopyStatus.MAINTENANCE: frozenset(
        {CopyStatus.AVAILABLE, CopyStatus.LOST, CopyStatus.DAMAGED}
    ),
    CopyStatus.LOST: frozenset({CopyStatus.AVAILABLE, CopyStatus.DAMAGED}),
    CopyStatus.DAMAGED: frozenset(
        {CopyStatus.AVAILABLE, CopyStatus.MAINTENANCE, CopyStatus.LOST}
    ),
}

ADMINISTRATIVE_STATUSES = frozenset(
    {CopyStatus.AVAILABLE, CopyStatus.MAINTENANCE, CopyStatus.LOST, CopyStatus.DAMAGED}
)


def can_transition(current: CopyStatus, target: CopyStatus) -> bool:
    """Check whether a copy may move from current to target."""
    return target in COPY_TRANSITIONS[current]


class CopyCreate(BaseModel):
    """Schema for registering a physical copy."""

    book_id: str = Field(..., min_length=1, max_length=36)
    copy_number: str = Field(..., min_length=1, max_length=50)
    status: CopyStatus = CopyStatus.AVAILABLE
    condition_notes: Optional[str] = None
    acquisition_date: Optional[date] = None

    @field_validator("status")
    @classmethod
    def not_borrowed(cls, v):
        """New copies cannot start out on loan."""
        if v == CopyStatus.BORROWED:
            raise ValueError("a new copy cannot be registered as Borrowed")
        return v


class CopyResponse(BaseModel):
    """Schema for copy responses."""

    id: str
    book_id: str
    copy_number: str
    status: CopyStatus
    condition_notes: Optional[str] = None
    acquisition_date: Optional[date] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def is_available(self) -> bool:
        return self.status == CopyStatus.AVAILABLE
