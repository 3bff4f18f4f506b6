"""Pydantic schemas and status rules for borrowing transactions."""

from datetime import datetime
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from ..utils import days_between, ensure_utc


class TransactionStatus(str, Enum):
    """Status of a loan episode."""

    ACTIVE = "Active"
    OVERDUE = "Overdue"
    RETURNED = "Returned"


TRANSACTION_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.ACTIVE: frozenset({TransactionStatus.OVERDUE, TransactionStatus.RETURNED}),
    TransactionStatus.OVERDUE: frozenset({TransactionStatus.RETURNED}),
    TransactionStatus.RETURNED: frozenset(),
}

# A transaction is open until it is returned
OPEN_STATUSES = (TransactionStatus.ACTIVE, TransactionStatus.OVERDUE)


def can_transition(current: TransactionStatus, target: TransactionStatus) -> bool:
    """Check whether a transaction may move from current to target."""
    return target in TRANSACTION_TRANSITIONS[current]


class TransactionResponse(BaseModel):
    """Schema for transaction responses."""

    id: str
    copy_id: str
    member_id: str
    borrow_date: datetime
    due_date: datetime
    return_date: Optional[datetime] = None
    status: TransactionStatus
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def is_open(self) -> bool:
        """Not yet returned."""
        return self.status in OPEN_STATUSES

    def is_overdue_at(self, now: datetime) -> bool:
        """Overdue by status, or still Active past the due date."""
        if self.status == TransactionStatus.OVERDUE:
            return True
        return self.status == TransactionStatus.ACTIVE and self.due_date < ensure_utc(now)

    def days_overdue(self, now: datetime) -> int:
        """Whole days past due (0 if not overdue)."""
        if not self.is_overdue_at(now):
            return 0
        return max(days_between(self.due_date, now), 0)


class TransactionFilter(BaseModel):
    """Criteria for a ledger history query. All fields are optional."""

    copy_id: Optional[str] = None
    member_id: Optional[str] = None
    book_id: Optional[str] = None
    borrowed_from: Optional[datetime] = None
    borrowed_until: Optional[datetime] = None
    status: Optional[list[TransactionStatus]] = None
    limit: Optional[int] = Field(None, ge=1)

    @field_validator("status", mode="before")
    @classmethod
    def wrap_single_status(cls, v: Union[None, str, TransactionStatus, list]):
        """Accept a single status as well as a list."""
        if v is None or isinstance(v, list):
            return v
        return [v]

    @model_validator(mode="after")
    def window_in_order(self):
        """Validate the borrow-date window."""
        if (
            self.borrowed_from
            and self.borrowed_until
            and ensure_utc(self.borrowed_until) < ensure_utc(self.borrowed_from)
        ):
            raise ValueError("borrowed_until must not be before borrowed_from")
        return self
