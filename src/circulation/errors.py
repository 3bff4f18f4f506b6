"""Error taxonomy for the circulation engine.

Every ``CirculationError`` is an expected business outcome that callers are
meant to catch and map to a response. ``StorageUnavailable`` is a separate,
lower-level failure of the database itself.
"""

from typing import Optional


class CirculationError(Exception):
    """Base class for expected checkout/return outcomes."""


class CopyNotFound(CirculationError):
    """No copy exists with the given ID."""

    def __init__(self, copy_id: str):
        self.copy_id = copy_id
        super().__init__(f"Copy not found: {copy_id}")


class CopyUnavailable(CirculationError):
    """Copy exists but cannot be borrowed right now."""

    def __init__(self, copy_id: str, status: Optional[str] = None):
        self.copy_id = copy_id
        self.status = status
        detail = f" (status: {status})" if status else ""
        super().__init__(f"Copy is not available for borrowing: {copy_id}{detail}")


class DuplicateCopy(CirculationError):
    """Copy number already registered for the book."""

    def __init__(self, book_id: str, copy_number: str):
        self.book_id = book_id
        self.copy_number = copy_number
        super().__init__(f"Copy {copy_number} already exists for book {book_id}")


class MemberNotFound(CirculationError):
    """No member exists with the given ID."""

    def __init__(self, member_id: str):
        self.member_id = member_id
        super().__init__(f"Member not found: {member_id}")


class MemberIneligible(CirculationError):
    """Member is inactive or suspended."""

    def __init__(self, member_id: str, status: str):
        self.member_id = member_id
        self.status = status
        super().__init__(f"Member {member_id} is not eligible to borrow (status: {status})")


class MemberLimitExceeded(CirculationError):
    """Member already holds the maximum number of open loans."""

    def __init__(self, member_id: str, limit: int):
        self.member_id = member_id
        self.limit = limit
        super().__init__(
            f"Member {member_id} has reached the maximum borrowing limit of {limit} books"
        )


class TransactionNotFound(CirculationError):
    """No borrowing transaction exists with the given ID."""

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction not found: {transaction_id}")


class TransactionAlreadyReturned(CirculationError):
    """Transaction has already been closed by a return."""

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction already returned: {transaction_id}")


class InvalidStateTransition(CirculationError):
    """Requested status change is not allowed from the current status."""

    def __init__(self, entity: str, entity_id: str, current: str, target: str):
        self.entity = entity
        self.entity_id = entity_id
        self.current = current
        self.target = target
        super().__init__(f"Cannot move {entity} {entity_id} from {current} to {target}")


class InvalidLoanPeriod(CirculationError):
    """Requested loan period is outside the configured bounds."""

    def __init__(self, days: int, maximum: int):
        self.days = days
        self.maximum = maximum
        super().__init__(f"Loan period must be between 1 and {maximum} days, got {days}")


class StorageUnavailable(Exception):
    """The underlying database could not be reached or is locked."""
