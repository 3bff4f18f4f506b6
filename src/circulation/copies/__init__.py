"""Physical copy status tracking.

Provides functionality for:
- Registering copies of catalog books
- Atomic reservation and release for the loan cycle
- Administrative status changes (maintenance, lost, damaged)
"""

from .models import BookCopy
from .schemas import (
    ADMINISTRATIVE_STATUSES,
    COPY_TRANSITIONS,
    CopyCreate,
    CopyResponse,
    CopyStatus,
    can_transition,
)
from .store import CopyAvailabilityStore

__all__ = [
    "CopyAvailabilityStore",
    "BookCopy",
    "CopyCreate",
    "CopyResponse",
    "CopyStatus",
    "COPY_TRANSITIONS",
    "ADMINISTRATIVE_STATUSES",
    "can_transition",
]
