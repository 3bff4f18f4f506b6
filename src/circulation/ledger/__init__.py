"""Borrowing transaction ledger.

Provides functionality for:
- Recording loan episodes
- Return and overdue status changes
- Open-loan lookups by copy and member
- Lazy history queries
"""

from .ledger import BorrowingTransactionLedger, TransactionHistory
from .models import BorrowingTransaction
from .schemas import (
    OPEN_STATUSES,
    TRANSACTION_TRANSITIONS,
    TransactionFilter,
    TransactionResponse,
    TransactionStatus,
    can_transition,
)

__all__ = [
    "BorrowingTransactionLedger",
    "TransactionHistory",
    "BorrowingTransaction",
    "TransactionFilter",
    "TransactionResponse",
    "TransactionStatus",
    "OPEN_STATUSES",
    "TRANSACTION_TRANSITIONS",
    "can_transition",
]
