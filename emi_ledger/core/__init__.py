"""Core account, ledger and payment processing logic."""
from .accounts import AccountStore
from .exceptions import (
    AccountAlreadyExistsError,
    AccountNotFoundError,
    AmountExceedsDueError,
    ConcurrencyConflictError,
    InvalidAmountError,
    LedgerError,
    TransientStorageError,
    ValidationError,
)
from .ledger import PaymentLedger
from .payment_processor import PaymentProcessor, PaymentReceipt, PaymentState

__all__ = [
    "AccountStore",
    "PaymentLedger",
    "PaymentProcessor",
    "PaymentReceipt",
    "PaymentState",
    "LedgerError",
    "AccountNotFoundError",
    "AccountAlreadyExistsError",
    "AmountExceedsDueError",
    "ConcurrencyConflictError",
    "InvalidAmountError",
    "TransientStorageError",
    "ValidationError",
]
