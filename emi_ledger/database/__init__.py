"""Database package for the EMI ledger."""
from .connection import (
    SchemaMismatchError,
    close_db,
    get_db,
    get_session_factory,
    init_db,
    verify_schema,
)
from .models import PAYMENT_STATUS_SUCCESS, Account, Base, Payment

__all__ = [
    "Base",
    "Account",
    "Payment",
    "PAYMENT_STATUS_SUCCESS",
    "SchemaMismatchError",
    "close_db",
    "get_db",
    "get_session_factory",
    "init_db",
    "verify_schema",
]
