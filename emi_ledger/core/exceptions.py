"""
Exception classes for the EMI ledger.

Every error carries:
- Error code (for client handling)
- User message (safe to show to users)
- HTTP status code (for API responses)
- Whether the caller may retry the whole request

Client errors (not found, validation, business rule) are expected outcomes.
Conflict and storage errors are transient and surfaced as "try again".
"""
from decimal import Decimal
from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base exception for all ledger errors."""

    def __init__(
        self,
        message: str,
        error_code: str,
        user_message: Optional[str] = None,
        http_status: int = 500,
        retryable: bool = False,
        **kwargs: Any,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.user_message = user_message or message
        self.http_status = http_status
        self.retryable = retryable
        self.context = kwargs

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for API responses"""
        return {
            "message": self.user_message,
            "error": {
                "code": self.error_code,
                "message": self.user_message,
                "type": self.__class__.__name__,
            },
        }


# ============================================================================
# CLIENT ERRORS
# ============================================================================

class AccountNotFoundError(LedgerError):
    """No account matches the given account number."""

    def __init__(self, account_number: str, **kwargs: Any):
        super().__init__(
            message=f"Account not found: {account_number}",
            error_code="account_not_found",
            user_message="Customer account not found.",
            http_status=404,
            account_number=account_number,
            **kwargs,
        )
        self.account_number = account_number


class ValidationError(LedgerError):
    """Malformed or out-of-range input."""

    def __init__(self, message: str, error_code: str = "validation_error", **kwargs: Any):
        super().__init__(
            message=message,
            error_code=error_code,
            http_status=400,
            **kwargs,
        )


class InvalidAmountError(ValidationError):
    """Payment amount is not a positive, finite, two-decimal value."""

    def __init__(self, amount: Any, reason: str = "must be a positive number", **kwargs: Any):
        super().__init__(
            message=f"Payment amount {amount!r} {reason}",
            error_code="invalid_amount",
            amount=str(amount),
            **kwargs,
        )
        self.user_message = f"Payment amount {reason}."


class AccountAlreadyExistsError(LedgerError):
    """An account with this account number already exists."""

    def __init__(self, account_number: str, **kwargs: Any):
        super().__init__(
            message=f"Account already exists: {account_number}",
            error_code="account_exists",
            user_message=f"Account number {account_number} already exists.",
            http_status=409,
            account_number=account_number,
            **kwargs,
        )
        self.account_number = account_number


class AmountExceedsDueError(LedgerError):
    """
    Payment amount is greater than the account's current EMI due.

    The message states both values so the caller can correct the amount
    without another lookup.
    """

    def __init__(self, account_number: str, amount: Decimal, emi_due: Decimal, **kwargs: Any):
        message = (
            f"Payment amount (${amount:.2f}) exceeds EMI due (${emi_due:.2f}). "
            "Please enter an amount equal to or less than the EMI due."
        )
        super().__init__(
            message=message,
            error_code="amount_exceeds_due",
            http_status=400,
            account_number=account_number,
            **kwargs,
        )
        self.account_number = account_number
        self.amount = amount
        self.emi_due = emi_due

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["error"]["payment_amount"] = float(self.amount)
        body["error"]["emi_due"] = float(self.emi_due)
        return body


# ============================================================================
# TRANSIENT ERRORS
# ============================================================================

class ConcurrencyConflictError(LedgerError):
    """Lock-wait timeout or serialization failure while paying an account."""

    def __init__(self, message: str, **kwargs: Any):
        super().__init__(
            message=message,
            error_code="concurrency_conflict",
            user_message="The account is busy with another payment. Please try again.",
            http_status=503,
            retryable=True,
            **kwargs,
        )


class TransientStorageError(LedgerError):
    """Connection or I/O failure in the storage layer."""

    def __init__(self, message: str, **kwargs: Any):
        super().__init__(
            message=message,
            error_code="storage_unavailable",
            user_message="The request could not be completed right now. Please try again.",
            http_status=503,
            retryable=True,
            **kwargs,
        )


# SQLSTATEs that mean "another transaction holds or changed the row"
_CONFLICT_SQLSTATES = {
    "55P03",  # lock_not_available (lock_timeout expired)
    "40001",  # serialization_failure
    "40P01",  # deadlock_detected
}


def classify_storage_error(exc: Exception) -> LedgerError:
    """Map a driver/SQLAlchemy error to a conflict or a transient storage fault."""
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _CONFLICT_SQLSTATES:
        return ConcurrencyConflictError(
            f"Storage conflict ({sqlstate}): {orig}", sqlstate=sqlstate
        )
    return TransientStorageError(f"Storage failure: {exc}", error_type=type(exc).__name__)
