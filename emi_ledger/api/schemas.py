"""
Pydantic schemas for API request/response models.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator

from emi_ledger.core.accounts import MAX_EMI_DUE, MAX_INTEREST_RATE

# Money goes over the wire as a JSON number with two decimals
Money = Annotated[
    Decimal,
    PlainSerializer(lambda v: float(v.quantize(Decimal("0.01"))), return_type=float),
]


class CreateAccountRequest(BaseModel):
    """Request schema for creating a loan account."""

    account_number: str = Field(..., min_length=1, max_length=50, description="Unique account number")
    customer_name: Optional[str] = Field(
        default=None, min_length=2, max_length=100, description="Customer display name"
    )
    issue_date: date = Field(..., description="Loan issue date (YYYY-MM-DD)")
    interest_rate: Decimal = Field(
        ..., gt=0, le=MAX_INTEREST_RATE, decimal_places=2, description="Interest rate (percent)"
    )
    tenure: int = Field(..., gt=0, description="Tenure in months")
    emi_due: Decimal = Field(
        ..., gt=0, le=MAX_EMI_DUE, decimal_places=2, description="Current EMI due"
    )

    @field_validator("account_number", "customer_name", mode="before")
    @classmethod
    def strip_strings(cls, v: Any) -> Any:
        """Trim surrounding whitespace before length checks."""
        return v.strip() if isinstance(v, str) else v

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "account_number": "ACC001",
                    "customer_name": "Asha Verma",
                    "issue_date": "2024-01-15",
                    "interest_rate": 10.5,
                    "tenure": 24,
                    "emi_due": 5000.00,
                }
            ]
        }
    }


class AccountResponse(BaseModel):
    """Response schema for a loan account."""

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="Account ID")
    account_number: str = Field(..., description="Account number")
    customer_name: str = Field(..., description="Customer display name")
    issue_date: date = Field(..., description="Loan issue date")
    interest_rate: Money = Field(..., description="Interest rate (percent)")
    tenure: int = Field(..., description="Tenure in months")
    emi_due: Money = Field(..., description="Current EMI due")
    created_at: datetime = Field(..., description="Creation timestamp (ISO 8601)")


class ProcessPaymentRequest(BaseModel):
    """Request schema for paying against an account's EMI due."""

    account_number: str = Field(..., min_length=1, description="Account to pay")
    payment_amount: Decimal = Field(..., description="Amount to pay")

    @field_validator("account_number", mode="before")
    @classmethod
    def strip_account_number(cls, v: Any) -> Any:
        """Trim surrounding whitespace."""
        return v.strip() if isinstance(v, str) else v

    model_config = {
        "json_schema_extra": {
            "examples": [{"account_number": "ACC001", "payment_amount": 1500.00}]
        }
    }


class PaymentSummary(BaseModel):
    """Committed payment as returned by the payment endpoint."""

    account_number: str = Field(..., description="Account number")
    paid_amount: Money = Field(..., description="Amount paid")
    payment_date: datetime = Field(..., description="Commit timestamp (ISO 8601)")
    status: str = Field(..., description="Payment status")


class AccountDueChange(BaseModel):
    """EMI due before and after a payment."""

    account_number: str = Field(..., description="Account number")
    previous_due: Money = Field(..., description="EMI due before the payment")
    new_due: Money = Field(..., description="EMI due after the payment")


class ProcessPaymentResponse(BaseModel):
    """Response schema for a processed payment."""

    message: str = Field(..., description="Status message")
    payment: PaymentSummary
    account: AccountDueChange

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "message": "Payment processed successfully.",
                    "payment": {
                        "account_number": "ACC001",
                        "paid_amount": 1500.00,
                        "payment_date": "2025-01-06T10:00:00Z",
                        "status": "SUCCESS",
                    },
                    "account": {
                        "account_number": "ACC001",
                        "previous_due": 5000.00,
                        "new_due": 3500.00,
                    },
                }
            ]
        }
    }


class PaymentHistoryItem(BaseModel):
    """One ledger entry."""

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="Payment ID")
    customer_id: int = Field(..., description="Owning account ID")
    payment_amount: Money = Field(..., description="Amount paid")
    payment_date: datetime = Field(..., description="Commit timestamp (ISO 8601)")
    status: str = Field(..., description="Payment status")


class ErrorResponse(BaseModel):
    """Body of every ledger error response."""

    message: str = Field(..., description="Human-readable message")
    error: Dict[str, Any] = Field(..., description="Error code, message and type")


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
