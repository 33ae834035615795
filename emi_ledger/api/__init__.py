"""FastAPI application and routes."""
from .main import app
from .schemas import (
    AccountResponse,
    CreateAccountRequest,
    PaymentHistoryItem,
    ProcessPaymentRequest,
    ProcessPaymentResponse,
)

__all__ = [
    "app",
    "AccountResponse",
    "CreateAccountRequest",
    "PaymentHistoryItem",
    "ProcessPaymentRequest",
    "ProcessPaymentResponse",
]
