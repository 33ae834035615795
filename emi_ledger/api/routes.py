"""
API routes for loan accounts and EMI payments.
"""
import time
from typing import Any, Dict, List

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.ext.asyncio import AsyncSession

from emi_ledger.core.accounts import AccountStore
from emi_ledger.core.ledger import PaymentLedger
from emi_ledger.core.payment_processor import PaymentProcessor
from emi_ledger.database.connection import get_db
from emi_ledger.database.models import Account, Payment
from emi_ledger.monitoring.health import HealthCheck

from .schemas import (
    AccountResponse,
    CreateAccountRequest,
    ErrorResponse,
    HealthCheckResponse,
    PaymentHistoryItem,
    ProcessPaymentRequest,
    ProcessPaymentResponse,
)

logger = structlog.get_logger(__name__)

# Create routers
customer_router = APIRouter(prefix="/api/customers", tags=["accounts"])
payment_router = APIRouter(prefix="/api/payments", tags=["payments"])
monitoring_router = APIRouter(tags=["monitoring"])

# Initialize services
account_store = AccountStore()
payment_ledger = PaymentLedger()
payment_processor = PaymentProcessor(account_store=account_store, ledger=payment_ledger)
health_check = HealthCheck()

NOT_FOUND = {404: {"model": ErrorResponse, "description": "Account not found"}}


@customer_router.post(
    "",
    response_model=AccountResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a loan account",
    responses={409: {"model": ErrorResponse, "description": "Account number already exists"}},
)
async def create_account(
    request: CreateAccountRequest,
    db: AsyncSession = Depends(get_db),
) -> Account:
    """Create a loan account with its initial EMI due."""
    logger.info("api_create_account_request", account_number=request.account_number)

    account = await account_store.create(
        db,
        account_number=request.account_number,
        customer_name=request.customer_name,
        issue_date=request.issue_date,
        interest_rate=request.interest_rate,
        tenure=request.tenure,
        emi_due=request.emi_due,
    )
    return account


@customer_router.get(
    "",
    response_model=List[AccountResponse],
    summary="List loan accounts",
    description="All accounts, newest first",
)
async def list_accounts(db: AsyncSession = Depends(get_db)) -> Any:
    """List all accounts."""
    return await account_store.list_all(db)


@customer_router.get(
    "/{account_number}",
    response_model=AccountResponse,
    summary="Get a loan account",
    responses=NOT_FOUND,
)
async def get_account(account_number: str, db: AsyncSession = Depends(get_db)) -> Account:
    """Get one account by account number."""
    return await account_store.get_by_account_number(db, account_number)


@payment_router.post(
    "",
    response_model=ProcessPaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Pay against an account's EMI due",
    responses={
        **NOT_FOUND,
        400: {"model": ErrorResponse, "description": "Invalid amount or amount exceeds due"},
        503: {"model": ErrorResponse, "description": "Account busy or storage unavailable"},
    },
)
async def process_payment(
    request: ProcessPaymentRequest,
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """
    Process one EMI payment.

    Not idempotent: every call is a new payment attempt.
    """
    start_time = time.time()
    logger.info(
        "api_process_payment_request",
        account_number=request.account_number,
        payment_amount=request.payment_amount,
    )

    receipt = await payment_processor.process_payment(
        db,
        account_number=request.account_number,
        payment_amount=request.payment_amount,
    )

    logger.info(
        "api_process_payment_success",
        account_number=receipt.account_number,
        payment_id=receipt.payment.id,
        duration_seconds=time.time() - start_time,
    )
    return receipt.to_response()


@payment_router.get(
    "/{account_number}",
    response_model=List[PaymentHistoryItem],
    summary="Payment history",
    description="An account's payments, newest first",
    responses=NOT_FOUND,
)
async def get_payment_history(
    account_number: str, db: AsyncSession = Depends(get_db)
) -> List[Payment]:
    """Get an account's payment history."""
    account = await account_store.get_by_account_number(db, account_number)
    return [payment async for payment in payment_ledger.history(db, account.id)]


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health() -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await health_check.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness check",
)
async def liveness() -> Dict[str, Any]:
    """Liveness check endpoint."""
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness check",
)
async def readiness() -> Dict[str, Any]:
    """Readiness check endpoint."""
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
