"""
Payment ledger.

Append-only record of committed payments. Rows are inserted once by the
payment processor and never updated or deleted, so no locking is needed
here.
"""
from collections.abc import AsyncIterator
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from emi_ledger.database.models import PAYMENT_STATUS_SUCCESS, Payment, utcnow


class PaymentLedger:
    """Inserts and newest-first reads for the ``payments`` table."""

    @staticmethod
    def _history_query(account_id: int):
        return (
            select(Payment)
            .where(Payment.customer_id == account_id)
            .order_by(Payment.payment_date.desc(), Payment.id.desc())
        )

    @staticmethod
    async def append(
        db: AsyncSession,
        account_id: int,
        amount: Decimal,
        payment_date: Optional[datetime] = None,
    ) -> Payment:
        """
        Add a payment row to the current transaction.

        Flushes so the row has its id; committing is the caller's job.
        """
        payment = Payment(
            customer_id=account_id,
            payment_amount=amount,
            payment_date=payment_date or utcnow(),
            status=PAYMENT_STATUS_SUCCESS,
        )
        db.add(payment)
        await db.flush()
        return payment

    async def history(self, db: AsyncSession, account_id: int) -> AsyncIterator[Payment]:
        """
        Stream an account's payments, newest first.

        Each call runs a fresh query, so iterating again picks up payments
        committed since the previous pass.
        """
        result = await db.stream_scalars(self._history_query(account_id))
        async for payment in result:
            yield payment

    async def list_history(self, db: AsyncSession, account_id: int) -> Sequence[Payment]:
        """An account's payments, newest first, as a list."""
        result = await db.scalars(self._history_query(account_id))
        return result.all()

    @staticmethod
    async def total_paid(db: AsyncSession, account_id: int) -> Decimal:
        """Sum of all payment amounts recorded for an account."""
        total = await db.scalar(
            select(func.coalesce(func.sum(Payment.payment_amount), 0)).where(
                Payment.customer_id == account_id
            )
        )
        return Decimal(str(total)).quantize(Decimal("0.01"))
