"""
EMI payment processor.

Processes one payment against one loan account as a single atomic unit:

1. Validate the amount
2. Resolve the account by account number
3. Enter the account's critical section (in-process lock + row lock)
4. Re-read the EMI due under the lock and check amount <= due
5. Debit the due and append the ledger entry in one transaction
6. Commit, then release the lock

States: RECEIVED -> LOCKED -> VALIDATED -> COMMITTED, or
RECEIVED -> LOCKED -> REJECTED, or RECEIVED -> FAILED (unknown account).
Anything that goes wrong before the commit completes, including task
cancellation, rolls back both writes.
"""
import asyncio
import time
import uuid
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from emi_ledger.config import get_settings
from emi_ledger.core.accounts import CENT, MAX_EMI_DUE, AccountStore
from emi_ledger.core.exceptions import (
    AccountNotFoundError,
    AmountExceedsDueError,
    ConcurrencyConflictError,
    InvalidAmountError,
    TransientStorageError,
    classify_storage_error,
)
from emi_ledger.core.ledger import PaymentLedger
from emi_ledger.database.models import Payment
from emi_ledger.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class PaymentState(str, Enum):
    """Lifecycle of a single payment request."""

    RECEIVED = "received"
    LOCKED = "locked"
    VALIDATED = "validated"
    COMMITTED = "committed"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass
class PaymentReceipt:
    """A committed payment plus the account's due before and after it."""

    payment: Payment
    account_number: str
    previous_due: Decimal
    new_due: Decimal
    state: PaymentState = PaymentState.COMMITTED

    def to_response(self) -> Dict[str, Any]:
        """Render the body returned by ``POST /api/payments``."""
        return {
            "message": "Payment processed successfully.",
            "payment": {
                "account_number": self.account_number,
                "paid_amount": self.payment.payment_amount,
                "payment_date": self.payment.payment_date,
                "status": self.payment.status,
            },
            "account": {
                "account_number": self.account_number,
                "previous_due": self.previous_due,
                "new_due": self.new_due,
            },
        }


class PaymentProcessor:
    """
    Payment transaction engine.

    One instance is shared by every request in the process. Payments for the
    same account are serialized; payments for different accounts never wait
    on each other.
    """

    def __init__(
        self,
        account_store: Optional[AccountStore] = None,
        ledger: Optional[PaymentLedger] = None,
        lock_wait_timeout_seconds: Optional[float] = None,
    ):
        """
        Initialize payment processor.

        Args:
            account_store: Optional account store
            ledger: Optional payment ledger
            lock_wait_timeout_seconds: Max wait for an account's critical
                section; defaults to the configured value
        """
        self.settings = get_settings()
        self.account_store = account_store or AccountStore()
        self.ledger = ledger or PaymentLedger()
        self.lock_wait_timeout_seconds = (
            lock_wait_timeout_seconds or self.settings.lock_wait_timeout_seconds
        )
        # Entries disappear once no request holds or waits on the lock
        self._account_locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

        logger.info(
            "payment_processor_initialized",
            lock_wait_timeout_seconds=self.lock_wait_timeout_seconds,
        )

    @staticmethod
    def _normalize_amount(payment_amount: Any) -> Decimal:
        """
        Convert a payment amount to a two-decimal ``Decimal``.

        Raises:
            InvalidAmountError: If the amount is not positive, finite and
                expressible in whole cents
        """
        if isinstance(payment_amount, bool) or payment_amount is None:
            raise InvalidAmountError(payment_amount)
        try:
            amount = Decimal(str(payment_amount).strip())
        except (InvalidOperation, ValueError):
            raise InvalidAmountError(payment_amount)

        if not amount.is_finite():
            raise InvalidAmountError(payment_amount, "must be a finite number")
        if amount <= 0:
            raise InvalidAmountError(payment_amount)
        if amount > MAX_EMI_DUE:
            raise InvalidAmountError(payment_amount, f"must not exceed {MAX_EMI_DUE}")
        if amount != amount.quantize(CENT):
            raise InvalidAmountError(payment_amount, "must have at most two decimal places")
        return amount.quantize(CENT)

    def _account_lock(self, account_id: int) -> asyncio.Lock:
        lock = self._account_locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._account_locks[account_id] = lock
        return lock

    @staticmethod
    def _abandon_acquire(acquire: "asyncio.Future[bool]", lock: asyncio.Lock) -> None:
        """
        Give up on a pending ``lock.acquire()``.

        The acquire may already have been granted in the same loop iteration
        that the wait timed out or was cancelled; in that case the lock is
        handed straight back so nobody is left holding it.
        """

        def release_if_granted(future: "asyncio.Future[bool]") -> None:
            if not future.cancelled() and future.exception() is None:
                lock.release()

        acquire.add_done_callback(release_if_granted)
        acquire.cancel()

    @asynccontextmanager
    async def _critical_section(self, account_id: int, account_number: str) -> AsyncIterator[None]:
        """
        Hold the in-process lock for one account.

        Waiters queue on the lock in arrival order; nobody polls.

        Raises:
            ConcurrencyConflictError: If the lock is not acquired in time
        """
        lock = self._account_lock(account_id)
        wait_start = time.monotonic()
        acquire = asyncio.ensure_future(lock.acquire())
        try:
            done, _ = await asyncio.wait({acquire}, timeout=self.lock_wait_timeout_seconds)
        except asyncio.CancelledError:
            self._abandon_acquire(acquire, lock)
            raise
        if not done:
            self._abandon_acquire(acquire, lock)
            metrics.record_lock_timeout()
            raise ConcurrencyConflictError(
                f"Timed out after {self.lock_wait_timeout_seconds}s waiting for "
                f"account {account_number}",
                account_number=account_number,
            )
        metrics.record_lock_wait(time.monotonic() - wait_start)
        try:
            yield
        finally:
            lock.release()

    async def _set_storage_lock_timeout(self, db: AsyncSession) -> None:
        """Bound the row-lock wait on PostgreSQL to the same timeout."""
        if db.get_bind().dialect.name == "postgresql":
            timeout_ms = int(self.lock_wait_timeout_seconds * 1000)
            await db.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))

    async def _rollback_quietly(self, db: AsyncSession, log: Any) -> None:
        try:
            await db.rollback()
        except SQLAlchemyError as e:
            # The original failure is what the caller needs to see
            log.warning("payment_rollback_failed", error=str(e))

    async def _execute(
        self, db: AsyncSession, account_number: str, amount: Decimal, log: Any
    ) -> PaymentReceipt:
        try:
            account = await self.account_store.get_by_account_number(db, account_number)
        except AccountNotFoundError:
            log.info("payment_state_changed", state=PaymentState.FAILED.value)
            raise
        except SQLAlchemyError as e:
            raise classify_storage_error(e) from e

        async with self._critical_section(account.id, account.account_number):
            committed = False
            try:
                await self._set_storage_lock_timeout(db)
                account = await self.account_store.lock_for_update(db, account.id)
                log.info(
                    "payment_state_changed",
                    state=PaymentState.LOCKED.value,
                    emi_due=account.emi_due,
                )

                previous_due = account.emi_due
                if amount > previous_due:
                    log.info("payment_state_changed", state=PaymentState.REJECTED.value)
                    raise AmountExceedsDueError(account.account_number, amount, previous_due)
                log.info("payment_state_changed", state=PaymentState.VALIDATED.value)

                previous_due, new_due = await self.account_store.debit(db, account, amount)
                payment = await self.ledger.append(db, account.id, amount)
                await db.commit()
                committed = True
            except SQLAlchemyError as e:
                raise classify_storage_error(e) from e
            finally:
                if not committed:
                    await self._rollback_quietly(db, log)

        log.info(
            "payment_state_changed",
            state=PaymentState.COMMITTED.value,
            payment_id=payment.id,
            previous_due=previous_due,
            new_due=new_due,
        )
        return PaymentReceipt(
            payment=payment,
            account_number=account.account_number,
            previous_due=previous_due,
            new_due=new_due,
        )

    async def process_payment(
        self,
        db: AsyncSession,
        account_number: str,
        payment_amount: Any,
    ) -> PaymentReceipt:
        """
        Pay ``payment_amount`` against an account's EMI due.

        Args:
            db: Database session; the processor commits or rolls it back
            account_number: Account to pay
            payment_amount: Amount as Decimal, int, float or numeric string

        Returns:
            PaymentReceipt: The committed payment and before/after due

        Raises:
            InvalidAmountError: If the amount is malformed
            AccountNotFoundError: If the account does not exist
            AmountExceedsDueError: If the amount is greater than the due
            ConcurrencyConflictError: On lock timeout or storage conflict
            TransientStorageError: On any other storage failure
        """
        correlation_id = str(uuid.uuid4())
        log = logger.bind(correlation_id=correlation_id, account_number=account_number)
        start_time = time.monotonic()
        outcome = "error"

        log.info(
            "payment_state_changed",
            state=PaymentState.RECEIVED.value,
            payment_amount=payment_amount,
        )

        try:
            try:
                amount = self._normalize_amount(payment_amount)
            except InvalidAmountError:
                log.info("payment_state_changed", state=PaymentState.REJECTED.value)
                raise

            receipt = await self._execute(db, account_number, amount, log)
            outcome = "committed"
            metrics.record_payment_amount(float(amount))
            return receipt

        except (InvalidAmountError, AmountExceedsDueError) as e:
            outcome = "rejected"
            log.info("payment_rejected", error_code=e.error_code, reason=e.message)
            raise
        except AccountNotFoundError:
            outcome = "not_found"
            log.info("payment_account_not_found")
            raise
        except ConcurrencyConflictError as e:
            outcome = "conflict"
            log.error("payment_concurrency_conflict", error=e.message)
            raise
        except TransientStorageError as e:
            outcome = "storage_error"
            log.error("payment_storage_failure", error=e.message)
            raise
        except asyncio.CancelledError:
            outcome = "cancelled"
            log.warning("payment_cancelled")
            raise
        finally:
            metrics.record_payment_outcome(outcome, time.monotonic() - start_time)
