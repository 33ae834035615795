"""
Account store.

Durable record of loan accounts. Reads are plain queries; the only write
after creation is ``debit``, which must run inside the payment processor's
critical section for the account.
"""
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Sequence

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from emi_ledger.config import get_settings
from emi_ledger.core.exceptions import (
    AccountAlreadyExistsError,
    AccountNotFoundError,
    AmountExceedsDueError,
    ConcurrencyConflictError,
    ValidationError,
)
from emi_ledger.database.models import Account, utcnow
from emi_ledger.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")

# Largest values the Numeric(12, 2) and Numeric(7, 2) columns hold
MAX_EMI_DUE = Decimal("9999999999.99")
MAX_INTEREST_RATE = Decimal("99999.99")


def _positive_decimal(value: Any, label: str, field: str) -> Decimal:
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"{label} must be a positive number", field=field)
    if not number.is_finite() or number <= 0:
        raise ValidationError(f"{label} must be a positive number", field=field)
    return number


def _column_decimal(value: Any, label: str, field: str, maximum: Decimal) -> Decimal:
    """A positive amount in whole cents that fits its column."""
    number = _positive_decimal(value, label, field)
    if number > maximum:
        raise ValidationError(f"{label} must not exceed {maximum}", field=field)
    if number != number.quantize(CENT):
        raise ValidationError(f"{label} must have at most two decimal places", field=field)
    return number.quantize(CENT)


class AccountStore:
    """Queries and writes for the ``customers`` table."""

    def __init__(self, default_customer_name: Optional[str] = None):
        self.default_customer_name = default_customer_name or get_settings().default_customer_name

    @staticmethod
    def _validate_new_account(
        account_number: Any,
        customer_name: Any,
        issue_date: Any,
        interest_rate: Any,
        tenure: Any,
        emi_due: Any,
    ) -> dict[str, Any]:
        """
        Validate and normalise account creation input.

        Raises:
            ValidationError: If any field is missing or out of range
        """
        if not isinstance(account_number, str) or not account_number.strip():
            raise ValidationError("Account number is required", field="account_number")
        account_number = account_number.strip()
        if len(account_number) > 50:
            raise ValidationError(
                "Account number must be between 1 and 50 characters", field="account_number"
            )

        if customer_name is not None:
            if not isinstance(customer_name, str):
                raise ValidationError("Customer name must be a string", field="customer_name")
            customer_name = customer_name.strip()
            if not 2 <= len(customer_name) <= 100:
                raise ValidationError(
                    "Customer name must be between 2 and 100 characters", field="customer_name"
                )

        if isinstance(issue_date, str):
            try:
                issue_date = date.fromisoformat(issue_date)
            except ValueError:
                raise ValidationError(
                    "Issue date must be a valid date (YYYY-MM-DD)", field="issue_date"
                )
        if not isinstance(issue_date, date):
            raise ValidationError("Issue date is required", field="issue_date")

        if isinstance(tenure, bool) or not isinstance(tenure, int) or tenure <= 0:
            raise ValidationError("Tenure must be a positive integer", field="tenure")

        return {
            "account_number": account_number,
            "customer_name": customer_name,
            "issue_date": issue_date,
            "interest_rate": _column_decimal(
                interest_rate, "Interest rate", "interest_rate", MAX_INTEREST_RATE
            ),
            "tenure": tenure,
            "emi_due": _column_decimal(emi_due, "EMI due", "emi_due", MAX_EMI_DUE),
        }

    @staticmethod
    async def _account_exists(db: AsyncSession, account_number: str) -> bool:
        existing = await db.scalar(
            select(Account.id).where(Account.account_number == account_number)
        )
        return existing is not None

    async def create(
        self,
        db: AsyncSession,
        account_number: str,
        issue_date: date | str,
        interest_rate: Decimal | float | str,
        tenure: int,
        emi_due: Decimal | float | str,
        customer_name: Optional[str] = None,
    ) -> Account:
        """
        Insert a new account and commit.

        Raises:
            ValidationError: If the input is invalid
            AccountAlreadyExistsError: If the account number is taken
        """
        fields = self._validate_new_account(
            account_number, customer_name, issue_date, interest_rate, tenure, emi_due
        )
        fields["customer_name"] = fields["customer_name"] or self.default_customer_name

        if await self._account_exists(db, fields["account_number"]):
            raise AccountAlreadyExistsError(fields["account_number"])

        account = Account(**fields, created_at=utcnow())
        db.add(account)
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            # Only a concurrent create with the same number is a conflict;
            # any other constraint failure propagates unchanged
            if await self._account_exists(db, fields["account_number"]):
                raise AccountAlreadyExistsError(fields["account_number"]) from e
            raise

        metrics.record_account_created()
        logger.info(
            "account_created",
            account_id=account.id,
            account_number=account.account_number,
            emi_due=account.emi_due,
        )
        return account

    @staticmethod
    async def get_by_account_number(db: AsyncSession, account_number: str) -> Account:
        """
        Get an account by its account number.

        Raises:
            AccountNotFoundError: If no account matches
        """
        account = await db.scalar(
            select(Account).where(Account.account_number == account_number.strip())
        )
        if account is None:
            raise AccountNotFoundError(account_number)
        return account

    @staticmethod
    async def lock_for_update(db: AsyncSession, account_id: int) -> Account:
        """
        Re-read an account holding a row-level exclusive lock.

        On PostgreSQL this is ``SELECT ... FOR UPDATE``; the lock lasts until
        the session's transaction commits or rolls back. ``populate_existing``
        makes the identity map take the freshly read ``emi_due``.
        """
        account = await db.scalar(
            select(Account)
            .where(Account.id == account_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return account

    @staticmethod
    async def list_all(db: AsyncSession) -> Sequence[Account]:
        """All accounts, newest first."""
        result = await db.scalars(
            select(Account).order_by(Account.created_at.desc(), Account.id.desc())
        )
        return result.all()

    @staticmethod
    async def debit(
        db: AsyncSession, account: Account, amount: Decimal
    ) -> tuple[Decimal, Decimal]:
        """
        Lower an account's EMI due by ``amount``.

        Call this on an account obtained from ``lock_for_update`` in the same
        transaction. The UPDATE only matches the due that was read. If another
        writer got there first (possible where the row lock is not enforced,
        e.g. SQLite or a second process), the UPDATE has taken the write lock,
        so the due is re-read once and the payment re-validated against it.

        Returns:
            (previous_due, new_due) as applied

        Raises:
            AmountExceedsDueError: If the amount is greater than the current due
            ConcurrencyConflictError: If the due still moves after the re-read
        """
        for attempt in range(2):
            previous_due = account.emi_due
            if amount > previous_due:
                raise AmountExceedsDueError(account.account_number, amount, previous_due)
            new_due = (previous_due - amount).quantize(CENT)

            result = await db.execute(
                update(Account)
                .where(Account.id == account.id, Account.emi_due == previous_due)
                .values(emi_due=new_due)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                set_committed_value(account, "emi_due", new_due)
                return previous_due, new_due

            logger.warning(
                "account_due_changed_concurrently",
                account_id=account.id,
                stale_due=previous_due,
                attempt=attempt + 1,
            )
            account = await AccountStore.lock_for_update(db, account.id)

        raise ConcurrencyConflictError(
            f"EMI due for account {account.account_number} changed outside its lock",
            account_number=account.account_number,
        )
