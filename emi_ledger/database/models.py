"""SQLAlchemy database models for loan accounts and EMI payments."""
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    TypeDecorator,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

PAYMENT_STATUS_SUCCESS = "SUCCESS"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp that always comes back in UTC.

    PostgreSQL returns aware values already; SQLite drops the offset, so
    naive values read back are tagged as the UTC they were written in.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Account(Base):
    """
    Loan account table.

    ``emi_due`` is the only column that changes after creation, and only
    through the payment processor's critical section.
    """

    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    customer_name: Mapped[str] = mapped_column(String(100), nullable=False, default="N/A")
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    interest_rate: Mapped[Decimal] = mapped_column(Numeric(7, 2), nullable=False)
    tenure: Mapped[int] = mapped_column(Integer, nullable=False)
    emi_due: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint("emi_due >= 0", name="non_negative_emi_due"),
        CheckConstraint("interest_rate > 0", name="positive_interest_rate"),
        CheckConstraint("tenure > 0", name="positive_tenure"),
        Index("idx_customers_created_desc", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation of Account."""
        return (
            f"<Account(id={self.id}, account_number={self.account_number}, "
            f"emi_due={self.emi_due})>"
        )


class Payment(Base):
    """
    Payment ledger table.

    Append-only: one row per committed payment, never updated or deleted.
    """

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    customer_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False
    )
    payment_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_date: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PAYMENT_STATUS_SUCCESS
    )

    __table_args__ = (
        CheckConstraint("payment_amount > 0", name="positive_payment_amount"),
        CheckConstraint(f"status = '{PAYMENT_STATUS_SUCCESS}'", name="valid_payment_status"),
        Index("idx_payments_customer_date", "customer_id", "payment_date"),
    )

    def __repr__(self) -> str:
        """String representation of Payment."""
        return (
            f"<Payment(id={self.id}, customer_id={self.customer_id}, "
            f"amount={self.payment_amount}, status={self.status})>"
        )
