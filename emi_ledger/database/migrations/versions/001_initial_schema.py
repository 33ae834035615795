"""Initial database schema

Revision ID: 001
Revises:
Create Date: 2025-01-06 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade database schema."""
    # Create customers table
    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("account_number", sa.String(length=50), nullable=False),
        sa.Column("customer_name", sa.String(length=100), nullable=False),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("interest_rate", sa.Numeric(precision=7, scale=2), nullable=False),
        sa.Column("tenure", sa.Integer(), nullable=False),
        sa.Column("emi_due", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("emi_due >= 0", name="non_negative_emi_due"),
        sa.CheckConstraint("interest_rate > 0", name="positive_interest_rate"),
        sa.CheckConstraint("tenure > 0", name="positive_tenure"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("account_number"),
    )
    op.create_index("idx_customers_created_desc", "customers", ["created_at"], unique=False)

    # Create payments table
    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("payment_amount", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("payment_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.CheckConstraint("payment_amount > 0", name="positive_payment_amount"),
        sa.CheckConstraint("status = 'SUCCESS'", name="valid_payment_status"),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_payments_customer_date",
        "payments",
        ["customer_id", "payment_date"],
        unique=False,
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index("idx_payments_customer_date", table_name="payments")
    op.drop_table("payments")
    op.drop_index("idx_customers_created_desc", table_name="customers")
    op.drop_table("customers")
