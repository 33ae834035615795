"""
Seed worker.

Loads demo accounts and payments from a JSON file into an empty database:

    {
        "customers": [{"account_number": "ACC001", "emi_due": 5000, ...}],
        "payments": [{"account_number": "ACC001", "payment_amount": 1500}]
    }

Payments go through the payment processor, so they follow the same rule as
live traffic: a payment larger than the current due is rejected and
reported, never applied.
"""
import asyncio
import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from emi_ledger.core.accounts import AccountStore
from emi_ledger.core.exceptions import LedgerError, ValidationError
from emi_ledger.core.payment_processor import PaymentProcessor
from emi_ledger.database.connection import close_db, get_session_factory
from emi_ledger.database.models import Account
from emi_ledger.monitoring.logging import setup_logging

logger = structlog.get_logger(__name__)


@dataclass
class SeedResult:
    """Outcome of a seed run."""

    seeded: bool
    accounts_created: int = 0
    payments_applied: int = 0
    payments_rejected: int = 0
    message: str = ""


def load_seed_file(path: Path) -> Dict[str, List[Dict[str, Any]]]:
    """Read and shape-check a seed file."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Seed file {path} must contain a JSON object")
    return {
        "customers": list(data.get("customers", [])),
        "payments": list(data.get("payments", [])),
    }


def validate_customers(customers: List[Any]) -> None:
    """
    Check every seed customer before anything is written.

    Raises:
        ValidationError: On the first malformed or duplicated customer
    """
    seen = set()
    for index, customer in enumerate(customers):
        if not isinstance(customer, dict):
            raise ValidationError(f"Seed customer #{index + 1} must be an object")
        fields = AccountStore._validate_new_account(
            customer.get("account_number"),
            customer.get("customer_name"),
            customer.get("issue_date"),
            customer.get("interest_rate"),
            customer.get("tenure"),
            customer.get("emi_due"),
        )
        if fields["account_number"] in seen:
            raise ValidationError(
                f"Seed account {fields['account_number']} appears more than once",
                field="account_number",
            )
        seen.add(fields["account_number"])


async def seed_database(
    seed_data: Dict[str, List[Dict[str, Any]]],
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    account_store: Optional[AccountStore] = None,
    processor: Optional[PaymentProcessor] = None,
) -> SeedResult:
    """
    Create the seed accounts, then apply the seed payments in file order.

    Does nothing if any account already exists. Customers are all validated
    up front, so a bad record leaves the database empty.
    """
    session_factory = session_factory or get_session_factory()
    account_store = account_store or AccountStore()
    processor = processor or PaymentProcessor(account_store=account_store)

    async with session_factory() as db:
        existing = await db.scalar(select(func.count()).select_from(Account))
    if existing:
        logger.info("seed_skipped", existing_accounts=existing)
        return SeedResult(seeded=False, message="Data already exists")

    validate_customers(seed_data["customers"])
    result = SeedResult(seeded=True)

    for customer in seed_data["customers"]:
        async with session_factory() as db:
            await account_store.create(
                db,
                account_number=customer["account_number"],
                customer_name=customer.get("customer_name"),
                issue_date=customer["issue_date"],
                interest_rate=customer["interest_rate"],
                tenure=customer["tenure"],
                emi_due=customer["emi_due"],
            )
        result.accounts_created += 1

    for payment in seed_data["payments"]:
        async with session_factory() as db:
            try:
                await processor.process_payment(
                    db,
                    account_number=payment["account_number"],
                    payment_amount=payment["payment_amount"],
                )
            except LedgerError as e:
                if e.retryable:
                    raise
                result.payments_rejected += 1
                logger.warning(
                    "seed_payment_rejected",
                    account_number=payment["account_number"],
                    error_code=e.error_code,
                    reason=e.message,
                )
                continue
        result.payments_applied += 1

    result.message = "Seeding completed"
    logger.info(
        "seed_completed",
        accounts_created=result.accounts_created,
        payments_applied=result.payments_applied,
        payments_rejected=result.payments_rejected,
    )
    return result


async def run_seed(path: Path) -> SeedResult:
    """Seed the configured database from ``path``."""
    setup_logging()
    logger.info("seed_started", path=str(path))
    try:
        return await seed_database(load_seed_file(path))
    except Exception as e:
        logger.error("seed_failed", error=str(e))
        raise
    finally:
        await close_db()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Console entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Seed loan accounts and EMI payments")
    parser.add_argument("seed_file", type=Path, help="Path to the JSON seed file")
    args = parser.parse_args(argv)

    try:
        asyncio.run(run_seed(args.seed_file))
    except Exception:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
