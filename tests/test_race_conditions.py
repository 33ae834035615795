"""
Race condition tests for concurrent payment requests.

Tests per-account serialization and the no-overpayment guarantee under
concurrent load.
"""
import asyncio
from decimal import Decimal
from typing import Any, List

import pytest

from emi_ledger.core.accounts import AccountStore
from emi_ledger.core.exceptions import (
    AmountExceedsDueError,
    ConcurrencyConflictError,
)
from emi_ledger.core.ledger import PaymentLedger
from emi_ledger.core.payment_processor import PaymentProcessor, PaymentReceipt
from emi_ledger.database.models import Account


async def pay(session_factory: Any, processor: PaymentProcessor, account_number: str, amount: str) -> Any:
    """Run one payment in its own session, like one HTTP request."""
    async with session_factory() as db:
        return await processor.process_payment(db, account_number, amount)


class TestRaceConditions:
    """Test suite for race condition scenarios."""

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_two_concurrent_payments_exceeding_due_together(
        self, processor: PaymentProcessor, sample_account: Account, session_factory: Any, fetch_account: Any
    ) -> None:
        """
        Test due 100.00 with two concurrent 60.00 payments.

        Exactly one commits; the other sees the post-commit due of 40.00.
        """
        results = await asyncio.gather(
            pay(session_factory, processor, "ACC001", "60.00"),
            pay(session_factory, processor, "ACC001", "60.00"),
            return_exceptions=True,
        )

        receipts = [r for r in results if isinstance(r, PaymentReceipt)]
        rejections = [r for r in results if isinstance(r, AmountExceedsDueError)]
        assert len(receipts) == 1
        assert len(rejections) == 1
        assert receipts[0].previous_due == Decimal("100.00")
        assert receipts[0].new_due == Decimal("40.00")
        assert rejections[0].emi_due == Decimal("40.00")

        assert (await fetch_account("ACC001")).emi_due == Decimal("40.00")
        async with session_factory() as db:
            history = await PaymentLedger().list_history(db, sample_account.id)
        assert len(history) == 1

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_many_concurrent_payments_never_overpay(
        self, processor: PaymentProcessor, sample_account: Account, session_factory: Any, fetch_account: Any
    ) -> None:
        """Test ten concurrent 15.00 payments against 100.00: six commit."""
        results = await asyncio.gather(
            *[pay(session_factory, processor, "ACC001", "15.00") for _ in range(10)],
            return_exceptions=True,
        )

        receipts = [r for r in results if isinstance(r, PaymentReceipt)]
        rejections = [r for r in results if isinstance(r, AmountExceedsDueError)]
        assert len(receipts) == 6
        assert len(rejections) == 4

        # Each commit starts from the previous one's result
        dues = sorted((r.previous_due, r.new_due) for r in receipts)
        for (_, new_due), (previous_due, _) in zip(dues[1:], dues[:-1]):
            assert new_due == previous_due

        account = await fetch_account("ACC001")
        assert account.emi_due == Decimal("10.00")
        async with session_factory() as db:
            total = await PaymentLedger.total_paid(db, sample_account.id)
        assert total == Decimal("90.00")
        assert total + account.emi_due == Decimal("100.00")

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_independent_processors_never_both_commit(
        self, sample_account: Account, session_factory: Any, fetch_account: Any
    ) -> None:
        """
        Test two processors that share no in-process lock.

        The storage-level guard lets one 60.00 payment through; the other is
        re-validated against the committed due of 40.00 and refused.
        """
        first = PaymentProcessor(lock_wait_timeout_seconds=2.0)
        second = PaymentProcessor(lock_wait_timeout_seconds=2.0)

        results = await asyncio.gather(
            pay(session_factory, first, "ACC001", "60.00"),
            pay(session_factory, second, "ACC001", "60.00"),
            return_exceptions=True,
        )

        receipts = [r for r in results if isinstance(r, PaymentReceipt)]
        rejections = [r for r in results if isinstance(r, AmountExceedsDueError)]
        assert len(receipts) == 1
        assert len(rejections) == 1
        assert rejections[0].emi_due == Decimal("40.00")

        account = await fetch_account("ACC001")
        async with session_factory() as db:
            total = await PaymentLedger.total_paid(db, sample_account.id)
        assert account.emi_due == Decimal("40.00")
        assert total + account.emi_due == Decimal("100.00")

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_different_accounts_do_not_block(
        self,
        processor: PaymentProcessor,
        account_store: AccountStore,
        sample_account: Account,
        session_factory: Any,
        fetch_account: Any,
    ) -> None:
        """Test a held lock on one account does not delay another."""
        async with session_factory() as db:
            await account_store.create(
                db,
                account_number="ACC002",
                issue_date="2024-02-01",
                interest_rate="9.75",
                tenure=12,
                emi_due="50.00",
            )

        held = processor._account_lock(sample_account.id)
        await held.acquire()
        try:
            receipt = await asyncio.wait_for(
                pay(session_factory, processor, "ACC002", "20.00"), timeout=1.0
            )
        finally:
            held.release()

        assert receipt.new_due == Decimal("30.00")
        assert (await fetch_account("ACC001")).emi_due == Decimal("100.00")

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_lock_wait_timeout_is_a_conflict(
        self, sample_account: Account, session_factory: Any, fetch_account: Any
    ) -> None:
        """Test a payment that cannot get the account in time fails cleanly."""
        processor = PaymentProcessor(lock_wait_timeout_seconds=0.05)

        held = processor._account_lock(sample_account.id)
        await held.acquire()
        try:
            with pytest.raises(ConcurrencyConflictError) as exc_info:
                await pay(session_factory, processor, "ACC001", "10.00")
        finally:
            held.release()

        assert exc_info.value.http_status == 503
        assert exc_info.value.retryable
        assert (await fetch_account("ACC001")).emi_due == Decimal("100.00")

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_waiters_proceed_after_release(
        self, processor: PaymentProcessor, sample_account: Account, session_factory: Any
    ) -> None:
        """Test queued payments run once the holder releases the account."""
        held = processor._account_lock(sample_account.id)
        await held.acquire()

        tasks: List[asyncio.Task] = [
            asyncio.create_task(pay(session_factory, processor, "ACC001", "10.00"))
            for _ in range(3)
        ]
        await asyncio.sleep(0.1)
        assert not any(t.done() for t in tasks)

        held.release()
        receipts = await asyncio.wait_for(asyncio.gather(*tasks), timeout=5)

        assert sorted(r.new_due for r in receipts) == [
            Decimal("70.00"),
            Decimal("80.00"),
            Decimal("90.00"),
        ]

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_timed_out_wait_leaves_lock_usable(
        self, sample_account: Account, session_factory: Any
    ) -> None:
        """Test a lock-wait timeout never leaves the account locked afterwards."""
        processor = PaymentProcessor(lock_wait_timeout_seconds=0.05)

        held = processor._account_lock(sample_account.id)
        await held.acquire()
        try:
            with pytest.raises(ConcurrencyConflictError):
                await pay(session_factory, processor, "ACC001", "10.00")
        finally:
            held.release()
        await asyncio.sleep(0)

        assert not held.locked()
        receipt = await asyncio.wait_for(pay(session_factory, processor, "ACC001", "10.00"), timeout=1.0)
        assert receipt.new_due == Decimal("90.00")
        assert not processor._account_lock(sample_account.id).locked()

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_timeout_racing_the_release_does_not_strand_lock(
        self, sample_account: Account, session_factory: Any
    ) -> None:
        """Test a lock granted in the same tick the wait times out is handed back."""
        processor = PaymentProcessor(lock_wait_timeout_seconds=0.05)

        held = processor._account_lock(sample_account.id)
        await held.acquire()
        waiter = asyncio.create_task(pay(session_factory, processor, "ACC001", "10.00"))
        await asyncio.sleep(0.04)
        held.release()

        result = await asyncio.gather(waiter, return_exceptions=True)
        await asyncio.sleep(0)

        # Either outcome is fine as long as nobody is left holding the lock
        assert isinstance(result[0], (PaymentReceipt, ConcurrencyConflictError))
        assert not held.locked()
        receipt = await asyncio.wait_for(pay(session_factory, processor, "ACC001", "10.00"), timeout=1.0)
        assert receipt.state.value == "committed"

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_cancelled_waiter_leaves_no_holder(
        self, processor: PaymentProcessor, sample_account: Account, session_factory: Any
    ) -> None:
        """Test cancelling a payment queued on the lock does not keep the account locked."""
        held = processor._account_lock(sample_account.id)
        await held.acquire()

        waiter = asyncio.create_task(pay(session_factory, processor, "ACC001", "10.00"))
        await asyncio.sleep(0.05)
        held.release()
        waiter.cancel()

        with pytest.raises(asyncio.CancelledError):
            await waiter
        await asyncio.sleep(0)

        assert not held.locked()
        receipt = await asyncio.wait_for(pay(session_factory, processor, "ACC001", "10.00"), timeout=1.0)
        assert receipt.new_due == Decimal("90.00")
