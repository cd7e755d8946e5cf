"""Tests for the idempotency ledger and payment queries."""
from datetime import timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from gymledger.accounting.errors import InvalidInput
from gymledger.accounting.ledger import PaymentLedger, synced_flag
from gymledger.integrations.base import PostedTransaction
from gymledger.models import Payment

GYM_ID = "gym_test"


def posted(n=1):
    return PostedTransaction(external_id=f"ext-{n}", external_number=f"DOC-{n}", transaction_type="sales_receipt")


class TestUnsyncedQuery:

    @pytest.mark.asyncio
    async def test_only_eligible_unsynced_payments_oldest_first(self, db, make_payment):
        newest = await make_payment()
        oldest = await make_payment(created_at=newest.created_at - timedelta(days=1))
        refunded = await make_payment(status="refunded")
        await make_payment(status="pending")
        await make_payment(status="failed")
        await make_payment(accounting_synced_qb=True)
        await make_payment(gym_id="gym_other")

        payments = await PaymentLedger(db, GYM_ID).get_unsynced_payments("quickbooks", limit=10)

        assert [p.id for p in payments] == [oldest.id, newest.id, refunded.id]

    @pytest.mark.asyncio
    async def test_limit(self, db, make_payment):
        for _ in range(5):
            await make_payment()
        payments = await PaymentLedger(db, GYM_ID).get_unsynced_payments("quickbooks", limit=2)
        assert len(payments) == 2

    @pytest.mark.asyncio
    async def test_flags_are_per_provider(self, db, make_payment):
        payment = await make_payment(accounting_synced_qb=True)
        ledger = PaymentLedger(db, GYM_ID)

        assert await ledger.get_unsynced_payments("quickbooks") == []
        assert [p.id for p in await ledger.get_unsynced_payments("xero")] == [payment.id]

    @pytest.mark.asyncio
    async def test_ledger_row_excludes_payment_even_if_flag_is_stale(self, db, make_payment):
        payment = await make_payment()
        ledger = PaymentLedger(db, GYM_ID)
        await ledger.record_success(payment.id, payment.amount, "quickbooks", posted(), None)

        # Simulate a flag reset by another writer
        await db.execute(
            update(Payment).where(Payment.id == payment.id).values(accounting_synced_qb=False)
        )
        await db.commit()

        assert await ledger.get_unsynced_payments("quickbooks") == []

    @pytest.mark.asyncio
    async def test_payments_in_range(self, db, make_payment):
        first = await make_payment()
        second = await make_payment()
        await make_payment()
        ledger = PaymentLedger(db, GYM_ID)

        payments = await ledger.get_payments_in_range("quickbooks", first.created_at, second.created_at)
        assert [p.id for p in payments] == [first.id, second.id]

        with pytest.raises(InvalidInput):
            await ledger.get_payments_in_range("quickbooks", second.created_at, first.created_at)


class TestRecordSuccess:

    @pytest.mark.asyncio
    async def test_records_row_and_sets_flag(self, db, make_payment):
        payment = await make_payment(amount=2500)
        ledger = PaymentLedger(db, GYM_ID)

        synced = await ledger.record_success(payment.id, 2500, "quickbooks", posted(7), "sync_1")
        await db.refresh(payment)

        assert synced.external_transaction_id == "ext-7"
        assert synced.synced_amount == 2500
        assert payment.accounting_synced_qb is True
        assert payment.accounting_synced_xero is False
        assert payment.accounting_last_sync_attempt is not None
        assert await ledger.is_payment_synced(payment.id, "quickbooks") is True
        assert await ledger.is_payment_synced(payment.id, "xero") is False
        assert await ledger.synced_payment_ids("quickbooks") == {payment.id}

    @pytest.mark.asyncio
    async def test_second_record_for_same_provider_is_rejected(self, db, make_payment):
        payment = await make_payment()
        payment_id, amount = payment.id, payment.amount
        ledger = PaymentLedger(db, GYM_ID)
        await ledger.record_success(payment_id, amount, "xero", posted(1), None)

        with pytest.raises(IntegrityError):
            await ledger.record_success(payment_id, amount, "xero", posted(2), None)
        await db.rollback()

        # Same payment to the other provider is fine
        await ledger.record_success(payment_id, amount, "quickbooks", posted(3), None)
        assert await ledger.is_payment_synced(payment_id, "quickbooks") is True

    @pytest.mark.asyncio
    async def test_touch_attempt(self, db, make_payment):
        payment = await make_payment()
        await PaymentLedger(db, GYM_ID).touch_attempt(payment.id)
        await db.refresh(payment)
        assert payment.accounting_last_sync_attempt is not None
        assert payment.accounting_synced_qb is False


def test_unknown_provider():
    with pytest.raises(InvalidInput):
        synced_flag("sage")
