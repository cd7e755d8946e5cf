"""
Idempotency ledger and payment queries.

A SyncedTransaction row is definitive proof that a payment was posted to a
provider; the payment's synced flag is a fast filter on top of it.
"""
import logging
from datetime import datetime
from typing import List, Optional, Set

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gymledger.accounting.errors import InvalidInput
from gymledger.integrations.base import PostedTransaction
from gymledger.models import Payment, SyncedTransaction, utcnow

logger = logging.getLogger(__name__)


ELIGIBLE_STATUSES = ("succeeded", "refunded")

SYNCED_FLAGS = {
    "quickbooks": "accounting_synced_qb",
    "xero": "accounting_synced_xero",
}


def synced_flag(provider: str):
    """Column holding the provider's synced flag."""
    try:
        return getattr(Payment, SYNCED_FLAGS[provider])
    except KeyError:
        raise InvalidInput(f"Unsupported provider: {provider}")


class PaymentLedger:
    """Unsynced payment queries and synced-transaction bookkeeping for one gym."""

    def __init__(self, db: AsyncSession, gym_id: str):
        self.db = db
        self.gym_id = gym_id

    def _not_in_ledger(self, provider: str):
        posted = select(SyncedTransaction.payment_id).where(
            SyncedTransaction.provider == provider,
        )
        return Payment.id.not_in(posted)

    async def get_unsynced_payments(self, provider: str, limit: int = 100) -> List[Payment]:
        """Eligible payments without a ledger row, oldest first."""
        result = await self.db.execute(
            select(Payment)
            .where(
                Payment.gym_id == self.gym_id,
                synced_flag(provider) == False,
                Payment.status.in_(ELIGIBLE_STATUSES),
                self._not_in_ledger(provider),
            )
            .order_by(Payment.created_at.asc(), Payment.id.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_payments_in_range(
        self,
        provider: str,
        start: datetime,
        end: datetime,
        limit: Optional[int] = None,
    ) -> List[Payment]:
        """Eligible, unposted payments created within [start, end], oldest first."""
        if start > end:
            raise InvalidInput("Date range start must be before end")

        query = (
            select(Payment)
            .where(
                Payment.gym_id == self.gym_id,
                synced_flag(provider) == False,
                Payment.status.in_(ELIGIBLE_STATUSES),
                Payment.created_at >= start,
                Payment.created_at <= end,
                self._not_in_ledger(provider),
            )
            .order_by(Payment.created_at.asc(), Payment.id.asc())
        )
        if limit is not None:
            query = query.limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def is_payment_synced(self, payment_id: str, provider: str) -> bool:
        result = await self.db.execute(
            select(SyncedTransaction.id).where(
                SyncedTransaction.payment_id == payment_id,
                SyncedTransaction.provider == provider,
            )
        )
        return result.first() is not None

    async def synced_payment_ids(self, provider: str) -> Set[str]:
        result = await self.db.execute(
            select(SyncedTransaction.payment_id).where(
                SyncedTransaction.gym_id == self.gym_id,
                SyncedTransaction.provider == provider,
            )
        )
        return set(result.scalars().all())

    async def record_success(
        self,
        payment_id: str,
        amount: int,
        provider: str,
        posted: PostedTransaction,
        sync_log_id: Optional[str],
    ) -> SyncedTransaction:
        """Insert the ledger row and flip the synced flag in one commit."""
        synced = SyncedTransaction(
            gym_id=self.gym_id,
            provider=provider,
            payment_id=payment_id,
            external_transaction_id=posted.external_id,
            external_transaction_number=posted.external_number,
            external_transaction_type=posted.transaction_type,
            sync_log_id=sync_log_id,
            synced_amount=amount,
            synced_at=utcnow(),
        )
        self.db.add(synced)
        await self.db.execute(
            update(Payment)
            .where(Payment.id == payment_id)
            .values({SYNCED_FLAGS[provider]: True, "accounting_last_sync_attempt": utcnow()})
        )

        await self.db.commit()
        return synced

    async def touch_attempt(self, payment_id: str) -> None:
        """Stamp the last sync attempt on a payment that failed to post."""
        await self.db.execute(
            update(Payment)
            .where(Payment.id == payment_id)
            .values(accounting_last_sync_attempt=utcnow())
        )
        await self.db.commit()
