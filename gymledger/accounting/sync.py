"""
Sync orchestrator.

Pulls unsynced payments for one provider, categorizes them, posts each one
through the provider adapter and records the outcome:

    in_progress -> completed | partial | failed

Precondition failures (inactive integration, missing mappings, a run already
in flight) raise before any log exists. Once the log exists, per-payment
failures are collected as data and never abort the batch; an unexpected error
still closes the log as failed before it propagates.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gymledger.config import settings
from gymledger.accounting.categorization import categorize_payments
from gymledger.accounting.encryption import TokenVault
from gymledger.accounting.errors import (
    AccountingError,
    IntegrationNotActive,
    InvalidInput,
    MappingMissing,
)
from gymledger.accounting.ledger import PaymentLedger
from gymledger.accounting.locks import SyncLockManager
from gymledger.accounting.mappings import AccountMappingService
from gymledger.accounting.sync_log import SyncLogStore, TERMINAL_STATUSES
from gymledger.accounting.tokens import TokenManager
from gymledger.integrations import get_adapter
from gymledger.integrations.base import LedgerEntry, ProviderAdapter
from gymledger.models import AccountingIntegration, Profile, utcnow

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    sync_log_id: str
    status: str
    attempted: int
    succeeded: int
    failed: int
    errors: List[Dict[str, str]] = field(default_factory=list)
    message: Optional[str] = None


@dataclass
class _PendingPayment:
    """Plain copy of what posting needs, so a rollback can't expire it."""
    payment_id: str
    amount: int
    currency: str
    created_at: datetime
    user_id: Optional[str]
    reference: str
    category: str
    description: str


def aggregate_status(succeeded: int, failed: int) -> str:
    if failed == 0:
        return "completed"
    if succeeded > 0:
        return "partial"
    return "failed"


class SyncOrchestrator:
    """
    Runs syncs for one gym.

    The adapter and vault may be injected; by default the adapter comes from
    the provider registry and the vault reads the master key from settings.
    """

    def __init__(
        self,
        db: AsyncSession,
        gym_id: str,
        adapter: Optional[ProviderAdapter] = None,
        vault: Optional[TokenVault] = None,
    ):
        self.db = db
        self.gym_id = gym_id
        self.adapter = adapter
        self.vault = vault or TokenVault()
        self.logs = SyncLogStore(db, gym_id)
        self.ledger = PaymentLedger(db, gym_id)
        self.mappings = AccountMappingService(db, gym_id)
        self.locks = SyncLockManager(db, gym_id)

    def _adapter_for(self, provider: str) -> ProviderAdapter:
        if self.adapter is not None:
            return self.adapter
        return get_adapter(provider)

    async def _get_integration(self, provider: str) -> Optional[AccountingIntegration]:
        result = await self.db.execute(
            select(AccountingIntegration).where(
                AccountingIntegration.gym_id == self.gym_id,
                AccountingIntegration.provider == provider,
            )
        )
        return result.scalar_one_or_none()

    # =========================================================================
    # Entry points
    # =========================================================================

    async def run_sync(
        self,
        provider: str,
        limit: Optional[int] = None,
        triggered_by: Optional[str] = None,
        sync_type: str = "manual",
        required_categories: Optional[Iterable[str]] = None,
        date_range: Optional[Tuple[datetime, datetime]] = None,
        parent_sync_id: Optional[str] = None,
    ) -> SyncResult:
        limit = limit if limit is not None else settings.SYNC_DEFAULT_LIMIT
        if limit < 1:
            raise InvalidInput("limit must be a positive integer")
        if date_range and date_range[0] > date_range[1]:
            raise InvalidInput("Date range start must be before end")

        adapter = self._adapter_for(provider)

        integration = await self._get_integration(provider)
        if not integration or integration.status != "active":
            raise IntegrationNotActive(f"{provider} integration is not active. Please connect first.")

        if required_categories:
            validation = await self.mappings.validate_mappings(provider, required_categories)
            if not validation.valid:
                raise MappingMissing(validation.missing)

        integration_id = integration.id
        owner = await self.locks.acquire(provider)
        try:
            sync_log_id = await self.logs.create(
                provider,
                sync_type,
                triggered_by=triggered_by,
                parent_sync_id=parent_sync_id,
                date_range=date_range,
            )
            logger.info(f"[Sync] Starting {sync_type} sync for {provider} (log {sync_log_id})")

            try:
                return await self._execute(
                    provider, adapter, integration, sync_log_id, limit, date_range
                )
            except Exception as e:
                await self._abort(provider, integration_id, sync_log_id, e)
                raise
        finally:
            await self.locks.release(provider, owner)

    async def retry_failed(
        self,
        parent_sync_id: str,
        triggered_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> SyncResult:
        """
        Start a retry run linked to a finished run.

        The retry re-queries the backlog; payments posted in the meantime are
        excluded by the ledger.
        """
        parent = await self.logs.get(parent_sync_id)
        if parent.status not in TERMINAL_STATUSES:
            raise InvalidInput(f"Sync {parent_sync_id} is still {parent.status}")

        return await self.run_sync(
            parent.provider,
            limit=limit,
            triggered_by=triggered_by,
            sync_type="retry",
            parent_sync_id=parent.id,
        )

    # =========================================================================
    # Run body
    # =========================================================================

    async def _execute(
        self,
        provider: str,
        adapter: ProviderAdapter,
        integration: AccountingIntegration,
        sync_log_id: str,
        limit: int,
        date_range: Optional[Tuple[datetime, datetime]],
    ) -> SyncResult:
        integration_id = integration.id

        if date_range:
            payments = await self.ledger.get_payments_in_range(provider, date_range[0], date_range[1], limit=limit)
        else:
            payments = await self.ledger.get_unsynced_payments(provider, limit)
        logger.info(f"[Sync] Found {len(payments)} unsynced payments")

        if not payments:
            await self.logs.complete(sync_log_id, "completed", 0, 0, 0)
            await self._update_integration_last_sync(integration_id, "success")
            return SyncResult(
                sync_log_id=sync_log_id,
                status="completed",
                attempted=0,
                succeeded=0,
                failed=0,
                message="No unsynced payments found",
            )

        categorized = categorize_payments(payments)
        warnings = [cp.warning for cp in categorized if cp.warning]
        for warning in warnings:
            logger.warning(f"[Sync] {warning}")

        pending = [
            _PendingPayment(
                payment_id=cp.payment.id,
                amount=cp.payment.amount,
                currency=cp.payment.currency,
                created_at=cp.payment.created_at,
                user_id=cp.payment.user_id,
                reference=cp.payment.payment_intent_id or cp.payment.id[:8],
                category=cp.category.value,
                description=cp.description,
            )
            for cp in categorized
        ]

        mappings = {
            m.revenue_category: (m.external_account_id, m.external_account_code)
            for m in await self.mappings.get_mappings(provider)
        }
        customers = await self._load_customers({p.user_id for p in pending if p.user_id})
        tokens = TokenManager(self.db, integration, adapter, self.vault)

        succeeded = 0
        failures: List[Dict[str, str]] = []

        for item in pending:
            try:
                if item.category not in mappings:
                    raise MappingMissing([item.category])
                account_id, account_code = mappings[item.category]

                credentials = await tokens.get_credentials()
                email, name = customers.get(item.user_id, (None, None))
                entry = LedgerEntry(
                    payment_id=item.payment_id,
                    category=item.category,
                    amount=item.amount,
                    currency=item.currency,
                    description=item.description,
                    account_id=account_id,
                    account_code=account_code,
                    txn_date=item.created_at.date(),
                    reference=item.reference,
                    customer_email=email or "unknown@example.com",
                    customer_name=name or "Unknown Customer",
                )

                posted = await adapter.post_ledger_entry(credentials, entry)
                await self.ledger.record_success(
                    item.payment_id, item.amount, provider, posted, sync_log_id
                )
                succeeded += 1
                logger.info(
                    f"[Sync] Synced payment {item.payment_id} to {provider} "
                    f"as {posted.transaction_type} {posted.external_number or posted.external_id}"
                )
            except AccountingError as e:
                await self._record_failure(item.payment_id, e.message, failures)
            except IntegrityError:
                # Another writer recorded this payment first
                await self.db.rollback()
                await self.db.refresh(integration)
                await self._record_failure(
                    item.payment_id, f"Payment already synced to {provider}", failures
                )
            except Exception as e:
                logger.exception(f"[Sync] Unexpected error syncing payment {item.payment_id}")
                await self._record_failure(item.payment_id, str(e) or type(e).__name__, failures)

        attempted = len(pending)
        failed = len(failures)
        status = aggregate_status(succeeded, failed)
        error_message = f"{failed} transactions failed to sync" if failed else None

        error_details: Optional[Dict[str, Any]] = None
        if failures or warnings:
            error_details = {"errors": failures, "warnings": warnings}

        await self.logs.complete(
            sync_log_id,
            status,
            attempted,
            succeeded,
            failed,
            error_message=error_message,
            error_details=error_details,
        )
        # Refresh failure takes precedence over the run summary
        integration_error = tokens.refresh_error.message if tokens.refresh_error else error_message
        await self._update_integration_last_sync(
            integration_id,
            "error" if status == "failed" else "success",
            integration_error,
        )

        logger.info(f"[Sync] {provider} sync {status}: {succeeded} succeeded, {failed} failed")
        return SyncResult(
            sync_log_id=sync_log_id,
            status=status,
            attempted=attempted,
            succeeded=succeeded,
            failed=failed,
            errors=failures,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _load_customers(self, user_ids) -> Dict[str, Tuple[Optional[str], Optional[str]]]:
        if not user_ids:
            return {}
        result = await self.db.execute(
            select(Profile.id, Profile.email, Profile.full_name).where(Profile.id.in_(user_ids))
        )
        return {row.id: (row.email, row.full_name) for row in result.all()}

    async def _record_failure(self, payment_id: str, error: str, failures: List[Dict[str, str]]) -> None:
        logger.error(f"[Sync] Error syncing payment {payment_id}: {error}")
        failures.append({"paymentId": payment_id, "error": error})
        await self.ledger.touch_attempt(payment_id)

    async def _update_integration_last_sync(
        self, integration_id: str, status: str, error: Optional[str] = None
    ) -> None:
        now = utcnow()
        await self.db.execute(
            update(AccountingIntegration)
            .where(AccountingIntegration.id == integration_id)
            .values(last_sync_at=now, last_sync_status=status, last_error=error, updated_at=now)
        )
        await self.db.commit()

    async def _abort(self, provider: str, integration_id: str, sync_log_id: str, error: Exception) -> None:
        """Close a run that died on an unexpected error."""
        logger.exception(f"[Sync] {provider} sync {sync_log_id} aborted")
        await self.db.rollback()

        log = await self.logs.get(sync_log_id)
        if log.status in TERMINAL_STATUSES:
            return

        message = f"Sync aborted: {error}"
        await self.logs.complete(
            sync_log_id,
            "failed",
            log.transactions_attempted,
            log.transactions_succeeded,
            log.transactions_failed,
            error_message=message,
        )
        await self._update_integration_last_sync(integration_id, "error", message)
