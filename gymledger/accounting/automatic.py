"""
Automatic sync trigger.

There is no in-process scheduler: an external cron job calls run_due_syncs
(see scripts/run_automatic_sync.py), which starts an "automatic" run for every
active integration whose sync frequency has elapsed.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gymledger.accounting.encryption import TokenVault
from gymledger.accounting.errors import AccountingError, SyncAlreadyInProgress
from gymledger.accounting.sync import SyncOrchestrator, SyncResult
from gymledger.models import AccountingIntegration, utcnow, ensure_utc

logger = logging.getLogger(__name__)


@dataclass
class AutomaticSyncOutcome:
    gym_id: str
    provider: str
    result: Optional[SyncResult] = None
    skipped: bool = False
    error: Optional[str] = None


def is_due(integration: AccountingIntegration, now=None) -> bool:
    now = now or utcnow()
    last_sync_at = ensure_utc(integration.last_sync_at)
    if last_sync_at is None:
        return True
    return last_sync_at + timedelta(minutes=integration.sync_frequency_minutes) <= now


async def find_due_integrations(db: AsyncSession) -> List[AccountingIntegration]:
    result = await db.execute(
        select(AccountingIntegration)
        .where(
            AccountingIntegration.status == "active",
            AccountingIntegration.auto_sync_enabled == True,
        )
        .order_by(AccountingIntegration.last_sync_at.asc())
        .execution_options(populate_existing=True)
    )
    now = utcnow()
    return [i for i in result.scalars().all() if is_due(i, now)]


async def run_due_syncs(
    db: AsyncSession,
    orchestrator_factory: Optional[Callable[[AsyncSession, str], SyncOrchestrator]] = None,
    vault: Optional[TokenVault] = None,
) -> List[AutomaticSyncOutcome]:
    """Run one automatic sync per due integration; one failure never stops the rest."""
    if orchestrator_factory is None:
        vault = vault or TokenVault()
        orchestrator_factory = lambda session, gym_id: SyncOrchestrator(session, gym_id, vault=vault)

    due = [(i.gym_id, i.provider) for i in await find_due_integrations(db)]
    logger.info(f"[AutoSync] {len(due)} integrations due for sync")

    outcomes = []
    for gym_id, provider in due:
        outcome = AutomaticSyncOutcome(gym_id=gym_id, provider=provider)
        try:
            orchestrator = orchestrator_factory(db, gym_id)
            outcome.result = await orchestrator.run_sync(provider, sync_type="automatic")
        except SyncAlreadyInProgress:
            logger.info(f"[AutoSync] Skipping {provider} for gym {gym_id}: sync already in progress")
            outcome.skipped = True
        except AccountingError as e:
            logger.error(f"[AutoSync] {provider} sync failed for gym {gym_id}: {e.message}")
            outcome.error = e.message
        except Exception as e:
            logger.exception(f"[AutoSync] Unexpected error syncing {provider} for gym {gym_id}")
            outcome.error = str(e)
        outcomes.append(outcome)

    return outcomes
