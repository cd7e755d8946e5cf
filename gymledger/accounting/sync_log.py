"""
Sync log store.

One row per sync run. A run is created "in_progress" and receives exactly one
terminal update; a log that has reached a terminal status is read-only.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gymledger.accounting.errors import InvalidInput, SyncLogNotFound
from gymledger.models import SyncLog, utcnow, ensure_utc

logger = logging.getLogger(__name__)


SYNC_TYPES = ("manual", "automatic", "retry")
TERMINAL_STATUSES = ("completed", "partial", "failed")

# Columns a caller may set through update()
UPDATABLE_FIELDS = {
    "status",
    "transactions_attempted",
    "transactions_succeeded",
    "transactions_failed",
    "error_message",
    "error_details",
    "date_range_start",
    "date_range_end",
}


class SyncLogStore:
    """Sync logs for one gym."""

    def __init__(self, db: AsyncSession, gym_id: str):
        self.db = db
        self.gym_id = gym_id

    async def create(
        self,
        provider: str,
        sync_type: str,
        triggered_by: Optional[str] = None,
        parent_sync_id: Optional[str] = None,
        date_range: Optional[Tuple[datetime, datetime]] = None,
    ) -> str:
        """Open a run in status in_progress and return its id."""
        if sync_type not in SYNC_TYPES:
            raise InvalidInput(f"Invalid sync type: {sync_type}")

        log = SyncLog(
            gym_id=self.gym_id,
            provider=provider,
            sync_type=sync_type,
            status="in_progress",
            started_at=utcnow(),
            triggered_by=triggered_by,
            parent_sync_id=parent_sync_id,
            transactions_attempted=0,
            transactions_succeeded=0,
            transactions_failed=0,
        )
        if date_range:
            log.date_range_start, log.date_range_end = date_range

        self.db.add(log)
        await self.db.commit()

        logger.info(f"Created sync log {log.id} ({provider}, {sync_type})")
        return log.id

    async def get(self, sync_log_id: str) -> SyncLog:
        result = await self.db.execute(
            select(SyncLog).where(
                SyncLog.id == sync_log_id,
                SyncLog.gym_id == self.gym_id,
            )
        )
        log = result.scalar_one_or_none()
        if not log:
            raise SyncLogNotFound("Sync log not found")
        return log

    async def update(self, sync_log_id: str, **fields: Any) -> SyncLog:
        """
        Apply a partial update.

        Moving to a terminal status stamps completed_at and duration_seconds
        from started_at. Updating a log that is already terminal raises
        InvalidInput.
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise InvalidInput(f"Cannot update sync log fields: {', '.join(sorted(unknown))}")

        log = await self.get(sync_log_id)
        if log.status in TERMINAL_STATUSES:
            raise InvalidInput(f"Sync log {sync_log_id} is already {log.status}")

        status = fields.get("status")
        if status is not None and status not in TERMINAL_STATUSES and status != "in_progress":
            raise InvalidInput(f"Invalid sync status: {status}")

        for key, value in fields.items():
            setattr(log, key, value)

        if status in TERMINAL_STATUSES:
            now = utcnow()
            log.completed_at = now
            log.duration_seconds = round((now - ensure_utc(log.started_at)).total_seconds(), 3)

        await self.db.commit()
        return log

    async def complete(
        self,
        sync_log_id: str,
        status: str,
        attempted: int,
        succeeded: int,
        failed: int,
        error_message: Optional[str] = None,
        error_details: Optional[Dict[str, Any]] = None,
    ) -> SyncLog:
        if status not in TERMINAL_STATUSES:
            raise InvalidInput(f"Not a terminal sync status: {status}")

        log = await self.update(
            sync_log_id,
            status=status,
            transactions_attempted=attempted,
            transactions_succeeded=succeeded,
            transactions_failed=failed,
            error_message=error_message,
            error_details=error_details,
        )
        logger.info(
            f"Sync log {sync_log_id} {status}: "
            f"{succeeded}/{attempted} succeeded, {failed} failed"
        )
        return log

    async def history(self, provider: Optional[str] = None, limit: int = 10) -> List[SyncLog]:
        """Most recent runs first."""
        query = select(SyncLog).where(SyncLog.gym_id == self.gym_id)
        if provider:
            query = query.where(SyncLog.provider == provider)

        result = await self.db.execute(
            query.order_by(SyncLog.started_at.desc()).limit(limit)
        )
        return list(result.scalars().all())
