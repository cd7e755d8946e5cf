"""
Per-(gym, provider) sync lock.

A row in accounting_sync_locks marks a run in flight. The unique constraint
on (gym_id, provider) makes acquisition atomic; a lock past its expiry is
treated as abandoned and taken over.
"""
import logging
import secrets
from datetime import timedelta
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gymledger.config import settings
from gymledger.accounting.errors import SyncAlreadyInProgress
from gymledger.models import SyncLock, utcnow, ensure_utc

logger = logging.getLogger(__name__)


class SyncLockManager:
    def __init__(self, db: AsyncSession, gym_id: str, ttl_minutes: Optional[int] = None):
        self.db = db
        self.gym_id = gym_id
        self.ttl = timedelta(minutes=ttl_minutes or settings.SYNC_LOCK_TTL_MINUTES)

    async def _current(self, provider: str) -> Optional[SyncLock]:
        result = await self.db.execute(
            select(SyncLock).where(
                SyncLock.gym_id == self.gym_id,
                SyncLock.provider == provider,
            )
        )
        return result.scalar_one_or_none()

    async def acquire(self, provider: str) -> str:
        """
        Take the lock and return its owner token.

        Raises SyncAlreadyInProgress if another live run holds it.
        """
        now = utcnow()
        existing = await self._current(provider)
        if existing is not None:
            if ensure_utc(existing.expires_at) > now:
                raise SyncAlreadyInProgress(f"A {provider} sync is already in progress")
            logger.warning(f"Taking over stale {provider} sync lock held by {existing.owner}")
            await self.db.execute(
                delete(SyncLock).where(
                    SyncLock.id == existing.id,
                    SyncLock.owner == existing.owner,
                )
            )

        owner = secrets.token_hex(8)
        self.db.add(SyncLock(
            gym_id=self.gym_id,
            provider=provider,
            owner=owner,
            acquired_at=now,
            expires_at=now + self.ttl,
        ))
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise SyncAlreadyInProgress(f"A {provider} sync is already in progress")

        return owner

    async def release(self, provider: str, owner: str) -> None:
        """Release a lock held by owner. A lock taken over by someone else is left alone."""
        await self.db.execute(
            delete(SyncLock).where(
                SyncLock.gym_id == self.gym_id,
                SyncLock.provider == provider,
                SyncLock.owner == owner,
            )
        )
        await self.db.commit()

    async def is_locked(self, provider: str) -> bool:
        existing = await self._current(provider)
        return existing is not None and ensure_utc(existing.expires_at) > utcnow()
