"""
Account mapping resolver.

Resolves which ledger account a revenue category posts to for a provider,
and validates that a set of categories is fully mapped before a bulk run.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gymledger.accounting.categorization import RevenueCategory
from gymledger.accounting.errors import InvalidInput
from gymledger.models import AccountMapping


@dataclass
class MappingValidation:
    valid: bool
    missing: List[str] = field(default_factory=list)


def _category_value(category) -> str:
    if isinstance(category, RevenueCategory):
        return category.value
    try:
        return RevenueCategory(category).value
    except ValueError:
        raise InvalidInput(f"Unknown revenue category: {category}")


class AccountMappingService:
    """Account mappings for one gym."""

    def __init__(self, db: AsyncSession, gym_id: str):
        self.db = db
        self.gym_id = gym_id

    # ==========================================================================
    # Lookups
    # ==========================================================================

    async def get_mapping(self, provider: str, category) -> Optional[AccountMapping]:
        """Active mapping for a category, or None."""
        result = await self.db.execute(
            select(AccountMapping).where(
                AccountMapping.gym_id == self.gym_id,
                AccountMapping.provider == provider,
                AccountMapping.revenue_category == _category_value(category),
                AccountMapping.is_active == True,
            )
        )
        return result.scalar_one_or_none()

    async def get_mappings(self, provider: str, include_inactive: bool = False) -> List[AccountMapping]:
        query = select(AccountMapping).where(
            AccountMapping.gym_id == self.gym_id,
            AccountMapping.provider == provider,
        )
        if not include_inactive:
            query = query.where(AccountMapping.is_active == True)

        result = await self.db.execute(query.order_by(AccountMapping.revenue_category))
        return list(result.scalars().all())

    async def validate_mappings(self, provider: str, categories: Iterable) -> MappingValidation:
        """
        Check that every category has an active mapping.

        Missing categories are returned in the order they were asked for.
        """
        wanted = [_category_value(c) for c in categories]
        mapped = {m.revenue_category for m in await self.get_mappings(provider)}
        missing = [c for c in wanted if c not in mapped]
        return MappingValidation(valid=not missing, missing=missing)

    # ==========================================================================
    # Configuration
    # ==========================================================================

    async def upsert_mapping(
        self,
        provider: str,
        category,
        external_account_id: str,
        external_account_name: str,
        external_account_code: Optional[str] = None,
    ) -> AccountMapping:
        """Create or replace the mapping for a category and make it active."""
        if not external_account_id or not external_account_name:
            raise InvalidInput("externalAccountId and externalAccountName are required")

        category_value = _category_value(category)
        result = await self.db.execute(
            select(AccountMapping).where(
                AccountMapping.gym_id == self.gym_id,
                AccountMapping.provider == provider,
                AccountMapping.revenue_category == category_value,
            )
        )
        mapping = result.scalar_one_or_none()

        if mapping:
            mapping.external_account_id = external_account_id
            mapping.external_account_name = external_account_name
            mapping.external_account_code = external_account_code
            mapping.is_active = True
            mapping.updated_at = datetime.now(timezone.utc)
        else:
            mapping = AccountMapping(
                gym_id=self.gym_id,
                provider=provider,
                revenue_category=category_value,
                external_account_id=external_account_id,
                external_account_name=external_account_name,
                external_account_code=external_account_code,
                is_active=True,
            )
            self.db.add(mapping)

        await self.db.commit()
        await self.db.refresh(mapping)
        return mapping

    async def deactivate_mapping(self, provider: str, category) -> bool:
        """Deactivate a mapping. Returns False if there was none."""
        mapping = await self.get_mapping(provider, category)
        if not mapping:
            return False

        mapping.is_active = False
        mapping.updated_at = datetime.now(timezone.utc)
        await self.db.commit()
        return True
