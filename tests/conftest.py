"""Shared test fixtures and configuration for GymLedger tests."""
import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("ACCOUNTING_ENCRYPTION_KEY", "ab" * 32)
os.environ.setdefault("QUICKBOOKS_CLIENT_ID", "qb-client-id")
os.environ.setdefault("QUICKBOOKS_CLIENT_SECRET", "qb-client-secret")
os.environ.setdefault("XERO_CLIENT_ID", "xero-client-id")
os.environ.setdefault("XERO_CLIENT_SECRET", "xero-client-secret")

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from gymledger.database import Base
from gymledger.accounting.categorization import ALL_CATEGORIES
from gymledger.accounting.encryption import TokenVault
from gymledger.integrations.base import (
    IntegrationType,
    LedgerEntry,
    PostedTransaction,
    ProviderAdapter,
    ProviderCredentials,
    TokenSet,
)
from gymledger.models import AccountingIntegration, AccountMapping, Payment, Profile

TEST_MASTER_KEY = "ab" * 32
GYM_ID = "gym_test"
BASE_TIME = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


# =============================================================================
# Database
# =============================================================================

@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def vault():
    return TokenVault(TEST_MASTER_KEY)


# =============================================================================
# Fake provider
# =============================================================================

class FakeAdapter(ProviderAdapter):
    """In-memory provider that records what it was asked to do."""

    def __init__(
        self,
        provider: str = "quickbooks",
        failures: Optional[Dict[str, Exception]] = None,
        refresh_error: Optional[Exception] = None,
    ):
        super().__init__(timeout=5)
        self.provider = provider
        self.revoke_uses_refresh_token = provider == "quickbooks"
        self.failures = dict(failures or {})
        self.refresh_error = refresh_error
        self.posted: List[LedgerEntry] = []
        self.credentials_seen: List[ProviderCredentials] = []
        self.refresh_calls = 0
        self.revoked: List[str] = []
        self.exchanged: List[str] = []
        self.accounts = [
            {"id": "79", "name": "Sales", "type": "Income", "subType": "SalesOfProductIncome", "code": "4000", "active": True},
        ]

    @property
    def integration_type(self) -> IntegrationType:
        return IntegrationType(self.provider)

    def ensure_configured(self) -> None:
        pass

    def authorization_url(self, state: str, redirect_uri: str) -> str:
        return f"https://auth.example.com/{self.provider}?state={state}&redirect_uri={redirect_uri}"

    async def exchange_code(self, code, redirect_uri, realm_id=None) -> TokenSet:
        self.exchanged.append(code)
        return TokenSet(
            access_token=f"access-{code}",
            refresh_token=f"refresh-{code}",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
            refresh_token_expires_at=datetime.now(timezone.utc) + timedelta(days=60),
        )

    async def fetch_company_metadata(self, access_token, realm_id=None):
        if self.provider == "quickbooks":
            return {"company_name": "Iron Temple Ltd", "realm_id": realm_id}
        return {"company_name": "Iron Temple Ltd", "tenant_id": "tenant-1"}

    async def refresh_token(self, refresh_token: str) -> TokenSet:
        self.refresh_calls += 1
        if self.refresh_error is not None:
            raise self.refresh_error
        return TokenSet(
            access_token="refreshed-access",
            refresh_token="refreshed-refresh",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        )

    async def revoke_token(self, token: str) -> bool:
        self.revoked.append(token)
        return True

    async def post_ledger_entry(self, credentials, entry) -> PostedTransaction:
        self.credentials_seen.append(credentials)
        if entry.payment_id in self.failures:
            raise self.failures[entry.payment_id]
        self.posted.append(entry)
        number = len(self.posted)
        if self.provider == "quickbooks":
            transaction_type = "credit_memo" if entry.is_refund else "sales_receipt"
        else:
            transaction_type = "credit_note" if entry.is_refund else "invoice"
        return PostedTransaction(
            external_id=f"ext-{number}",
            external_number=f"DOC-{number}",
            transaction_type=transaction_type,
        )

    async def fetch_chart_of_accounts(self, credentials):
        self.credentials_seen.append(credentials)
        return self.accounts


@pytest.fixture
def fake_adapter():
    return FakeAdapter("quickbooks")


@pytest.fixture
def adapter_cls():
    """FakeAdapter class, for tests that need a configured instance."""
    return FakeAdapter


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_profile(db):
    counter = {"n": 0}

    async def _make(**overrides) -> Profile:
        counter["n"] += 1
        values = {
            "gym_id": GYM_ID,
            "email": f"member{counter['n']}@example.com",
            "full_name": "Jo Member",
            "role": "member",
            "created_at": BASE_TIME,
        }
        values.update(overrides)
        profile = Profile(**values)
        db.add(profile)
        await db.commit()
        return profile
    return _make


@pytest.fixture
def make_payment(db):
    counter = {"n": 0}

    async def _make(**overrides) -> Payment:
        counter["n"] += 1
        values = {
            "gym_id": GYM_ID,
            "amount": 1500,
            "currency": "gbp",
            "payment_type": "day-pass",
            "payment_intent_id": f"pi_{counter['n']:04d}",
            "status": "succeeded",
            "extra_data": {},
            "accounting_synced_qb": False,
            "accounting_synced_xero": False,
            "created_at": BASE_TIME + timedelta(minutes=counter["n"]),
        }
        values.update(overrides)
        payment = Payment(**values)
        db.add(payment)
        await db.commit()
        return payment
    return _make


@pytest.fixture
def make_integration(db, vault):
    async def _make(provider: str = "quickbooks", **overrides) -> AccountingIntegration:
        now = datetime.now(timezone.utc)
        values = {
            "gym_id": GYM_ID,
            "provider": provider,
            "status": "active",
            "access_token_encrypted": vault.encrypt("stored-access"),
            "refresh_token_encrypted": vault.encrypt("stored-refresh"),
            "token_expires_at": now + timedelta(hours=1),
            "refresh_token_expires_at": now + timedelta(days=30),
            "realm_id": "realm-1" if provider == "quickbooks" else None,
            "tenant_id": "tenant-1" if provider == "xero" else None,
            "company_name": "Iron Temple Ltd",
            "auto_sync_enabled": True,
            "sync_frequency_minutes": 60,
            "created_at": now,
        }
        values.update(overrides)
        integration = AccountingIntegration(**values)
        db.add(integration)
        await db.commit()
        return integration
    return _make


@pytest.fixture
def map_categories(db):
    async def _map(provider: str = "quickbooks", categories=ALL_CATEGORIES, gym_id: str = GYM_ID):
        for category in categories:
            db.add(AccountMapping(
                gym_id=gym_id,
                provider=provider,
                revenue_category=category,
                external_account_id=f"acct-{category}",
                external_account_name=f"Sales:{category}",
                external_account_code=None,
                is_active=True,
                created_at=BASE_TIME,
            ))
        await db.commit()
    return _map
