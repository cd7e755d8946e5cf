"""
Base provider adapter interface.

QuickBooks and Xero implement this interface so the connection manager and
the sync orchestrator can drive either provider the same way.
"""
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

import httpx

from gymledger.config import settings


class IntegrationType(str, Enum):
    """Supported accounting providers."""
    QUICKBOOKS = "quickbooks"
    XERO = "xero"


PROVIDERS = [provider.value for provider in IntegrationType]


@dataclass
class TokenSet:
    """Tokens returned by a code exchange or a refresh."""
    access_token: str
    refresh_token: str
    expires_at: datetime
    refresh_token_expires_at: Optional[datetime] = None
    provider_metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ProviderCredentials:
    """Decrypted credentials for one API call."""
    access_token: str
    realm_id: Optional[str] = None  # QuickBooks
    tenant_id: Optional[str] = None  # Xero


@dataclass
class LedgerEntry:
    """
    One payment, ready to post.

    amount is in minor units; adapters convert to the provider's decimal
    amounts.
    """
    payment_id: str
    category: str
    amount: int
    currency: str
    description: str
    account_id: str
    txn_date: date
    reference: str
    account_code: Optional[str] = None
    customer_email: str = "unknown@example.com"
    customer_name: str = "Unknown Customer"

    @property
    def is_refund(self) -> bool:
        return self.category == "refund"

    @property
    def decimal_amount(self) -> float:
        return round(abs(self.amount) / 100, 2)


@dataclass
class PostedTransaction:
    """Provider identifiers for a posted ledger entry."""
    external_id: str
    external_number: Optional[str]
    transaction_type: str  # "sales_receipt" | "credit_memo" | "invoice" | "credit_note"


def expires_at_from(seconds: Optional[int], default: int) -> datetime:
    """Absolute expiry from an OAuth expires_in value."""
    return datetime.now(timezone.utc) + timedelta(seconds=int(seconds or default))


class ProviderAdapter(ABC):
    """
    Abstract base class for accounting provider adapters.

    Adapters hold no per-gym state; credentials are passed into each call.
    An httpx transport may be injected for tests.

    Example usage:
        adapter = get_adapter("quickbooks")
        url = adapter.authorization_url(state, redirect_uri)
        tokens = await adapter.exchange_code(code, redirect_uri, realm_id)
    """

    # Which stored token the provider expects on revocation
    revoke_uses_refresh_token: bool = False

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ):
        self.transport = transport
        self.timeout = timeout if timeout is not None else settings.PROVIDER_HTTP_TIMEOUT_SECONDS

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self.transport,
            timeout=httpx.Timeout(self.timeout),
        )

    @property
    @abstractmethod
    def integration_type(self) -> IntegrationType:
        pass

    @abstractmethod
    def ensure_configured(self) -> None:
        """Raise ConfigurationError if client credentials are missing."""
        pass

    @abstractmethod
    def authorization_url(self, state: str, redirect_uri: str) -> str:
        pass

    @abstractmethod
    async def exchange_code(
        self, code: str, redirect_uri: str, realm_id: Optional[str] = None
    ) -> TokenSet:
        """Exchange an authorization code. Raises OAuthExchangeFailed."""
        pass

    @abstractmethod
    async def fetch_company_metadata(
        self, access_token: str, realm_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Company display metadata: company_name plus realm_id or tenant_id."""
        pass

    @abstractmethod
    async def refresh_token(self, refresh_token: str) -> TokenSet:
        """Refresh tokens. Raises TokenRefreshFailed."""
        pass

    @abstractmethod
    async def revoke_token(self, token: str) -> bool:
        """Best-effort revocation. Never raises."""
        pass

    @abstractmethod
    async def post_ledger_entry(
        self, credentials: ProviderCredentials, entry: LedgerEntry
    ) -> PostedTransaction:
        """Post one entry. Raises PostingFailed."""
        pass

    @abstractmethod
    async def fetch_chart_of_accounts(
        self, credentials: ProviderCredentials
    ) -> List[Dict[str, Any]]:
        """Revenue/expense accounts as {id, name, type, subType, code, active}."""
        pass
