"""Xero adapter.

Token exchange, refresh, revocation and tenant lookup go straight to the
identity endpoints over httpx. Invoices, credit notes and the chart of
accounts go through the xero-python SDK, whose blocking calls run in a worker
thread with a timeout.
"""
from typing import Optional, Dict, Any, Callable, List
import asyncio
import logging
import time
import urllib.parse

import httpx
from xero_python.api_client import ApiClient, Configuration
from xero_python.api_client.oauth2 import OAuth2Token
from xero_python.accounting import (
    AccountingApi,
    Contact,
    CreditNote,
    CreditNotes,
    Invoice,
    Invoices,
    LineAmountTypes,
    LineItem,
)
from xero_python.exceptions import ApiException

from gymledger.config import settings
from gymledger.accounting.errors import (
    ConfigurationError,
    OAuthExchangeFailed,
    PostingFailed,
    ProviderRequestFailed,
    TokenRefreshFailed,
)
from gymledger.integrations.base import (
    IntegrationType,
    LedgerEntry,
    PostedTransaction,
    ProviderAdapter,
    ProviderCredentials,
    TokenSet,
    expires_at_from,
)

logger = logging.getLogger(__name__)


# ============================================================================
# OAUTH2 CONFIGURATION
# ============================================================================

XERO_AUTH_URL = "https://login.xero.com/identity/connect/authorize"
XERO_TOKEN_URL = "https://identity.xero.com/connect/token"
XERO_REVOKE_URL = "https://identity.xero.com/connect/revocation"
XERO_CONNECTIONS_URL = "https://api.xero.com/connections"

# Access tokens last 30 minutes, refresh tokens 60 days
ACCESS_TOKEN_LIFETIME = 1800
REFRESH_TOKEN_LIFETIME = 60 * 24 * 3600


# ============================================================================
# API CLIENT FACTORY
# ============================================================================

def create_accounting_api(access_token: str) -> AccountingApi:
    """Create an AccountingApi bound to a single access token."""
    api_client = ApiClient(
        Configuration(
            oauth2_token=OAuth2Token(
                client_id=settings.XERO_CLIENT_ID,
                client_secret=settings.XERO_CLIENT_SECRET,
            ),
        ),
        pool_threads=1,
    )

    token = {
        "access_token": access_token,
        "token_type": "Bearer",
        "expires_in": ACCESS_TOKEN_LIFETIME,
        "expires_at": time.time() + ACCESS_TOKEN_LIFETIME,
        "scope": settings.XERO_SCOPES.split(),
    }

    @api_client.oauth2_token_getter
    def obtain_xero_oauth2_token():
        return token

    @api_client.oauth2_token_saver
    def store_xero_oauth2_token(new_token):
        token.update(new_token)

    api_client.set_oauth2_token(token)
    return AccountingApi(api_client)


# ============================================================================
# XERO ADAPTER
# ============================================================================

class XeroAdapter(ProviderAdapter):
    """Xero implementation of the provider adapter."""

    revoke_uses_refresh_token = False

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
        api_factory: Callable[[str], AccountingApi] = create_accounting_api,
    ):
        super().__init__(transport=transport, timeout=timeout)
        self.api_factory = api_factory

    @property
    def integration_type(self) -> IntegrationType:
        return IntegrationType.XERO

    def ensure_configured(self) -> None:
        if not settings.XERO_CLIENT_ID or not settings.XERO_CLIENT_SECRET:
            raise ConfigurationError("Xero OAuth credentials not configured")

    def authorization_url(self, state: str, redirect_uri: str) -> str:
        """Generate the Xero OAuth2 authorization URL."""
        self.ensure_configured()
        params = {
            "response_type": "code",
            "client_id": settings.XERO_CLIENT_ID,
            "redirect_uri": redirect_uri,
            "scope": settings.XERO_SCOPES,
            "state": state,
        }
        return f"{XERO_AUTH_URL}?{urllib.parse.urlencode(params)}"

    async def _run_sdk(self, func, *args, **kwargs):
        """Run a blocking SDK call off the event loop with the provider timeout."""
        return await asyncio.wait_for(
            asyncio.to_thread(func, *args, **kwargs),
            timeout=self.timeout,
        )

    # -------------------------------------------------------------------------
    # Token management
    # -------------------------------------------------------------------------

    async def _token_request(self, data: Dict[str, str]) -> httpx.Response:
        async with self._http_client() as client:
            return await client.post(
                XERO_TOKEN_URL,
                data=data,
                auth=(settings.XERO_CLIENT_ID, settings.XERO_CLIENT_SECRET),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )

    def _token_set(self, tokens: Dict[str, Any]) -> TokenSet:
        return TokenSet(
            access_token=tokens["access_token"],
            refresh_token=tokens["refresh_token"],
            expires_at=expires_at_from(tokens.get("expires_in"), ACCESS_TOKEN_LIFETIME),
            refresh_token_expires_at=expires_at_from(None, REFRESH_TOKEN_LIFETIME),
        )

    async def exchange_code(
        self, code: str, redirect_uri: str, realm_id: Optional[str] = None
    ) -> TokenSet:
        """Exchange authorization code for access and refresh tokens."""
        self.ensure_configured()

        try:
            response = await self._token_request({
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            })
        except httpx.HTTPError as e:
            raise OAuthExchangeFailed(f"Xero token exchange failed: {e}")

        if response.status_code != 200:
            logger.error(f"Xero token exchange failed: {response.status_code} {response.text}")
            raise OAuthExchangeFailed(
                f"Xero token exchange failed: {response.status_code}",
                detail=response.text,
            )

        try:
            return self._token_set(response.json())
        except (AttributeError, KeyError, TypeError, ValueError):
            raise OAuthExchangeFailed(
                "Xero token exchange returned an unexpected response",
                detail=response.text,
            )

    async def refresh_token(self, refresh_token: str) -> TokenSet:
        """Refresh the access token. Xero rotates the refresh token on every use."""
        self.ensure_configured()

        try:
            response = await self._token_request({
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            })
        except httpx.HTTPError as e:
            raise TokenRefreshFailed(f"Token refresh failed: {e}")

        if response.status_code != 200:
            logger.error(f"Xero token refresh failed: {response.status_code} {response.text}")
            raise TokenRefreshFailed(
                f"Token refresh failed: {response.status_code}",
                detail=response.text,
            )

        try:
            tokens = response.json()
            tokens.setdefault("refresh_token", refresh_token)
            return self._token_set(tokens)
        except (AttributeError, KeyError, TypeError, ValueError):
            raise TokenRefreshFailed(
                "Token refresh returned an unexpected response",
                detail=response.text,
            )

    async def revoke_token(self, token: str) -> bool:
        """Revoke the grant. Xero is sent the access token."""
        if not settings.XERO_CLIENT_ID or not settings.XERO_CLIENT_SECRET:
            logger.error("Xero credentials not configured, skipping token revocation")
            return False

        try:
            async with self._http_client() as client:
                response = await client.post(
                    XERO_REVOKE_URL,
                    data={"token": token},
                    auth=(settings.XERO_CLIENT_ID, settings.XERO_CLIENT_SECRET),
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
        except httpx.HTTPError as e:
            logger.error(f"Error revoking Xero tokens: {e}")
            return False

        if response.status_code != 200:
            logger.error(f"Xero token revocation failed: {response.text}")
            return False

        logger.info("Xero tokens revoked successfully")
        return True

    # -------------------------------------------------------------------------
    # Tenants
    # -------------------------------------------------------------------------

    async def get_xero_tenants(self, access_token: str) -> List[Dict[str, Any]]:
        """Get list of connected Xero tenants (organisations)."""
        async with self._http_client() as client:
            response = await client.get(
                XERO_CONNECTIONS_URL,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Content-Type": "application/json",
                },
            )

        if response.status_code != 200:
            raise OAuthExchangeFailed(
                "Failed to fetch Xero connections",
                detail=response.text,
            )
        return response.json()

    async def fetch_company_metadata(
        self, access_token: str, realm_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Use the first connected organisation."""
        try:
            tenants = await self.get_xero_tenants(access_token)
        except httpx.HTTPError as e:
            raise OAuthExchangeFailed(f"Failed to fetch Xero connections: {e}")

        if not tenants:
            raise OAuthExchangeFailed("No Xero organizations found")

        tenant = tenants[0]
        return {
            "tenant_id": tenant.get("tenantId"),
            "company_name": tenant.get("tenantName") or "Unknown Company",
        }

    # -------------------------------------------------------------------------
    # Ledger posting
    # -------------------------------------------------------------------------

    def _line_item(self, entry: LedgerEntry) -> LineItem:
        line = LineItem(
            description=entry.description,
            quantity=1.0,
            unit_amount=entry.decimal_amount,
        )
        if entry.account_code:
            line.account_code = entry.account_code
        else:
            line.account_id = entry.account_id
        return line

    async def post_ledger_entry(
        self, credentials: ProviderCredentials, entry: LedgerEntry
    ) -> PostedTransaction:
        """
        ACCREC invoice (AUTHORISED) for revenue, ACCRECCREDIT credit note for
        refunds. The contact is matched by name, created by Xero if new.
        """
        api = self.api_factory(credentials.access_token)
        contact = Contact(name=entry.customer_name, email_address=entry.customer_email)

        try:
            if entry.is_refund:
                credit_note = CreditNote(
                    type="ACCRECCREDIT",
                    contact=contact,
                    date=entry.txn_date,
                    line_amount_types=LineAmountTypes.INCLUSIVE,
                    line_items=[self._line_item(entry)],
                    reference=entry.reference,
                    status="AUTHORISED",
                )
                response = await self._run_sdk(
                    api.create_credit_notes,
                    credentials.tenant_id,
                    CreditNotes(credit_notes=[credit_note]),
                    idempotency_key=entry.payment_id,
                )
                created = (response.credit_notes or [None])[0]
                if created is None or not created.credit_note_id:
                    raise PostingFailed("Xero returned no credit note id")
                return PostedTransaction(
                    external_id=str(created.credit_note_id),
                    external_number=created.credit_note_number,
                    transaction_type="credit_note",
                )

            invoice = Invoice(
                type="ACCREC",
                contact=contact,
                date=entry.txn_date,
                due_date=entry.txn_date,
                line_amount_types=LineAmountTypes.INCLUSIVE,
                line_items=[self._line_item(entry)],
                reference=entry.reference,
                status="AUTHORISED",
            )
            response = await self._run_sdk(
                api.create_invoices,
                credentials.tenant_id,
                Invoices(invoices=[invoice]),
                idempotency_key=entry.payment_id,
            )
            created = (response.invoices or [None])[0]
            if created is None or not created.invoice_id:
                raise PostingFailed("Xero returned no invoice id")
            return PostedTransaction(
                external_id=str(created.invoice_id),
                external_number=created.invoice_number,
                transaction_type="invoice",
            )
        except ApiException as e:
            logger.error(f"Xero posting failed for payment {entry.payment_id}: {e.status} {e.body}")
            raise PostingFailed(f"Xero rejected the transaction ({e.status})", detail=str(e.body))
        except asyncio.TimeoutError:
            raise PostingFailed(f"Xero request timed out after {self.timeout}s")

    # -------------------------------------------------------------------------
    # Chart of accounts
    # -------------------------------------------------------------------------

    async def fetch_chart_of_accounts(
        self, credentials: ProviderCredentials
    ) -> List[Dict[str, Any]]:
        """Revenue and expense accounts."""
        api = self.api_factory(credentials.access_token)
        try:
            response = await self._run_sdk(
                api.get_accounts,
                credentials.tenant_id,
                where='Class=="REVENUE" OR Class=="EXPENSE"',
            )
        except ApiException as e:
            raise ProviderRequestFailed(f"Failed to fetch accounts ({e.status})", detail=str(e.body))
        except asyncio.TimeoutError:
            raise ProviderRequestFailed(f"Xero request timed out after {self.timeout}s")

        return [
            {
                "id": str(a.account_id),
                "name": a.name,
                "type": getattr(a.type, "value", a.type),
                "subType": getattr(getattr(a, "_class", None), "value", getattr(a, "_class", None)),
                "code": a.code,
                "active": getattr(a.status, "value", a.status) == "ACTIVE",
            }
            for a in (response.accounts or [])
        ]
