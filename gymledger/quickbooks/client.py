"""QuickBooks Online adapter.

OAuth2 token plumbing (basic-auth, form-encoded token endpoint) and the
ledger calls the sync engine needs: customers, sales receipts, credit memos
and the chart of accounts.
"""
from typing import Optional, Dict, Any, List
import base64
import logging
import urllib.parse

import httpx

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

# Same authorization URL for sandbox and production
QUICKBOOKS_AUTH_URL = "https://appcenter.intuit.com/connect/oauth2"

QUICKBOOKS_TOKEN_URL_PRODUCTION = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
QUICKBOOKS_TOKEN_URL_SANDBOX = "https://oauth-sandbox.platform.intuit.com/oauth2/v1/tokens/bearer"
QUICKBOOKS_REVOKE_URL_PRODUCTION = "https://oauth.platform.intuit.com/oauth2/v1/tokens/revoke"
QUICKBOOKS_REVOKE_URL_SANDBOX = "https://oauth-sandbox.platform.intuit.com/oauth2/v1/tokens/revoke"

# API base URLs
QUICKBOOKS_API_BASE_SANDBOX = "https://sandbox-quickbooks.api.intuit.com"
QUICKBOOKS_API_BASE_PRODUCTION = "https://quickbooks.api.intuit.com"

MINOR_VERSION = "65"

# Access tokens last an hour, refresh tokens 100 days
ACCESS_TOKEN_LIFETIME = 3600
REFRESH_TOKEN_LIFETIME = 100 * 24 * 3600

# Generic "Services" item present in every QuickBooks company
DEFAULT_ITEM_REF = "1"


def is_production() -> bool:
    return settings.QUICKBOOKS_ENVIRONMENT == "production"


def get_api_base_url() -> str:
    """Get the appropriate API base URL based on environment."""
    return QUICKBOOKS_API_BASE_PRODUCTION if is_production() else QUICKBOOKS_API_BASE_SANDBOX


def get_token_url() -> str:
    return QUICKBOOKS_TOKEN_URL_PRODUCTION if is_production() else QUICKBOOKS_TOKEN_URL_SANDBOX


def get_revoke_url() -> str:
    return QUICKBOOKS_REVOKE_URL_PRODUCTION if is_production() else QUICKBOOKS_REVOKE_URL_SANDBOX


def get_basic_auth_header() -> str:
    """Generate Basic Auth header for token requests."""
    credentials = f"{settings.QUICKBOOKS_CLIENT_ID}:{settings.QUICKBOOKS_CLIENT_SECRET}"
    encoded = base64.b64encode(credentials.encode()).decode()
    return f"Basic {encoded}"


def _token_headers() -> Dict[str, str]:
    return {
        "Authorization": get_basic_auth_header(),
        "Content-Type": "application/x-www-form-urlencoded",
        "Accept": "application/json",
    }


def _quote(value: str) -> str:
    """Escape a literal for the QuickBooks query language."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


class QuickBooksAPIError(Exception):
    def __init__(self, status_code: int, body: str):
        super().__init__(f"QuickBooks API error: {status_code} - {body}")
        self.status_code = status_code
        self.body = body


# ============================================================================
# QUICKBOOKS ADAPTER
# ============================================================================

class QuickBooksAdapter(ProviderAdapter):
    """QuickBooks Online implementation of the provider adapter."""

    revoke_uses_refresh_token = True

    @property
    def integration_type(self) -> IntegrationType:
        return IntegrationType.QUICKBOOKS

    def ensure_configured(self) -> None:
        if not settings.QUICKBOOKS_CLIENT_ID or not settings.QUICKBOOKS_CLIENT_SECRET:
            raise ConfigurationError("QuickBooks OAuth credentials not configured")

    def authorization_url(self, state: str, redirect_uri: str) -> str:
        """Generate the QuickBooks OAuth2 authorization URL."""
        self.ensure_configured()
        params = {
            "client_id": settings.QUICKBOOKS_CLIENT_ID,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": settings.QUICKBOOKS_SCOPES,
            "state": state,
        }
        return f"{QUICKBOOKS_AUTH_URL}?{urllib.parse.urlencode(params)}"

    # -------------------------------------------------------------------------
    # Token management
    # -------------------------------------------------------------------------

    def _token_set(self, tokens: Dict[str, Any], **metadata) -> TokenSet:
        return TokenSet(
            access_token=tokens["access_token"],
            refresh_token=tokens["refresh_token"],
            expires_at=expires_at_from(tokens.get("expires_in"), ACCESS_TOKEN_LIFETIME),
            refresh_token_expires_at=expires_at_from(
                tokens.get("x_refresh_token_expires_in"), REFRESH_TOKEN_LIFETIME
            ),
            provider_metadata={k: v for k, v in metadata.items() if v is not None},
        )

    async def exchange_code(
        self, code: str, redirect_uri: str, realm_id: Optional[str] = None
    ) -> TokenSet:
        """Exchange authorization code for access and refresh tokens."""
        self.ensure_configured()

        try:
            async with self._http_client() as client:
                response = await client.post(
                    get_token_url(),
                    data={
                        "grant_type": "authorization_code",
                        "code": code,
                        "redirect_uri": redirect_uri,
                    },
                    headers=_token_headers(),
                )
        except httpx.HTTPError as e:
            raise OAuthExchangeFailed(f"QuickBooks token exchange failed: {e}")

        if response.status_code != 200:
            logger.error(f"QuickBooks token exchange failed: {response.status_code} {response.text}")
            raise OAuthExchangeFailed(
                f"QuickBooks token exchange failed: {response.status_code}",
                detail=response.text,
            )

        try:
            return self._token_set(response.json(), realm_id=realm_id)
        except (AttributeError, KeyError, TypeError, ValueError):
            raise OAuthExchangeFailed(
                "QuickBooks token exchange returned an unexpected response",
                detail=response.text,
            )

    async def refresh_token(self, refresh_token: str) -> TokenSet:
        """Refresh the access token. QuickBooks may rotate the refresh token."""
        self.ensure_configured()

        try:
            async with self._http_client() as client:
                response = await client.post(
                    get_token_url(),
                    data={
                        "grant_type": "refresh_token",
                        "refresh_token": refresh_token,
                    },
                    headers=_token_headers(),
                )
        except httpx.HTTPError as e:
            raise TokenRefreshFailed(f"Token refresh failed: {e}")

        if response.status_code != 200:
            logger.error(f"QuickBooks token refresh failed: {response.status_code} {response.text}")
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
        """Revoke a token (QuickBooks revokes the whole grant from the refresh token)."""
        if not settings.QUICKBOOKS_CLIENT_ID or not settings.QUICKBOOKS_CLIENT_SECRET:
            logger.error("QuickBooks credentials not configured, skipping token revocation")
            return False

        try:
            async with self._http_client() as client:
                response = await client.post(
                    get_revoke_url(),
                    data={"token": token},
                    headers=_token_headers(),
                )
        except httpx.HTTPError as e:
            logger.error(f"Error revoking QuickBooks tokens: {e}")
            return False

        if response.status_code != 200:
            logger.error(f"QuickBooks token revocation failed: {response.text}")
            return False

        logger.info("QuickBooks tokens revoked successfully")
        return True

    # -------------------------------------------------------------------------
    # API helpers
    # -------------------------------------------------------------------------

    def _get_headers(self, credentials: ProviderCredentials) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {credentials.access_token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def _get_url(self, realm_id: str, endpoint: str) -> str:
        return f"{get_api_base_url()}/v3/company/{realm_id}/{endpoint}"

    async def _get(
        self, credentials: ProviderCredentials, endpoint: str, params: Optional[Dict] = None
    ) -> Dict[str, Any]:
        query = {"minorversion": MINOR_VERSION, **(params or {})}
        async with self._http_client() as client:
            response = await client.get(
                self._get_url(credentials.realm_id, endpoint),
                headers=self._get_headers(credentials),
                params=query,
            )

        if response.status_code != 200:
            raise QuickBooksAPIError(response.status_code, response.text)
        return response.json()

    async def _post(
        self, credentials: ProviderCredentials, endpoint: str, data: Dict[str, Any]
    ) -> Dict[str, Any]:
        async with self._http_client() as client:
            response = await client.post(
                self._get_url(credentials.realm_id, endpoint),
                headers=self._get_headers(credentials),
                params={"minorversion": MINOR_VERSION},
                json=data,
            )

        if response.status_code not in [200, 201]:
            raise QuickBooksAPIError(response.status_code, response.text)

        result = response.json()
        if "Fault" in result:
            raise QuickBooksAPIError(response.status_code, str(result["Fault"]))
        return result

    async def _query(self, credentials: ProviderCredentials, query: str) -> List[Dict[str, Any]]:
        """Execute a QuickBooks query and return the entity list."""
        result = await self._get(credentials, "query", params={"query": query})
        query_response = result.get("QueryResponse", {})
        # The rows sit under a key named after the entity type
        for key in query_response:
            if key not in ["startPosition", "maxResults", "totalCount"]:
                return query_response.get(key, [])
        return []

    # -------------------------------------------------------------------------
    # Company info
    # -------------------------------------------------------------------------

    async def fetch_company_metadata(
        self, access_token: str, realm_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Company name for the connected realm. Falls back to 'Unknown Company'."""
        credentials = ProviderCredentials(access_token=access_token, realm_id=realm_id)
        try:
            result = await self._get(credentials, f"companyinfo/{realm_id}")
            company_name = result.get("CompanyInfo", {}).get("CompanyName") or "Unknown Company"
        except (QuickBooksAPIError, httpx.HTTPError) as e:
            logger.error(f"Failed to fetch QuickBooks company info: {e}")
            company_name = "Unknown Company"

        return {"company_name": company_name, "realm_id": realm_id}

    # -------------------------------------------------------------------------
    # Ledger posting
    # -------------------------------------------------------------------------

    async def get_or_create_customer(
        self, credentials: ProviderCredentials, email: str, display_name: str
    ) -> Dict[str, Any]:
        """Find a customer by email, or create one."""
        customers = await self._query(
            credentials,
            f"SELECT * FROM Customer WHERE PrimaryEmailAddr = '{_quote(email)}'",
        )
        if customers:
            logger.info(f"Found existing QuickBooks customer {customers[0].get('Id')}")
            return customers[0]

        result = await self._post(credentials, "customer", {
            "DisplayName": display_name,
            "PrimaryEmailAddr": {"Address": email},
        })
        customer = result.get("Customer", {})
        logger.info(f"Created QuickBooks customer {customer.get('Id')}")
        return customer

    def _sales_line(self, entry: LedgerEntry) -> Dict[str, Any]:
        amount = entry.decimal_amount
        return {
            "Amount": amount,
            "DetailType": "SalesItemLineDetail",
            "SalesItemLineDetail": {
                "ItemRef": {"value": DEFAULT_ITEM_REF},
                "Qty": 1,
                "UnitPrice": amount,
            },
            "Description": entry.description,
        }

    async def post_ledger_entry(
        self, credentials: ProviderCredentials, entry: LedgerEntry
    ) -> PostedTransaction:
        """
        Sales Receipt for revenue, Credit Memo for refunds.

        The customer is looked up by email (created if absent) first.
        """
        try:
            customer = await self.get_or_create_customer(
                credentials, entry.customer_email, entry.customer_name
            )
            payload = {
                "CustomerRef": {"value": customer.get("Id")},
                "TxnDate": entry.txn_date.isoformat(),
                "Line": [self._sales_line(entry)],
            }

            if entry.is_refund:
                result = await self._post(credentials, "creditmemo", payload)
                txn = result.get("CreditMemo", {})
                transaction_type = "credit_memo"
            else:
                payload["PaymentRefNum"] = entry.reference
                payload["DepositToAccountRef"] = {"value": entry.account_id}
                result = await self._post(credentials, "salesreceipt", payload)
                txn = result.get("SalesReceipt", {})
                transaction_type = "sales_receipt"
        except QuickBooksAPIError as e:
            logger.error(f"QuickBooks posting failed for payment {entry.payment_id}: {e.body}")
            raise PostingFailed(f"QuickBooks rejected the transaction ({e.status_code})", detail=e.body)
        except httpx.HTTPError as e:
            raise PostingFailed(f"QuickBooks request failed: {e}")

        if not txn.get("Id"):
            raise PostingFailed("QuickBooks returned no transaction id")

        return PostedTransaction(
            external_id=str(txn["Id"]),
            external_number=txn.get("DocNumber"),
            transaction_type=transaction_type,
        )

    # -------------------------------------------------------------------------
    # Chart of accounts
    # -------------------------------------------------------------------------

    async def fetch_chart_of_accounts(
        self, credentials: ProviderCredentials
    ) -> List[Dict[str, Any]]:
        """Income and expense accounts."""
        try:
            accounts = await self._query(
                credentials,
                "SELECT * FROM Account WHERE AccountType IN ('Income', 'Expense') MAXRESULTS 1000",
            )
        except QuickBooksAPIError as e:
            raise ProviderRequestFailed(f"Failed to fetch accounts ({e.status_code})", detail=e.body)
        except httpx.HTTPError as e:
            raise ProviderRequestFailed(f"Failed to fetch accounts: {e}")

        return [
            {
                "id": a.get("Id"),
                "name": a.get("Name"),
                "type": a.get("AccountType"),
                "subType": a.get("AccountSubType"),
                "code": a.get("AcctNum"),
                "active": a.get("Active", True),
            }
            for a in accounts
        ]
