"""
OAuth connection lifecycle for accounting providers.

    initiate_connect -> (user approves at provider) -> handle_callback -> active
    disconnect -> disconnected

The callback arrives without a bearer token, so the gym it belongs to is
taken from the stored OAuth state rather than from the caller.
"""
import logging
import secrets
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from gymledger.config import settings
from gymledger.accounting.encryption import TokenVault
from gymledger.accounting.errors import (
    AccountingError,
    IntegrationNotFound,
    InvalidInput,
    OAuthStateInvalid,
)
from gymledger.integrations import get_adapter
from gymledger.integrations.base import IntegrationType, PROVIDERS, ProviderAdapter
from gymledger.models import AccountingIntegration, OAuthState, utcnow, ensure_utc

logger = logging.getLogger(__name__)


PROVIDER_NAMES = {
    IntegrationType.QUICKBOOKS.value: "QuickBooks",
    IntegrationType.XERO.value: "Xero",
}

MIN_SYNC_FREQUENCY_MINUTES = 5
MAX_SYNC_FREQUENCY_MINUTES = 24 * 60


def get_redirect_uri(provider: str) -> str:
    if provider == IntegrationType.QUICKBOOKS.value:
        return settings.QUICKBOOKS_REDIRECT_URI
    return settings.XERO_REDIRECT_URI


def provider_from_callback(realm_id: Optional[str]) -> str:
    """QuickBooks is the only provider that sends realmId back."""
    return IntegrationType.QUICKBOOKS.value if realm_id else IntegrationType.XERO.value


class ConnectionManager:
    """Connect, disconnect and configure a gym's accounting integrations."""

    def __init__(
        self,
        db: AsyncSession,
        gym_id: Optional[str] = None,
        adapter_factory: Optional[Callable[[str], ProviderAdapter]] = None,
        vault: Optional[TokenVault] = None,
    ):
        self.db = db
        self.gym_id = gym_id
        self.adapter_factory = adapter_factory or get_adapter
        self.vault = vault or TokenVault()

    async def get_integration(self, provider: str) -> Optional[AccountingIntegration]:
        result = await self.db.execute(
            select(AccountingIntegration).where(
                AccountingIntegration.gym_id == self.gym_id,
                AccountingIntegration.provider == provider,
            )
        )
        return result.scalar_one_or_none()

    # =========================================================================
    # OAuth flow
    # =========================================================================

    async def initiate_connect(
        self, provider: str, redirect_url: Optional[str], user_id: str
    ) -> Tuple[str, str]:
        """Store a fresh OAuth state and return (authorization_url, state)."""
        adapter = self.adapter_factory(provider)
        if not redirect_url:
            raise InvalidInput("redirectUrl is required")
        adapter.ensure_configured()

        state = secrets.token_hex(32)
        self.db.add(OAuthState(
            state=state,
            gym_id=self.gym_id,
            user_id=user_id,
            provider=provider,
            redirect_url=redirect_url,
            expires_at=utcnow() + timedelta(minutes=settings.OAUTH_STATE_EXPIRY_MINUTES),
        ))
        await self.db.commit()

        logger.info(f"Generated {provider} OAuth URL for gym {self.gym_id}")
        return adapter.authorization_url(state, get_redirect_uri(provider)), state

    async def _consume_state(self, state: str, provider: str) -> OAuthState:
        result = await self.db.execute(
            select(OAuthState).where(OAuthState.state == state)
        )
        oauth_state = result.scalar_one_or_none()
        if not oauth_state:
            raise OAuthStateInvalid("Invalid or expired OAuth state")

        # One-time use, whatever the outcome
        await self.db.delete(oauth_state)
        await self.db.commit()

        if ensure_utc(oauth_state.expires_at) < utcnow():
            raise OAuthStateInvalid("OAuth state expired. Please try connecting again.")
        if oauth_state.provider != provider:
            raise OAuthStateInvalid("OAuth state does not match provider")

        return oauth_state

    async def handle_callback(
        self, code: str, state: str, realm_id: Optional[str] = None
    ) -> Tuple[AccountingIntegration, Optional[str]]:
        """
        Finish the OAuth flow.

        Verifies and consumes the state, exchanges the code, stores encrypted
        tokens and returns the integration together with the redirect URL
        saved at connect time.
        """
        provider = provider_from_callback(realm_id)
        if not code or not state:
            raise InvalidInput("Missing code or state parameter")

        oauth_state = await self._consume_state(state, provider)
        self.gym_id = oauth_state.gym_id
        redirect_url = oauth_state.redirect_url

        adapter = self.adapter_factory(provider)
        tokens = await adapter.exchange_code(code, get_redirect_uri(provider), realm_id=realm_id)
        metadata = await adapter.fetch_company_metadata(tokens.access_token, realm_id=realm_id)

        integration = await self.get_integration(provider)
        if integration is None:
            integration = AccountingIntegration(gym_id=self.gym_id, provider=provider)
            self.db.add(integration)

        integration.status = "active"
        integration.access_token_encrypted = self.vault.encrypt(tokens.access_token)
        integration.refresh_token_encrypted = self.vault.encrypt(tokens.refresh_token)
        integration.token_expires_at = tokens.expires_at
        integration.refresh_token_expires_at = tokens.refresh_token_expires_at
        integration.realm_id = metadata.get("realm_id") or realm_id
        integration.tenant_id = metadata.get("tenant_id")
        integration.company_name = metadata.get("company_name")
        integration.last_sync_at = None
        integration.last_sync_status = None
        integration.last_error = None
        integration.updated_at = utcnow()

        await self.db.commit()
        await self.db.refresh(integration)

        logger.info(f"Connected {provider} for gym {self.gym_id} ({integration.company_name})")
        return integration, redirect_url

    async def cleanup_expired_states(self) -> int:
        """Delete expired OAuth states. Returns the number removed."""
        result = await self.db.execute(
            delete(OAuthState).where(OAuthState.expires_at < utcnow())
        )
        await self.db.commit()
        return result.rowcount or 0

    # =========================================================================
    # Disconnect
    # =========================================================================

    async def disconnect(self, provider: str) -> str:
        """Revoke tokens (best effort) and mark the integration disconnected."""
        adapter = self.adapter_factory(provider)

        integration = await self.get_integration(provider)
        if not integration:
            raise IntegrationNotFound(f"No {provider} integration found to disconnect")
        if integration.status == "disconnected":
            raise InvalidInput(f"{provider} integration is already disconnected")

        encrypted = (
            integration.refresh_token_encrypted
            if adapter.revoke_uses_refresh_token
            else integration.access_token_encrypted
        )
        token = None
        if encrypted:
            try:
                token = self.vault.decrypt(encrypted)
            except AccountingError as e:
                # Undecryptable or unreadable key: skip revocation, still disconnect
                logger.error(f"Failed to decrypt {provider} tokens for revocation: {e.message}")

        if token:
            revoked = await adapter.revoke_token(token)
            if not revoked:
                logger.warning(f"{provider} token revocation failed, disconnecting anyway")

        integration.status = "disconnected"
        integration.access_token_encrypted = None
        integration.refresh_token_encrypted = None
        integration.token_expires_at = None
        integration.refresh_token_expires_at = None
        integration.last_sync_at = None
        integration.last_sync_status = None
        integration.last_error = None
        integration.updated_at = utcnow()
        await self.db.commit()

        logger.info(f"Successfully disconnected {provider} integration for gym {self.gym_id}")
        return f"Successfully disconnected from {PROVIDER_NAMES[provider]}"

    # =========================================================================
    # Status and settings
    # =========================================================================

    async def list_integrations(self) -> List[Dict[str, Any]]:
        """Connection status for every provider, connected or not."""
        result = await self.db.execute(
            select(AccountingIntegration).where(AccountingIntegration.gym_id == self.gym_id)
        )
        by_provider = {i.provider: i for i in result.scalars().all()}

        statuses = []
        for provider in PROVIDERS:
            integration = by_provider.get(provider)
            if integration is None:
                statuses.append({
                    "provider": provider,
                    "status": "disconnected",
                    "is_connected": False,
                })
                continue
            statuses.append({
                "provider": provider,
                "status": integration.status,
                "is_connected": integration.status == "active",
                "company_name": integration.company_name,
                "last_sync_at": integration.last_sync_at,
                "last_sync_status": integration.last_sync_status,
                "last_error": integration.last_error,
                "auto_sync_enabled": integration.auto_sync_enabled,
                "sync_frequency_minutes": integration.sync_frequency_minutes,
            })
        return statuses

    async def update_settings(
        self,
        provider: str,
        auto_sync_enabled: Optional[bool] = None,
        sync_frequency_minutes: Optional[int] = None,
    ) -> AccountingIntegration:
        self.adapter_factory(provider)

        integration = await self.get_integration(provider)
        if not integration:
            raise IntegrationNotFound(f"No {provider} integration found")

        if sync_frequency_minutes is not None:
            if not MIN_SYNC_FREQUENCY_MINUTES <= sync_frequency_minutes <= MAX_SYNC_FREQUENCY_MINUTES:
                raise InvalidInput(
                    f"syncFrequencyMinutes must be between {MIN_SYNC_FREQUENCY_MINUTES} "
                    f"and {MAX_SYNC_FREQUENCY_MINUTES}"
                )
            integration.sync_frequency_minutes = sync_frequency_minutes
        if auto_sync_enabled is not None:
            integration.auto_sync_enabled = auto_sync_enabled

        integration.updated_at = utcnow()
        await self.db.commit()
        await self.db.refresh(integration)
        return integration
