"""Per-run access to decrypted provider credentials with proactive refresh."""
import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from gymledger.accounting.encryption import TokenVault
from gymledger.accounting.errors import TokenRefreshFailed
from gymledger.integrations.base import ProviderAdapter, ProviderCredentials
from gymledger.models import AccountingIntegration, utcnow, ensure_utc

logger = logging.getLogger(__name__)


# Refresh when less than this is left on the access token
EXPIRY_MARGIN = timedelta(minutes=5)


class TokenManager:
    """
    Hands out credentials for one sync run.

    A refresh is attempted at most once per run. If it fails, the integration
    is marked expired and every later request in the run fails with the same
    error without contacting the provider again.
    """

    def __init__(
        self,
        db: AsyncSession,
        integration: AccountingIntegration,
        adapter: ProviderAdapter,
        vault: TokenVault,
    ):
        self.db = db
        self.integration = integration
        self.adapter = adapter
        self.vault = vault
        self._credentials: Optional[ProviderCredentials] = None
        self._refresh_attempted = False
        self._refresh_error: Optional[TokenRefreshFailed] = None

    @property
    def refresh_error(self) -> Optional[TokenRefreshFailed]:
        return self._refresh_error

    def _needs_refresh(self) -> bool:
        expires_at = ensure_utc(self.integration.token_expires_at)
        return expires_at is None or expires_at < utcnow() + EXPIRY_MARGIN

    def _build(self, access_token: str) -> ProviderCredentials:
        return ProviderCredentials(
            access_token=access_token,
            realm_id=self.integration.realm_id,
            tenant_id=self.integration.tenant_id,
        )

    async def get_credentials(self) -> ProviderCredentials:
        if self._refresh_error is not None:
            raise TokenRefreshFailed(self._refresh_error.message)

        if self._needs_refresh() and not self._refresh_attempted:
            self._credentials = await self._refresh()
        elif self._credentials is None:
            self._credentials = self._build(self.vault.decrypt(self.integration.access_token_encrypted))

        return self._credentials

    async def _refresh(self) -> ProviderCredentials:
        self._refresh_attempted = True
        provider = self.integration.provider
        logger.info(f"Access token for {provider} expiring soon, refreshing")

        try:
            refresh_expires_at = ensure_utc(self.integration.refresh_token_expires_at)
            if refresh_expires_at is not None and refresh_expires_at < utcnow():
                raise TokenRefreshFailed(f"Refresh token expired. Please reconnect to {provider}.")

            refresh_token = self.vault.decrypt(self.integration.refresh_token_encrypted)
            tokens = await self.adapter.refresh_token(refresh_token)
        except TokenRefreshFailed as e:
            await self._mark_expired(e)
            raise

        self.integration.access_token_encrypted = self.vault.encrypt(tokens.access_token)
        self.integration.refresh_token_encrypted = self.vault.encrypt(tokens.refresh_token)
        self.integration.token_expires_at = tokens.expires_at
        if tokens.refresh_token_expires_at is not None:
            self.integration.refresh_token_expires_at = tokens.refresh_token_expires_at
        self.integration.updated_at = utcnow()
        await self.db.commit()

        logger.info(f"Token refreshed successfully for {provider}")
        return self._build(tokens.access_token)

    async def _mark_expired(self, error: TokenRefreshFailed) -> None:
        self._refresh_error = error
        self.integration.status = "expired"
        self.integration.last_error = error.message
        self.integration.updated_at = utcnow()
        await self.db.commit()
        logger.error(f"Token refresh failed for {self.integration.provider}: {error.message}")
