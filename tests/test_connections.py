"""Tests for the OAuth connection manager."""
from datetime import timedelta
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import pytest
from sqlalchemy import select

from gymledger.accounting.connections import ConnectionManager, provider_from_callback
from gymledger.accounting.encryption import TokenVault
from gymledger.accounting.errors import (
    ConfigurationError,
    IntegrationNotFound,
    InvalidInput,
    OAuthStateInvalid,
)
from gymledger.models import AccountingIntegration, OAuthState, utcnow

GYM_ID = "gym_test"


@pytest.fixture
def adapters(adapter_cls):
    """One fake adapter per provider, handed out by name."""
    return {"quickbooks": adapter_cls("quickbooks"), "xero": adapter_cls("xero")}


@pytest.fixture
def manager(db, vault, adapters):
    return ConnectionManager(db, GYM_ID, adapter_factory=adapters.__getitem__, vault=vault)


async def stored_states(db):
    return (await db.execute(select(OAuthState))).scalars().all()


class TestInitiateConnect:

    @pytest.mark.asyncio
    async def test_state_is_persisted(self, db, manager):
        url, state = await manager.initiate_connect("quickbooks", "https://gym.example.com", "user_admin")

        assert len(state) == 64
        assert parse_qs(urlparse(url).query)["state"] == [state]

        (row,) = await stored_states(db)
        assert row.state == state
        assert row.provider == "quickbooks"
        assert row.gym_id == GYM_ID
        assert row.user_id == "user_admin"
        assert row.redirect_url == "https://gym.example.com"

    @pytest.mark.asyncio
    async def test_redirect_url_required(self, manager):
        with pytest.raises(InvalidInput, match="redirectUrl is required"):
            await manager.initiate_connect("xero", None, "user_admin")

    @pytest.mark.asyncio
    async def test_missing_credentials(self, db, vault, adapter_cls):
        adapter = adapter_cls("xero")
        adapter.ensure_configured = MagicMock(
            side_effect=ConfigurationError("Xero OAuth credentials not configured")
        )
        manager = ConnectionManager(db, GYM_ID, adapter_factory=lambda provider: adapter, vault=vault)

        with pytest.raises(ConfigurationError):
            await manager.initiate_connect("xero", "https://gym.example.com", "user_admin")
        assert await stored_states(db) == []

    @pytest.mark.asyncio
    async def test_unknown_provider(self, db, vault):
        with pytest.raises(InvalidInput):
            await ConnectionManager(db, GYM_ID, vault=vault).initiate_connect("sage", "https://x", "u")


class TestHandleCallback:

    @pytest.mark.asyncio
    async def test_quickbooks_callback_activates_integration(self, db, vault, manager, adapters):
        _, state = await manager.initiate_connect("quickbooks", "https://gym.example.com", "user_admin")

        # The callback carries no gym context
        callback = ConnectionManager(db, adapter_factory=adapters.__getitem__, vault=vault)
        integration, redirect_url = await callback.handle_callback("auth-code", state, realm_id="realm-42")

        assert redirect_url == "https://gym.example.com"
        assert integration.gym_id == GYM_ID
        assert integration.status == "active"
        assert integration.realm_id == "realm-42"
        assert integration.company_name == "Iron Temple Ltd"
        assert vault.decrypt(integration.access_token_encrypted) == "access-auth-code"
        assert vault.decrypt(integration.refresh_token_encrypted) == "refresh-auth-code"
        assert adapters["quickbooks"].exchanged == ["auth-code"]
        assert await stored_states(db) == []

    @pytest.mark.asyncio
    async def test_state_is_single_use(self, manager):
        _, state = await manager.initiate_connect("xero", "https://gym.example.com", "user_admin")
        await manager.handle_callback("code-1", state)

        with pytest.raises(OAuthStateInvalid):
            await manager.handle_callback("code-2", state)

    @pytest.mark.asyncio
    async def test_unknown_state(self, manager, adapters):
        with pytest.raises(OAuthStateInvalid):
            await manager.handle_callback("code", "f" * 64)
        assert adapters["xero"].exchanged == []

    @pytest.mark.asyncio
    async def test_expired_state(self, db, manager, adapters):
        _, state = await manager.initiate_connect("xero", "https://gym.example.com", "user_admin")
        (row,) = await stored_states(db)
        row.expires_at = utcnow() - timedelta(seconds=1)
        await db.commit()

        with pytest.raises(OAuthStateInvalid, match="expired"):
            await manager.handle_callback("code", state)
        assert adapters["xero"].exchanged == []

    @pytest.mark.asyncio
    async def test_provider_mismatch(self, manager, adapters):
        _, state = await manager.initiate_connect("xero", "https://gym.example.com", "user_admin")

        # realmId means QuickBooks
        with pytest.raises(OAuthStateInvalid, match="does not match"):
            await manager.handle_callback("code", state, realm_id="realm-1")
        assert adapters["quickbooks"].exchanged == []

    @pytest.mark.asyncio
    async def test_missing_code(self, manager):
        with pytest.raises(InvalidInput):
            await manager.handle_callback(None, "state")

    @pytest.mark.asyncio
    async def test_reconnect_updates_existing_row(self, db, manager, make_integration):
        await make_integration("xero", status="disconnected", access_token_encrypted=None,
                               refresh_token_encrypted=None, last_error="old failure")
        _, state = await manager.initiate_connect("xero", "https://gym.example.com", "user_admin")

        integration, _ = await manager.handle_callback("new-code", state)

        rows = (await db.execute(select(AccountingIntegration))).scalars().all()
        assert len(rows) == 1
        assert integration.status == "active"
        assert integration.tenant_id == "tenant-1"
        assert integration.last_error is None

    def test_provider_hint(self):
        assert provider_from_callback("123") == "quickbooks"
        assert provider_from_callback(None) == "xero"


class TestDisconnect:

    @pytest.mark.asyncio
    async def test_quickbooks_revokes_refresh_token(self, db, manager, adapters, make_integration):
        integration = await make_integration("quickbooks", last_sync_status="success")

        message = await manager.disconnect("quickbooks")

        assert message == "Successfully disconnected from QuickBooks"
        assert adapters["quickbooks"].revoked == ["stored-refresh"]
        assert integration.status == "disconnected"
        assert integration.access_token_encrypted is None
        assert integration.refresh_token_encrypted is None
        assert integration.last_sync_status is None
        assert integration.company_name == "Iron Temple Ltd"

    @pytest.mark.asyncio
    async def test_xero_revokes_access_token(self, manager, adapters, make_integration):
        await make_integration("xero")
        message = await manager.disconnect("xero")
        assert message == "Successfully disconnected from Xero"
        assert adapters["xero"].revoked == ["stored-access"]

    @pytest.mark.asyncio
    async def test_undecryptable_tokens_still_disconnect(self, manager, adapters, make_integration):
        integration = await make_integration("quickbooks", refresh_token_encrypted="Z2FyYmFnZQ==")

        await manager.disconnect("quickbooks")

        assert adapters["quickbooks"].revoked == []
        assert integration.status == "disconnected"

    @pytest.mark.asyncio
    async def test_unusable_master_key_still_disconnects(self, db, adapters, make_integration):
        integration = await make_integration("quickbooks")
        manager = ConnectionManager(
            db, GYM_ID, adapter_factory=adapters.__getitem__, vault=TokenVault("not-a-valid-key")
        )

        message = await manager.disconnect("quickbooks")

        assert message == "Successfully disconnected from QuickBooks"
        assert adapters["quickbooks"].revoked == []
        assert integration.status == "disconnected"
        assert integration.access_token_encrypted is None
        assert integration.refresh_token_encrypted is None

    @pytest.mark.asyncio
    async def test_not_found_and_already_disconnected(self, manager, make_integration):
        with pytest.raises(IntegrationNotFound):
            await manager.disconnect("xero")

        await make_integration("xero", status="disconnected")
        with pytest.raises(InvalidInput, match="already disconnected"):
            await manager.disconnect("xero")


class TestStatusAndSettings:

    @pytest.mark.asyncio
    async def test_list_covers_both_providers(self, manager, make_integration):
        await make_integration("xero", last_sync_status="success")

        statuses = {s["provider"]: s for s in await manager.list_integrations()}

        assert statuses["quickbooks"] == {"provider": "quickbooks", "status": "disconnected", "is_connected": False}
        assert statuses["xero"]["is_connected"] is True
        assert statuses["xero"]["company_name"] == "Iron Temple Ltd"

    @pytest.mark.asyncio
    async def test_update_settings(self, manager, make_integration):
        await make_integration("quickbooks")

        integration = await manager.update_settings("quickbooks", auto_sync_enabled=False, sync_frequency_minutes=120)

        assert integration.auto_sync_enabled is False
        assert integration.sync_frequency_minutes == 120

        with pytest.raises(InvalidInput):
            await manager.update_settings("quickbooks", sync_frequency_minutes=1)
        with pytest.raises(IntegrationNotFound):
            await manager.update_settings("xero", auto_sync_enabled=True)

    @pytest.mark.asyncio
    async def test_cleanup_expired_states(self, db, manager):
        await manager.initiate_connect("xero", "https://gym.example.com", "user_admin")
        await manager.initiate_connect("quickbooks", "https://gym.example.com", "user_admin")
        first = (await stored_states(db))[0]
        first.expires_at = utcnow() - timedelta(minutes=1)
        await db.commit()

        assert await manager.cleanup_expired_states() == 1
        assert len(await stored_states(db)) == 1
