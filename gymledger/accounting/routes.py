"""Accounting API Routes.

Endpoints:
- POST /accounting/connect - Start OAuth flow, or disconnect
- GET /accounting/callback - OAuth callback (no bearer token)
- POST /accounting/sync/manual - Sync unsynced payments now
- POST /accounting/sync/retry - Re-run a finished sync
- GET /accounting/sync/status - One sync log
- GET /accounting/sync/history - Recent sync logs
- GET /accounting/accounts - Provider chart of accounts
- GET /accounting/integrations - Connection status per provider
- PATCH /accounting/integrations/{provider} - Auto-sync settings
- GET /accounting/mappings - Category to account mappings
- PUT /accounting/mappings - Replace mappings
"""
from urllib.parse import quote
from typing import Optional
import logging

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from gymledger.database import get_db
from gymledger.config import settings
from gymledger.accounting import schemas
from gymledger.accounting.categorization import ALL_CATEGORIES
from gymledger.accounting.connections import ConnectionManager, provider_from_callback
from gymledger.accounting.errors import AccountingError, IntegrationNotActive, InvalidInput
from gymledger.accounting.mappings import AccountMappingService
from gymledger.accounting.sync import SyncOrchestrator, SyncResult
from gymledger.accounting.sync_log import SyncLogStore
from gymledger.accounting.tokens import TokenManager
from gymledger.auth.dependencies import require_admin
from gymledger.integrations import get_adapter
from gymledger.middleware.rate_limit import limiter
from gymledger.models import Profile


router = APIRouter()
logger = logging.getLogger(__name__)


def _sync_response(result: SyncResult) -> schemas.SyncResultResponse:
    return schemas.SyncResultResponse(
        success=result.status != "failed",
        sync_log_id=result.sync_log_id,
        status=result.status,
        attempted=result.attempted,
        succeeded=result.succeeded,
        failed=result.failed,
        errors=result.errors,
        message=result.message,
    )


def _settings_url(base: Optional[str], **params: str) -> str:
    base = (base or settings.FRONTEND_URL).rstrip("/")
    query = "&".join(f"{key}={quote(value, safe='')}" for key, value in params.items())
    return f"{base}/admin/settings?{query}"


# ============================================================================
# CONNECTION
# ============================================================================

@router.post("/connect")
async def connect(
    body: schemas.ConnectionRequest,
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Start the OAuth flow for a provider, or disconnect it.

    Connect returns the authorization URL to send the admin to.
    """
    manager = ConnectionManager(db, current_user.gym_id)

    if body.action == "disconnect":
        message = await manager.disconnect(body.provider)
        return schemas.DisconnectResponse(provider=body.provider, message=message)

    authorization_url, state = await manager.initiate_connect(
        body.provider, body.redirect_url, current_user.id
    )
    return schemas.AuthorizationResponse(
        authorization_url=authorization_url,
        state=state,
        provider=body.provider,
    )


@router.get("/callback")
async def oauth_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    realm_id: Optional[str] = Query(None, alias="realmId"),
    error: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    """
    OAuth callback endpoint.

    Called by the provider, so it cannot use JWT auth; the state token
    identifies the gym instead. Always redirects back to the admin settings.
    """
    if error:
        logger.error(f"OAuth error from provider: {error}")
        return RedirectResponse(
            url=_settings_url(None, accounting="error", message=f"OAuth authorization failed: {error}"),
            status_code=302,
        )

    provider = provider_from_callback(realm_id)
    manager = ConnectionManager(db)
    try:
        _, redirect_url = await manager.handle_callback(code, state, realm_id=realm_id)
    except AccountingError as e:
        logger.error(f"OAuth callback failed for {provider}: {e.message}")
        return RedirectResponse(
            url=_settings_url(None, accounting="error", message=e.message),
            status_code=302,
        )

    return RedirectResponse(
        url=_settings_url(redirect_url, accounting=provider, status="connected"),
        status_code=302,
    )


@router.get("/integrations", response_model=list[schemas.IntegrationStatus])
async def list_integrations(
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Connection status for QuickBooks and Xero."""
    statuses = await ConnectionManager(db, current_user.gym_id).list_integrations()
    return [schemas.IntegrationStatus(**s) for s in statuses]


@router.patch("/integrations/{provider}", response_model=schemas.IntegrationStatus)
async def update_integration_settings(
    provider: schemas.Provider,
    body: schemas.IntegrationSettingsUpdate,
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    integration = await ConnectionManager(db, current_user.gym_id).update_settings(
        provider,
        auto_sync_enabled=body.auto_sync_enabled,
        sync_frequency_minutes=body.sync_frequency_minutes,
    )
    return schemas.IntegrationStatus(
        provider=provider,
        status=integration.status,
        is_connected=integration.status == "active",
        company_name=integration.company_name,
        last_sync_at=integration.last_sync_at,
        last_sync_status=integration.last_sync_status,
        last_error=integration.last_error,
        auto_sync_enabled=integration.auto_sync_enabled,
        sync_frequency_minutes=integration.sync_frequency_minutes,
    )


# ============================================================================
# SYNC
# ============================================================================

@router.post("/sync/manual", response_model=schemas.SyncResultResponse)
@limiter.limit(settings.RATE_LIMIT_SYNC)
async def manual_sync(
    request: Request,
    body: schemas.ManualSyncRequest,
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Sync unsynced payments to the provider.

    Every revenue category must be mapped before a manual sync can start.
    """
    orchestrator = SyncOrchestrator(db, current_user.gym_id)
    result = await orchestrator.run_sync(
        body.provider,
        limit=body.limit,
        triggered_by=current_user.id,
        sync_type="manual",
        required_categories=ALL_CATEGORIES,
    )
    return _sync_response(result)


@router.post("/sync/retry", response_model=schemas.SyncResultResponse)
@limiter.limit(settings.RATE_LIMIT_SYNC)
async def retry_sync(
    request: Request,
    body: schemas.RetrySyncRequest,
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    orchestrator = SyncOrchestrator(db, current_user.gym_id)
    result = await orchestrator.retry_failed(
        body.sync_log_id, triggered_by=current_user.id, limit=body.limit
    )
    return _sync_response(result)


@router.get("/sync/status", response_model=schemas.SyncLogEntry)
async def sync_status(
    sync_log_id: str = Query(..., alias="syncLogId"),
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    log = await SyncLogStore(db, current_user.gym_id).get(sync_log_id)
    return schemas.SyncLogEntry.model_validate(log)


@router.get("/sync/history", response_model=schemas.SyncHistoryResponse)
async def sync_history(
    provider: Optional[schemas.Provider] = Query(None),
    limit: int = Query(10, ge=1, le=100),
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    logs = await SyncLogStore(db, current_user.gym_id).history(provider=provider, limit=limit)
    return schemas.SyncHistoryResponse(
        logs=[schemas.SyncLogEntry.model_validate(log) for log in logs]
    )


# ============================================================================
# ACCOUNTS AND MAPPINGS
# ============================================================================

@router.get("/accounts", response_model=schemas.ChartOfAccountsResponse)
async def chart_of_accounts(
    provider: schemas.Provider = Query(...),
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Income and expense accounts the admin can map categories to."""
    manager = ConnectionManager(db, current_user.gym_id)
    integration = await manager.get_integration(provider)
    if not integration or integration.status != "active":
        raise IntegrationNotActive(f"{provider} integration is not active. Please connect first.")

    adapter = get_adapter(provider)
    tokens = TokenManager(db, integration, adapter, manager.vault)
    credentials = await tokens.get_credentials()
    accounts = await adapter.fetch_chart_of_accounts(credentials)

    return schemas.ChartOfAccountsResponse(provider=provider, accounts=accounts)


@router.get("/mappings", response_model=schemas.MappingsResponse)
async def get_mappings(
    provider: schemas.Provider = Query(...),
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    service = AccountMappingService(db, current_user.gym_id)
    mappings = await service.get_mappings(provider)
    validation = await service.validate_mappings(provider, ALL_CATEGORIES)
    return schemas.MappingsResponse(
        provider=provider,
        mappings=[schemas.AccountMappingItem.model_validate(m) for m in mappings],
        missing_categories=validation.missing,
    )


@router.put("/mappings", response_model=schemas.MappingsResponse)
async def update_mappings(
    body: schemas.MappingsUpdateRequest,
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Upsert the given mappings; an entry with isActive false is deactivated."""
    if not body.mappings:
        raise InvalidInput("At least one mapping is required")

    service = AccountMappingService(db, current_user.gym_id)
    for item in body.mappings:
        if item.is_active:
            await service.upsert_mapping(
                body.provider,
                item.revenue_category,
                item.external_account_id,
                item.external_account_name,
                item.external_account_code,
            )
        else:
            await service.deactivate_mapping(body.provider, item.revenue_category)

    return await get_mappings(body.provider, current_user, db)
