"""Pydantic schemas for the accounting API. JSON fields are camelCase."""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Provider = Literal["quickbooks", "xero"]


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ============================================================================
# CONNECTION SCHEMAS
# ============================================================================

class ConnectionRequest(CamelModel):
    """Connect or disconnect a provider."""
    action: Literal["connect", "disconnect"]
    provider: Provider
    redirect_url: Optional[str] = None


class AuthorizationResponse(CamelModel):
    authorization_url: str
    state: str
    provider: Provider


class DisconnectResponse(CamelModel):
    success: bool = True
    provider: Provider
    message: str


class IntegrationStatus(CamelModel):
    """Connection card for one provider."""
    provider: Provider
    status: str
    is_connected: bool
    company_name: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    last_sync_status: Optional[str] = None
    last_error: Optional[str] = None
    auto_sync_enabled: Optional[bool] = None
    sync_frequency_minutes: Optional[int] = None


class IntegrationSettingsUpdate(CamelModel):
    auto_sync_enabled: Optional[bool] = None
    sync_frequency_minutes: Optional[int] = None


# ============================================================================
# SYNC SCHEMAS
# ============================================================================

class ManualSyncRequest(CamelModel):
    provider: Provider
    limit: int = Field(default=100, ge=1, le=500)


class RetrySyncRequest(CamelModel):
    sync_log_id: str
    limit: Optional[int] = Field(default=None, ge=1, le=500)


class SyncErrorItem(BaseModel):
    paymentId: str
    error: str


class SyncResultResponse(CamelModel):
    success: bool
    sync_log_id: str
    status: str
    attempted: int
    succeeded: int
    failed: int
    errors: List[SyncErrorItem] = []
    message: Optional[str] = None


class SyncLogEntry(CamelModel):
    id: str
    provider: str
    sync_type: str
    status: str
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    transactions_attempted: int = 0
    transactions_succeeded: int = 0
    transactions_failed: int = 0
    error_message: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None
    date_range_start: Optional[datetime] = None
    date_range_end: Optional[datetime] = None
    triggered_by: Optional[str] = None
    parent_sync_id: Optional[str] = None


class SyncHistoryResponse(CamelModel):
    logs: List[SyncLogEntry]


# ============================================================================
# ACCOUNTS AND MAPPINGS
# ============================================================================

class ChartAccount(BaseModel):
    id: str
    name: Optional[str] = None
    type: Optional[str] = None
    subType: Optional[str] = None
    code: Optional[str] = None
    active: bool = True


class ChartOfAccountsResponse(CamelModel):
    provider: Provider
    accounts: List[ChartAccount]


class AccountMappingItem(CamelModel):
    revenue_category: str
    external_account_id: str
    external_account_name: str
    external_account_code: Optional[str] = None
    is_active: bool = True


class MappingsResponse(CamelModel):
    provider: Provider
    mappings: List[AccountMappingItem]
    missing_categories: List[str] = []


class MappingsUpdateRequest(CamelModel):
    provider: Provider
    mappings: List[AccountMappingItem]
