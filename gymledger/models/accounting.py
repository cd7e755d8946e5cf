"""Database models for the accounting integrations (QuickBooks / Xero)."""
from sqlalchemy import Column, String, DateTime, Text, Boolean, Integer, Float, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func

from gymledger.database import Base
from gymledger.models.base import generate_id, JSONType


class AccountingIntegration(Base):
    """One connection per (gym, provider) - stores encrypted OAuth tokens and sync status."""

    __tablename__ = "accounting_integrations"

    id = Column(String, primary_key=True, default=lambda: generate_id("integ"))
    gym_id = Column(String, nullable=False, index=True)
    provider = Column(String, nullable=False)  # "quickbooks" | "xero"
    status = Column(String, nullable=False, default="disconnected")  # "active" | "disconnected" | "error" | "expired"

    # OAuth tokens (AES-256-GCM, see accounting.encryption)
    access_token_encrypted = Column(Text, nullable=True)
    refresh_token_encrypted = Column(Text, nullable=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)
    refresh_token_expires_at = Column(DateTime(timezone=True), nullable=True)

    # Provider company info
    realm_id = Column(String, nullable=True)  # QuickBooks company ID
    tenant_id = Column(String, nullable=True)  # Xero organisation ID
    company_name = Column(String, nullable=True)

    # Sync status
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    last_sync_status = Column(String, nullable=True)  # "success" | "error"
    last_error = Column(Text, nullable=True)

    # Automatic sync settings
    auto_sync_enabled = Column(Boolean, nullable=False, default=True)
    sync_frequency_minutes = Column(Integer, nullable=False, default=60)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("gym_id", "provider", name="uq_accounting_integrations_gym_provider"),
    )


class AccountMapping(Base):
    """Maps a revenue category to a ledger account in the provider's chart of accounts."""

    __tablename__ = "accounting_account_mappings"

    id = Column(String, primary_key=True, default=lambda: generate_id("map"))
    gym_id = Column(String, nullable=False, index=True)
    provider = Column(String, nullable=False)
    revenue_category = Column(String, nullable=False)

    external_account_id = Column(String, nullable=False)
    external_account_name = Column(String, nullable=False)  # e.g. "Sales:Day Passes"
    external_account_code = Column(String, nullable=True)  # e.g. "4010"

    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("gym_id", "provider", "revenue_category", name="uq_account_mappings_category"),
    )


class SyncLog(Base):
    """One row per sync run - timing, counts and errors."""

    __tablename__ = "accounting_sync_logs"

    id = Column(String, primary_key=True, default=lambda: generate_id("sync"))
    gym_id = Column(String, nullable=False, index=True)
    provider = Column(String, nullable=False, index=True)

    sync_type = Column(String, nullable=False)  # "manual" | "automatic" | "retry"
    status = Column(String, nullable=False, default="in_progress")  # "in_progress" | "completed" | "partial" | "failed"

    started_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    duration_seconds = Column(Float, nullable=True)

    transactions_attempted = Column(Integer, nullable=False, default=0)
    transactions_succeeded = Column(Integer, nullable=False, default=0)
    transactions_failed = Column(Integer, nullable=False, default=0)

    error_message = Column(Text, nullable=True)
    error_details = Column(JSONType, nullable=True)  # {"errors": [{"paymentId", "error"}], "warnings": [...]}

    date_range_start = Column(DateTime(timezone=True), nullable=True)
    date_range_end = Column(DateTime(timezone=True), nullable=True)

    triggered_by = Column(String, nullable=True)  # profile id, NULL for automatic runs
    parent_sync_id = Column(String, ForeignKey("accounting_sync_logs.id"), nullable=True)


class SyncedTransaction(Base):
    """Idempotency ledger - a row means the payment is posted to the provider."""

    __tablename__ = "accounting_synced_transactions"

    id = Column(String, primary_key=True, default=lambda: generate_id("stx"))
    gym_id = Column(String, nullable=False, index=True)
    provider = Column(String, nullable=False)
    payment_id = Column(String, ForeignKey("payments.id", ondelete="CASCADE"), nullable=False, index=True)

    external_transaction_id = Column(String, nullable=False)
    external_transaction_number = Column(String, nullable=True)
    external_transaction_type = Column(String, nullable=True)  # "sales_receipt" | "credit_memo" | "invoice" | "credit_note"

    sync_log_id = Column(String, ForeignKey("accounting_sync_logs.id"), nullable=True, index=True)
    synced_amount = Column(Integer, nullable=False)  # minor units, for verification
    synced_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("provider", "payment_id", name="uq_synced_transactions_provider_payment"),
    )


class OAuthState(Base):
    """OAuth state tokens issued at connect time and consumed by the callback."""

    __tablename__ = "oauth_states"

    id = Column(String, primary_key=True, default=lambda: generate_id("oauth"))
    state = Column(String, nullable=False, unique=True, index=True)
    gym_id = Column(String, nullable=False)
    user_id = Column(String, nullable=False)
    provider = Column(String, nullable=False)
    redirect_url = Column(Text, nullable=True)

    # States are only valid for a short time
    expires_at = Column(DateTime(timezone=True), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class SyncLock(Base):
    """Marks a sync run in flight for a (gym, provider) pair."""

    __tablename__ = "accounting_sync_locks"

    id = Column(String, primary_key=True, default=lambda: generate_id("lock"))
    gym_id = Column(String, nullable=False)
    provider = Column(String, nullable=False)
    owner = Column(String, nullable=False)  # token identifying the run holding the lock
    acquired_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("gym_id", "provider", name="uq_sync_locks_gym_provider"),
    )
