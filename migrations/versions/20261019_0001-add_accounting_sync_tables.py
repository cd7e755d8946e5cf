"""Add accounting sync tables

Revision ID: accounting_sync_001
Revises:
Create Date: 2026-10-19

Adds the QuickBooks / Xero integration tables and the per-provider synced
flags on payments. The payments and profiles tables are owned by the
membership service and already exist.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "accounting_sync_001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Synced flags on payments
    op.add_column("payments", sa.Column("accounting_synced_qb", sa.Boolean(), nullable=False, server_default=sa.false()))
    op.add_column("payments", sa.Column("accounting_synced_xero", sa.Boolean(), nullable=False, server_default=sa.false()))
    op.add_column("payments", sa.Column("accounting_last_sync_attempt", sa.DateTime(timezone=True), nullable=True))
    op.create_index("ix_payments_synced_qb_created", "payments", ["accounting_synced_qb", "created_at"])
    op.create_index("ix_payments_synced_xero_created", "payments", ["accounting_synced_xero", "created_at"])

    # Integrations
    op.create_table(
        "accounting_integrations",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("gym_id", sa.String(), nullable=False),
        sa.Column("provider", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="disconnected"),
        sa.Column("access_token_encrypted", sa.Text(), nullable=True),
        sa.Column("refresh_token_encrypted", sa.Text(), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refresh_token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("realm_id", sa.String(), nullable=True),
        sa.Column("tenant_id", sa.String(), nullable=True),
        sa.Column("company_name", sa.String(), nullable=True),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sync_status", sa.String(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("auto_sync_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sync_frequency_minutes", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("gym_id", "provider", name="uq_accounting_integrations_gym_provider"),
    )
    op.create_index("ix_accounting_integrations_gym_id", "accounting_integrations", ["gym_id"])

    # Account mappings
    op.create_table(
        "accounting_account_mappings",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("gym_id", sa.String(), nullable=False),
        sa.Column("provider", sa.String(), nullable=False),
        sa.Column("revenue_category", sa.String(), nullable=False),
        sa.Column("external_account_id", sa.String(), nullable=False),
        sa.Column("external_account_name", sa.String(), nullable=False),
        sa.Column("external_account_code", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("gym_id", "provider", "revenue_category", name="uq_account_mappings_category"),
    )
    op.create_index("ix_accounting_account_mappings_gym_id", "accounting_account_mappings", ["gym_id"])

    # Sync logs
    op.create_table(
        "accounting_sync_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("gym_id", sa.String(), nullable=False),
        sa.Column("provider", sa.String(), nullable=False),
        sa.Column("sync_type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="in_progress"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_seconds", sa.Float(), nullable=True),
        sa.Column("transactions_attempted", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("transactions_succeeded", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("transactions_failed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_details", postgresql.JSONB(), nullable=True),
        sa.Column("date_range_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("date_range_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("triggered_by", sa.String(), nullable=True),
        sa.Column("parent_sync_id", sa.String(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["parent_sync_id"], ["accounting_sync_logs.id"]),
    )
    op.create_index("ix_accounting_sync_logs_gym_id", "accounting_sync_logs", ["gym_id"])
    op.create_index("ix_accounting_sync_logs_provider", "accounting_sync_logs", ["provider"])
    op.create_index("ix_accounting_sync_logs_started_at", "accounting_sync_logs", ["started_at"])

    # Idempotency ledger
    op.create_table(
        "accounting_synced_transactions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("gym_id", sa.String(), nullable=False),
        sa.Column("provider", sa.String(), nullable=False),
        sa.Column("payment_id", sa.String(), nullable=False),
        sa.Column("external_transaction_id", sa.String(), nullable=False),
        sa.Column("external_transaction_number", sa.String(), nullable=True),
        sa.Column("external_transaction_type", sa.String(), nullable=True),
        sa.Column("sync_log_id", sa.String(), nullable=True),
        sa.Column("synced_amount", sa.Integer(), nullable=False),
        sa.Column("synced_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["sync_log_id"], ["accounting_sync_logs.id"]),
        sa.UniqueConstraint("provider", "payment_id", name="uq_synced_transactions_provider_payment"),
    )
    op.create_index("ix_accounting_synced_transactions_gym_id", "accounting_synced_transactions", ["gym_id"])
    op.create_index("ix_accounting_synced_transactions_payment_id", "accounting_synced_transactions", ["payment_id"])
    op.create_index("ix_accounting_synced_transactions_sync_log_id", "accounting_synced_transactions", ["sync_log_id"])

    # OAuth states
    op.create_table(
        "oauth_states",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("state", sa.String(), nullable=False),
        sa.Column("gym_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("provider", sa.String(), nullable=False),
        sa.Column("redirect_url", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_oauth_states_state", "oauth_states", ["state"], unique=True)
    op.create_index("ix_oauth_states_expires_at", "oauth_states", ["expires_at"])

    # Sync locks
    op.create_table(
        "accounting_sync_locks",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("gym_id", sa.String(), nullable=False),
        sa.Column("provider", sa.String(), nullable=False),
        sa.Column("owner", sa.String(), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("gym_id", "provider", name="uq_sync_locks_gym_provider"),
    )


def downgrade() -> None:
    op.drop_table("accounting_sync_locks")
    op.drop_index("ix_oauth_states_expires_at", table_name="oauth_states")
    op.drop_index("ix_oauth_states_state", table_name="oauth_states")
    op.drop_table("oauth_states")
    op.drop_index("ix_accounting_synced_transactions_sync_log_id", table_name="accounting_synced_transactions")
    op.drop_index("ix_accounting_synced_transactions_payment_id", table_name="accounting_synced_transactions")
    op.drop_index("ix_accounting_synced_transactions_gym_id", table_name="accounting_synced_transactions")
    op.drop_table("accounting_synced_transactions")
    op.drop_index("ix_accounting_sync_logs_started_at", table_name="accounting_sync_logs")
    op.drop_index("ix_accounting_sync_logs_provider", table_name="accounting_sync_logs")
    op.drop_index("ix_accounting_sync_logs_gym_id", table_name="accounting_sync_logs")
    op.drop_table("accounting_sync_logs")
    op.drop_index("ix_accounting_account_mappings_gym_id", table_name="accounting_account_mappings")
    op.drop_table("accounting_account_mappings")
    op.drop_index("ix_accounting_integrations_gym_id", table_name="accounting_integrations")
    op.drop_table("accounting_integrations")
    op.drop_index("ix_payments_synced_xero_created", table_name="payments")
    op.drop_index("ix_payments_synced_qb_created", table_name="payments")
    op.drop_column("payments", "accounting_last_sync_attempt")
    op.drop_column("payments", "accounting_synced_xero")
    op.drop_column("payments", "accounting_synced_qb")
