"""
Consolidated models package.

IMPORTANT: Explicit imports only - no wildcards to prevent circular imports.
"""

# Base utilities
from gymledger.models.base import generate_id, utcnow, ensure_utc

# Records owned by other services (read here, synced flags written here)
from gymledger.models.user import Profile
from gymledger.models.payment import Payment

# Accounting sync models
from gymledger.models.accounting import (
    AccountingIntegration,
    AccountMapping,
    SyncLog,
    SyncedTransaction,
    OAuthState,
    SyncLock,
)

__all__ = [
    "generate_id",
    "utcnow",
    "ensure_utc",
    "Profile",
    "Payment",
    "AccountingIntegration",
    "AccountMapping",
    "SyncLog",
    "SyncedTransaction",
    "OAuthState",
    "SyncLock",
]
