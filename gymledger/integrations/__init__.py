"""
Provider adapters for accounting software.

QuickBooks and Xero sit behind one ProviderAdapter interface so the sync
engine never branches on the provider.
"""
from typing import Optional

import httpx

from gymledger.accounting.errors import InvalidInput
from gymledger.integrations.base import (
    IntegrationType,
    LedgerEntry,
    PostedTransaction,
    ProviderAdapter,
    ProviderCredentials,
    PROVIDERS,
    TokenSet,
)


def get_adapter(
    provider: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ProviderAdapter:
    """Adapter for a provider name ("quickbooks" | "xero")."""
    # Imported here so the adapters can import from this package's base module
    from gymledger.quickbooks.client import QuickBooksAdapter
    from gymledger.xero.client import XeroAdapter

    if provider == IntegrationType.QUICKBOOKS.value:
        return QuickBooksAdapter(transport=transport)
    if provider == IntegrationType.XERO.value:
        return XeroAdapter(transport=transport)
    raise InvalidInput('Invalid provider. Must be "quickbooks" or "xero"')


__all__ = [
    "IntegrationType",
    "LedgerEntry",
    "PostedTransaction",
    "ProviderAdapter",
    "ProviderCredentials",
    "PROVIDERS",
    "TokenSet",
    "get_adapter",
]
