"""
Accounting sync exceptions.

Every error raised by the accounting engine derives from AccountingError and
knows the HTTP status and error code it is rendered with.
"""
from typing import Optional


class AccountingError(Exception):
    """Base exception for all accounting sync errors."""

    status_code = 500
    error = "accounting_error"

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        # Raw provider output for operators; never rendered to callers
        self.detail = detail


class ConfigurationError(AccountingError):
    """Missing or malformed secrets / client credentials."""

    status_code = 500
    error = "configuration_error"


class AuthenticationError(AccountingError):
    status_code = 401
    error = "authentication_error"


class AuthorizationError(AccountingError):
    status_code = 403
    error = "authorization_error"


class InvalidInput(AccountingError):
    status_code = 400
    error = "invalid_input"


class OAuthStateInvalid(AccountingError):
    """OAuth state is missing, expired, already used or for another provider."""

    status_code = 400
    error = "oauth_state_invalid"


class OAuthExchangeFailed(AccountingError):
    """Provider rejected the authorization code exchange."""

    status_code = 502
    error = "oauth_exchange_failed"


class TokenRefreshFailed(AccountingError):
    status_code = 502
    error = "token_refresh_failed"


class TamperedOrCorrupt(AccountingError):
    """Encrypted token failed authentication."""

    status_code = 500
    error = "tampered_or_corrupt"


class PostingFailed(AccountingError):
    """Provider rejected a ledger entry."""

    status_code = 502
    error = "posting_failed"


class IntegrationNotActive(AccountingError):
    status_code = 400
    error = "integration_not_active"


class IntegrationNotFound(AccountingError):
    status_code = 404
    error = "integration_not_found"


class MappingMissing(AccountingError):
    """Required revenue categories have no active account mapping."""

    status_code = 400
    error = "mapping_missing"

    def __init__(self, missing, detail: Optional[str] = None):
        self.missing = list(missing)
        super().__init__(
            f"Missing account mappings for categories: {', '.join(self.missing)}",
            detail=detail,
        )


class SyncAlreadyInProgress(AccountingError):
    status_code = 409
    error = "sync_already_in_progress"


class SyncLogNotFound(AccountingError):
    status_code = 404
    error = "sync_log_not_found"


class ProviderRequestFailed(AccountingError):
    """A provider read call (chart of accounts, tenants) failed."""

    status_code = 502
    error = "provider_request_failed"
