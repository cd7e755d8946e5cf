"""Application configuration."""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # Application
    APP_ENV: str = "development"
    SECRET_KEY: str
    API_V1_PREFIX: str = "/api"

    # Frontend
    FRONTEND_URL: str = "http://localhost:5173"

    # Rate limiting
    RATE_LIMIT_DEFAULT: str = "200/minute"
    RATE_LIMIT_SYNC: str = "10/minute"

    # QuickBooks Integration
    QUICKBOOKS_CLIENT_ID: str = ""
    QUICKBOOKS_CLIENT_SECRET: str = ""
    QUICKBOOKS_REDIRECT_URI: str = "http://localhost:8000/api/accounting/callback"
    QUICKBOOKS_ENVIRONMENT: str = "sandbox"  # "sandbox" | "production"
    QUICKBOOKS_SCOPES: str = "com.intuit.quickbooks.accounting"

    # Xero Integration
    XERO_CLIENT_ID: str = ""
    XERO_CLIENT_SECRET: str = ""
    XERO_REDIRECT_URI: str = "http://localhost:8000/api/accounting/callback"
    XERO_SCOPES: str = "offline_access accounting.transactions accounting.settings"

    # Token encryption (64 hex chars = 32 bytes)
    ACCOUNTING_ENCRYPTION_KEY: str = ""

    # Sync behaviour
    PROVIDER_HTTP_TIMEOUT_SECONDS: float = 30.0
    OAUTH_STATE_EXPIRY_MINUTES: int = 10
    SYNC_LOCK_TTL_MINUTES: int = 30
    SYNC_DEFAULT_LIMIT: int = 100

    # CORS
    @property
    def ALLOWED_ORIGINS(self) -> List[str]:
        if self.APP_ENV == "development":
            return ["*"]  # Allow all origins in development
        return [self.FRONTEND_URL]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True
    )


settings = Settings()
