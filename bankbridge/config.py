"""Bank provider configuration using Pydantic settings."""

from functools import lru_cache
from typing import Optional

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Provider settings loaded from environment variables."""

    # Application
    APP_NAME: str = "bankbridge"
    ENVIRONMENT: str = "development"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"  # text, json

    # Redis (credential + response cache)
    REDIS_URL: str = "redis://localhost:6379/0"

    # HTTP
    REQUEST_TIMEOUT_SECONDS: float = 30.0

    # Rate limit retry
    RATE_LIMIT_MAX_ATTEMPTS: int = 3
    RATE_LIMIT_BASE_DELAY_SECONDS: float = 1.0
    RATE_LIMIT_MAX_DELAY_SECONDS: float = 60.0

    # Plaid API
    PLAID_CLIENT_ID: str = ""
    PLAID_SECRET: SecretStr = SecretStr("")
    PLAID_ENV: str = "sandbox"  # sandbox, development, production
    PLAID_STATUS_URL: str = "https://status.plaid.com/api/v2/status.json"

    # Teller API (mTLS client certificate authenticates the application)
    TELLER_BASE_URL: str = "https://api.teller.io"
    TELLER_CERT_PATH: str = ""
    TELLER_KEY_PATH: str = ""

    # GoCardless Bank Account Data
    GOCARDLESS_BASE_URL: str = "https://bankaccountdata.gocardless.com"
    GOCARDLESS_SECRET_ID: str = ""
    GOCARDLESS_SECRET_KEY: SecretStr = SecretStr("")

    # EnableBanking
    ENABLEBANKING_BASE_URL: str = "https://api.enablebanking.com"
    ENABLEBANKING_APPLICATION_ID: str = ""
    ENABLEBANKING_KEY_CONTENT: SecretStr = SecretStr("")  # base64 encoded PEM private key
    ENABLEBANKING_REDIRECT_URL: str = ""

    # Institution directory
    INSTITUTIONS_CACHE_TTL_HOURS: int = 24
    LOGO_DOWNLOAD_CONCURRENCY: int = 10
    LOGO_STORAGE_BACKEND: str = "local"  # local, s3
    LOGO_STORAGE_DIR: str = "/tmp/bankbridge-logos"
    LOGO_BASE_URL: str = "https://cdn.example.com/institution-logos"
    AWS_S3_BUCKET: Optional[str] = None
    AWS_REGION: str = "us-east-1"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    @field_validator("PLAID_ENV")
    @classmethod
    def validate_plaid_env(cls, v: str) -> str:
        """Reject unknown Plaid environments early instead of at first request."""
        allowed = {"sandbox", "development", "production"}
        if v not in allowed:
            raise ValueError(f"PLAID_ENV must be one of {sorted(allowed)}, got {v!r}")
        return v

    @field_validator("RATE_LIMIT_MAX_ATTEMPTS")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        """At least one attempt is always made."""
        if v < 1:
            raise ValueError("RATE_LIMIT_MAX_ATTEMPTS must be >= 1")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
