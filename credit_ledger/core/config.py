"""Application configuration loaded from environment variables.

Settings for the database, API, bearer-token verification, the operator
credential used by administrative grants, and the payment gateway. Uses
pydantic-settings for validation and .env file support.
"""

import uuid
from typing import Literal

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
# Security: Runtime check in check_production_security() prevents use in production
_INSECURE_DEFAULT_PASSWORD = "credit_ledger_dev_password"  # nosec B105

# Minimum length for AUTH_SECRET and ADMIN_API_KEY in production (256 bits)
_MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "credit_ledger"
    database_user: str = "credit_ledger_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD

    # API
    # 0.0.0.0 binds to all network interfaces (required for Docker containers)
    api_host: str = "0.0.0.0"  # nosec B104
    api_port: int = 8000

    # CORS (Security)
    # Production: Set ALLOWED_ORIGINS to specific domain(s)
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Application
    environment: str = "development"
    log_level: str = "INFO"

    # Authentication
    # Local-first mode: DEFAULT_USER_ID provides user context without a token
    # Hosted mode: auth_enabled=True, bearer token (or session cookie) required
    default_user_id: uuid.UUID | None = None
    auth_enabled: bool = False
    auth_secret: SecretStr = SecretStr("")
    auth_issuer: str = "credit-ledger"
    auth_audience: str = "credit-ledger"
    auth_cookie_name: str = "credit-ledger.session-token"
    access_token_ttl_seconds: int = 600

    # Operator credential for administrative grants (X-Admin-Key header)
    admin_api_key: SecretStr = SecretStr("")

    # Payment gateway
    payment_provider: Literal["stripe", "mock"] = "stripe"
    stripe_secret_key: SecretStr = SecretStr("")
    stripe_webhook_secret: SecretStr = SecretStr("")
    stripe_api_version: str = "2025-07-30.basil"

    # Hosted checkout redirects land on the frontend's credits page
    frontend_url: str = "http://localhost:3000"

    # Simulated subscription renewal (non-production only)
    test_topup_enabled: bool = True
    test_topup_credits: int = 100

    # Rate Limiting (Security)
    # Format: "count/period" (e.g., "10/minute", "100/hour")
    rate_limit_spend: str = "60/minute"
    rate_limit_grant: str = "30/minute"
    rate_limit_enabled: bool = True  # Disable for testing

    @property
    def database_url(self) -> str:
        """Async database URL for SQLAlchemy."""
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @property
    def database_url_sync(self) -> str:
        """Sync database URL for Alembic."""
        return (
            f"postgresql://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @property
    def is_production(self) -> bool:
        """Whether the service runs in the production environment."""
        return self.environment == "production"

    @model_validator(mode="after")
    def check_production_security(self) -> "Settings":
        """Validate production security requirements.

        Security: Prevents deployment with known insecure defaults.
        Checks:
        - Test top-up credits must be positive (all environments)
        - CORS must not use wildcard origin (incompatible with credentials)
        - Database password must not be the default in production
        - AUTH_SECRET must be set and >= 32 chars when auth is enabled in production
        - ADMIN_API_KEY must be >= 32 chars in production when set
        - Stripe webhook secret must be set in production with the Stripe gateway
        - Simulated top-ups must be disabled in production
        """
        if self.test_topup_credits <= 0:
            msg = (
                "TEST_TOPUP_CREDITS must be positive. "
                f"Got: {self.test_topup_credits}"
            )
            raise ValueError(msg)

        if "*" in self.allowed_origins:
            msg = (
                "ALLOWED_ORIGINS must not contain '*' (wildcard). "
                "This application uses credentials (cookies) which are "
                "incompatible with wildcard CORS origins."
            )
            raise ValueError(msg)

        if not self.is_production:
            return self

        if self.database_password == _INSECURE_DEFAULT_PASSWORD:
            msg = (
                "Cannot use default database password in production. "
                "Set DATABASE_PASSWORD environment variable to a secure value."
            )
            raise ValueError(msg)

        if self.auth_enabled:
            secret_value = self.auth_secret.get_secret_value()
            if len(secret_value) < _MIN_SECRET_LENGTH:
                msg = (
                    f"AUTH_SECRET must be at least {_MIN_SECRET_LENGTH} "
                    "characters when AUTH_ENABLED=true in production."
                )
                raise ValueError(msg)

        admin_key = self.admin_api_key.get_secret_value()
        if admin_key and len(admin_key) < _MIN_SECRET_LENGTH:
            msg = (
                f"ADMIN_API_KEY must be at least {_MIN_SECRET_LENGTH} "
                "characters in production."
            )
            raise ValueError(msg)

        if (
            self.payment_provider == "stripe"
            and not self.stripe_webhook_secret.get_secret_value()
        ):
            msg = "STRIPE_WEBHOOK_SECRET must be set in production."
            raise ValueError(msg)

        if self.test_topup_enabled:
            msg = "TEST_TOPUP_ENABLED must be false in production."
            raise ValueError(msg)

        return self


settings = Settings()
