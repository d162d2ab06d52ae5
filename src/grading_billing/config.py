"""
Central configuration module for the billing reconciliation service
Reads and validates environment variables with strict checks for production
"""
import os
import sys
from typing import Optional, List
from pathlib import Path

from dotenv import load_dotenv

# Only load .env in development
if os.getenv("ENV", "dev").lower() == "dev":
    load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Central configuration class with environment variable validation"""

    # Environment
    ENV: str = os.getenv("ENV", "dev").lower()

    # Required for all environments
    SECRET_KEY: str = os.getenv("SECRET_KEY", "")
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")

    PORT: int = int(os.getenv("PORT", "8000"))

    # CORS
    CORS_ORIGINS: List[str] = []

    # Billing provider - Stripe
    STRIPE_SECRET_KEY: Optional[str] = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET: Optional[str] = os.getenv("STRIPE_WEBHOOK_SECRET")
    STRIPE_TEST_SECRET_KEY: Optional[str] = os.getenv("STRIPE_TEST_SECRET_KEY")
    STRIPE_TEST_WEBHOOK_SECRET: Optional[str] = os.getenv("STRIPE_TEST_WEBHOOK_SECRET")

    # Provider call bounds
    PROVIDER_TIMEOUT_SECONDS: float = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "10"))
    SYNC_MAX_ATTEMPTS: int = int(os.getenv("SYNC_MAX_ATTEMPTS", "3"))
    SYNC_RETRY_BASE_DELAY: float = float(os.getenv("SYNC_RETRY_BASE_DELAY", "0.2"))
    SYNC_RETRY_MAX_DELAY: float = float(os.getenv("SYNC_RETRY_MAX_DELAY", "2.0"))
    REQUEST_DEADLINE_SECONDS: float = float(os.getenv("REQUEST_DEADLINE_SECONDS", "20"))

    # Tier table (price ids, amount ladder, plan limits)
    TIERS_CONFIG_PATH: str = os.getenv(
        "TIERS_CONFIG_PATH",
        str(Path(__file__).parent / "config" / "tiers.yaml")
    )

    # Webhooks
    WEBHOOK_ENFORCE_EVENT_ORDERING: bool = _env_bool("WEBHOOK_ENFORCE_EVENT_ORDERING", "true")

    # Background jobs
    ENABLE_SCHEDULER: bool = _env_bool("ENABLE_SCHEDULER", "false")
    RECONCILIATION_INTERVAL_MINUTES: int = int(os.getenv("RECONCILIATION_INTERVAL_MINUTES", "60"))
    USAGE_ROLLOVER_HOUR: int = int(os.getenv("USAGE_ROLLOVER_HOUR", "0"))

    # Auth sessions
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "120"))
    SESSION_REFRESH_WINDOW_HOURS: int = int(os.getenv("SESSION_REFRESH_WINDOW_HOURS", "168"))

    # Database pool (PostgreSQL only)
    DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "10"))
    DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "5"))
    DB_POOL_RECYCLE: int = int(os.getenv("DB_POOL_RECYCLE", "900"))
    DB_STATEMENT_TIMEOUT: int = int(os.getenv("DB_STATEMENT_TIMEOUT", "10000"))  # milliseconds

    # Build version (set during build/deploy)
    BUILD_VERSION: str = os.getenv("BUILD_VERSION", "dev")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    def __init__(self):
        """Initialize configuration and validate required variables"""
        self._load_cors_origins()
        self._validate()

    def _load_cors_origins(self):
        """Load CORS origins from environment variable"""
        default_origins = [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]

        cors_env = os.getenv("CORS_ORIGINS", "")
        if cors_env:
            env_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
            self.CORS_ORIGINS = default_origins + env_origins
        else:
            self.CORS_ORIGINS = default_origins

    def _validate(self):
        """Validate required configuration based on environment"""
        errors = []

        if self.ENV not in ["dev", "test", "staging", "prod"]:
            errors.append(f"Invalid ENV value: {self.ENV}. Must be 'dev', 'test', 'staging', or 'prod'")

        # SECRET_KEY is required for all environments
        if not self.SECRET_KEY:
            errors.append("SECRET_KEY is required but not set")
        elif len(self.SECRET_KEY) < 32:
            errors.append(f"SECRET_KEY must be at least 32 characters (current: {len(self.SECRET_KEY)})")

        # SQLite is accepted for dev/test only
        if not self.DATABASE_URL:
            errors.append("DATABASE_URL is required but not set")
        elif self.ENV in ["staging", "prod"] and not self.DATABASE_URL.startswith("postgresql"):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL connection string in {self.ENV} "
                f"(got: {self.DATABASE_URL[:30]}...)"
            )

        if self.ENV in ["staging", "prod"]:
            if not self.stripe_secret_key:
                errors.append(f"STRIPE_{'TEST_' if self.ENV == 'staging' else ''}SECRET_KEY is required in {self.ENV}")
            if not self.stripe_webhook_secret:
                errors.append(f"STRIPE_{'TEST_' if self.ENV == 'staging' else ''}WEBHOOK_SECRET is required in {self.ENV}")

        if self.PROVIDER_TIMEOUT_SECONDS <= 0:
            errors.append("PROVIDER_TIMEOUT_SECONDS must be positive")
        if self.SYNC_MAX_ATTEMPTS < 1:
            errors.append("SYNC_MAX_ATTEMPTS must be at least 1")

        if errors:
            error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            if self.ENV in ["staging", "prod"]:
                print(f"ERROR: {error_msg}", file=sys.stderr)
                sys.exit(1)
            else:
                print(f"WARNING: {error_msg}", file=sys.stderr)

    @property
    def stripe_secret_key(self) -> Optional[str]:
        """Live key in prod, test key everywhere else (falls back to live key in dev)"""
        if self.ENV == "prod":
            return self.STRIPE_SECRET_KEY
        return self.STRIPE_TEST_SECRET_KEY or self.STRIPE_SECRET_KEY

    @property
    def stripe_webhook_secret(self) -> Optional[str]:
        if self.ENV == "prod":
            return self.STRIPE_WEBHOOK_SECRET
        return self.STRIPE_TEST_WEBHOOK_SECRET or self.STRIPE_WEBHOOK_SECRET

    @property
    def is_dev(self) -> bool:
        """Check if running in development"""
        return self.ENV == "dev"

    @property
    def is_prod(self) -> bool:
        """Check if running in production"""
        return self.ENV == "prod"


# Global config instance
config = Config()
