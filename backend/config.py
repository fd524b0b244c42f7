"""
Ledger Core - Configuration Management

Centralized configuration for environment variables and deployment settings.
This module ensures:
- No hardcoded secrets
- Resilience defaults (retry, circuit breaker, rate limits) live in one place
- Reconciliation thresholds are configuration, not code
- Environment-specific settings (dev/staging/prod)
"""

from typing import List, Tuple
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
import logging

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ==================== ENVIRONMENT ====================
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production"
    )
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode (auto-enabled in development)"
    )

    # ==================== DATABASE ====================
    DATABASE_URL: str = Field(
        default="",
        description="PostgreSQL connection URL (required in production)"
    )
    POSTGRES_HOST: str = Field(default="")
    POSTGRES_PORT: int = Field(default=5432)
    POSTGRES_DB: str = Field(default="ledger_core")
    POSTGRES_USER: str = Field(default="")
    POSTGRES_PASSWORD: str = Field(default="")
    POSTGRES_SSLMODE: str = Field(default="require")

    # ==================== OBSERVABILITY ====================
    SENTRY_DSN: str = Field(
        default="",
        description="Sentry DSN for error tracking and orchestration alerts"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR"
    )

    # ==================== API ====================
    API_TITLE: str = Field(default="Ledger Core API")
    API_VERSION: str = Field(default="1.0.0")
    API_RATE_LIMIT: int = Field(
        default=100,
        description="Inbound requests allowed per window per client IP"
    )
    API_RATE_WINDOW_SECONDS: float = Field(default=60.0)
    WEBHOOK_RATE_LIMIT: int = Field(
        default=1000,
        description="Inbound webhook deliveries allowed per window per sender IP"
    )
    INTEGRATION_RATE_LIMIT: int = Field(
        default=30,
        description="Outbound calls allowed per window per dependency"
    )
    RATE_LIMIT_SWEEP_INTERVAL: float = Field(
        default=300.0,
        description="Seconds between sweeps of idle rate-limit keys"
    )

    # ==================== RESILIENCE ====================
    RETRY_MAX_RETRIES: int = Field(default=3)
    RETRY_BASE_DELAY: float = Field(default=1.0, description="Seconds")
    RETRY_MAX_DELAY: float = Field(default=30.0, description="Seconds")
    RETRY_BACKOFF_MULTIPLIER: float = Field(default=2.0)
    BREAKER_FAILURE_THRESHOLD: int = Field(default=5)
    BREAKER_RECOVERY_TIMEOUT: float = Field(default=60.0, description="Seconds")

    # ==================== WEBHOOK ORCHESTRATION ====================
    CONSUMER_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        description="Hard timeout for each downstream consumer"
    )
    EVIDENCE_SERVICE_URL: str = Field(default="")
    LEDGER_SERVICE_URL: str = Field(default="")
    CHRONICLE_SERVICE_URL: str = Field(default="")
    LOGIC_SERVICE_URL: str = Field(default="")
    SERVICE_TOKEN: str = Field(
        default="",
        description="Bearer token sent to downstream consumers"
    )
    LEDGER_EVENT_PREFIXES: str = Field(
        default="mercury.transaction",
        description="Comma-separated event kind prefixes routed to the ledger consumer"
    )

    # ==================== CORS ====================
    CORS_ORIGINS: str = Field(
        default="",
        description="Comma-separated list of allowed origins"
    )

    # ==================== RECONCILIATION ====================
    RECON_AMOUNT_TOLERANCE: float = Field(default=0.01)
    RECON_EXACT_DATE_WINDOW_DAYS: int = Field(default=2)
    RECON_FUZZY_DATE_WINDOW_DAYS: int = Field(default=5)
    RECON_FUZZY_THRESHOLD: float = Field(default=0.6)
    RECON_SUGGESTION_THRESHOLD: float = Field(default=0.4)
    RECON_SUGGESTION_DATE_WINDOW_DAYS: int = Field(default=7)

    # ==================== COMPUTED PROPERTIES ====================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def debug_enabled(self) -> bool:
        """Enable debug in development or when explicitly set"""
        return self.DEBUG or self.is_development

    @property
    def cors_origins_list(self) -> List[str]:
        """
        Parse CORS_ORIGINS into a list.

        Development also allows the local dashboard origins.
        """
        if self.CORS_ORIGINS and self.CORS_ORIGINS != "*":
            origins = [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]
        else:
            origins = []

        if self.is_development:
            origins.extend(["http://localhost:3000", "http://127.0.0.1:3000"])

        return origins

    @property
    def ledger_event_prefixes(self) -> Tuple[str, ...]:
        return tuple(p.strip() for p in self.LEDGER_EVENT_PREFIXES.split(",") if p.strip())

    def validate_production_config(self) -> List[str]:
        """
        Validate configuration for production deployment.
        Returns list of validation errors.
        """
        errors = []

        if self.RETRY_BASE_DELAY <= 0 or self.RETRY_MAX_DELAY < self.RETRY_BASE_DELAY:
            errors.append("RETRY_MAX_DELAY must be >= RETRY_BASE_DELAY > 0")

        if self.BREAKER_FAILURE_THRESHOLD < 1:
            errors.append("BREAKER_FAILURE_THRESHOLD must be at least 1")

        if not 0 < self.RECON_SUGGESTION_THRESHOLD <= self.RECON_FUZZY_THRESHOLD <= 1:
            errors.append("RECON thresholds must satisfy 0 < suggestion <= fuzzy <= 1")

        if self.is_production:
            if not self.DATABASE_URL and not (self.POSTGRES_HOST and self.POSTGRES_USER):
                errors.append("DATABASE_URL is required")

            if self.CORS_ORIGINS == "*":
                errors.append("CORS_ORIGINS cannot be '*' in production")

            if "localhost" in self.DATABASE_URL.lower():
                errors.append("DATABASE_URL cannot point to localhost in production")

            if self.DEBUG:
                errors.append("DEBUG should be False in production")

            if not self.SERVICE_TOKEN:
                errors.append("SERVICE_TOKEN is required for downstream consumers")

        return errors

    def get_database_url(self) -> str:
        """Get the appropriate database URL"""
        if self.DATABASE_URL:
            return self.DATABASE_URL

        if self.POSTGRES_HOST and self.POSTGRES_USER and self.POSTGRES_PASSWORD:
            ssl = f"?ssl={self.POSTGRES_SSLMODE}" if self.POSTGRES_SSLMODE else ""
            return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}{ssl}"

        raise ValueError("No database configuration found. Set DATABASE_URL or POSTGRES_* variables.")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Settings are loaded once and cached for the application lifetime.
    """
    settings = Settings()

    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug: {settings.debug_enabled}")

    if settings.is_production:
        errors = settings.validate_production_config()
        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            raise ValueError(f"Production configuration invalid: {', '.join(errors)}")

    return settings


def get_cors_config() -> dict:
    """
    Get CORS middleware configuration.

    Returns configuration dict for CORSMiddleware.
    """
    settings = get_settings()

    return {
        "allow_origins": settings.cors_origins_list,
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "OPTIONS"],
        "allow_headers": [
            "Authorization",
            "Content-Type",
            "Accept",
            "Origin",
            "X-Request-ID",
            "X-Event-Id",
        ],
        "expose_headers": [
            "X-Request-ID",
            "Retry-After",
            "X-RateLimit-Reset",
        ],
        "max_age": 600,  # Cache preflight for 10 minutes
    }


# ==================== ENVIRONMENT VALIDATION ====================

def validate_environment() -> dict:
    """
    Validate all required environment variables.

    Returns a status dict with validation results.
    """
    settings = get_settings()

    status = {
        "valid": True,
        "environment": settings.ENVIRONMENT,
        "errors": [],
        "warnings": [],
        "variables": {}
    }

    optional_vars = [
        ("SENTRY_DSN", settings.SENTRY_DSN, "Error tracking and orchestration alerts disabled"),
        ("EVIDENCE_SERVICE_URL", settings.EVIDENCE_SERVICE_URL, "Evidence consumer disabled"),
        ("LEDGER_SERVICE_URL", settings.LEDGER_SERVICE_URL, "Ledger consumer disabled"),
        ("CHRONICLE_SERVICE_URL", settings.CHRONICLE_SERVICE_URL, "Chronicle consumer disabled"),
        ("LOGIC_SERVICE_URL", settings.LOGIC_SERVICE_URL, "Logic consumer disabled"),
    ]

    for name, value, warning in optional_vars:
        if not value:
            status["warnings"].append(warning)
            status["variables"][name] = "⚠ Not set"
        else:
            status["variables"][name] = "✓ Set"

    errors = settings.validate_production_config()
    if errors:
        status["errors"].extend(errors)
        status["valid"] = False

    return status
