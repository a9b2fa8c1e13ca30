"""Application configuration."""
from decimal import Decimal
from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # App
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_debug: bool = True
    log_level: str = "DEBUG"

    # Database - required, always read from the environment
    database_url: str = Field(
        ...,
        description="Database connection URL (required)",
    )
    db_pool_size: int = Field(
        default=20,
        description="DB connection pool size",
    )
    db_max_overflow: int = Field(
        default=10,
        description="Max overflow connections",
    )
    db_pool_timeout: int = Field(
        default=30,
        description="Pool connection timeout in seconds",
    )
    db_statement_timeout_ms: int = Field(
        default=5000,
        description="Per-statement timeout for PostgreSQL; a timeout is reported as a transient failure",
    )

    # Redis (notification transport, Celery broker)
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
    )

    # JWT - required, no default
    jwt_secret_key: str = Field(
        ...,
        description="JWT secret key (required, minimum 32 characters)",
    )
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 30

    # Scheduler / internal callers (X-API-Key header)
    internal_api_key: str | None = Field(
        default=None,
        description="API key for system callers such as the finalization scheduler",
    )

    # CORS
    cors_origins: str = "http://localhost:3000"

    # Check-in
    checkin_window_minutes: int = Field(
        default=30,
        ge=1,
        description="Default check-in window length before tournament start",
    )
    finalize_lookback_hours: int = Field(
        default=2,
        ge=1,
        description="How far back the auto-finalize sweep looks for started tournaments",
    )
    reminder_lead_minutes: int = Field(
        default=2,
        ge=1,
        description="Reminder sweep picks up windows opened within this many minutes",
    )

    # Wallet reconciliation
    balance_drift_epsilon: Decimal = Field(
        default=Decimal("0.01"),
        description="Cached balance drift tolerated before a discrepancy is reported",
    )

    @field_validator("jwt_secret_key")
    @classmethod
    def validate_jwt_secret_key(cls, v: str) -> str:
        """Validate JWT secret key length."""
        if len(v) < 32:
            raise ValueError(
                "jwt_secret_key must be at least 32 characters long"
            )

        weak_patterns = [
            "change-this",
            "password",
            "12345",
            "qwerty",
        ]
        lower_v = v.lower()
        for pattern in weak_patterns:
            if pattern in lower_v:
                raise ValueError(
                    f"jwt_secret_key contains weak pattern '{pattern}'. "
                    "Use a strong, random secret key."
                )

        return v

    @field_validator("internal_api_key")
    @classmethod
    def validate_internal_api_key(cls, v: str | None) -> str | None:
        """Validate internal API key strength."""
        if v is None:
            return v
        if len(v) < 16:
            raise ValueError(
                "internal_api_key must be at least 16 characters long"
            )
        return v

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Validate settings for production environment."""
        if self.app_env == "production":
            if self.app_debug:
                raise ValueError(
                    "app_debug must be False in production environment"
                )

            origins = [o.strip() for o in self.cors_origins.split(",")]
            if "*" in origins:
                raise ValueError(
                    "CORS wildcard '*' is not allowed in production environment. "
                    "Specify explicit allowed origins."
                )

        return self

    model_config = {
        "env_file": ".env",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
