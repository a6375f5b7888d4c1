"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Payment Gateway Configuration
    gateway_base_url: str = Field(..., description="Payment gateway API base URL")
    gateway_api_key: str = Field(..., description="Bearer token for the payment gateway API")
    gateway_pg_key: str = Field(..., description="Shared secret used to sign gateway requests")
    school_id: str = Field(..., description="School identifier registered with the gateway")
    gateway_name: str = Field(default="Edviron", description="Gateway name stored on orders")
    default_trustee_id: str = Field(
        default="default_trustee", description="Trustee used when the gateway omits one"
    )
    gateway_timeout_seconds: float = Field(
        default=10.0, description="Timeout for every gateway call (seconds)"
    )
    circuit_breaker_failure_threshold: int = Field(
        default=5, description="Consecutive gateway failures before the circuit opens"
    )
    circuit_breaker_timeout_seconds: int = Field(
        default=60, description="Seconds before an open circuit is retried"
    )

    # Reconciliation
    status_update_if_newer: bool = Field(
        default=False,
        description="Only replace a stored status when the incoming payment_time is not older",
    )

    # Database Configuration
    database_url: str = Field(..., description="Async SQLAlchemy connection URL")
    database_pool_size: int = Field(default=20, description="Database connection pool size")
    database_max_overflow: int = Field(default=50, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Application Configuration
    app_name: str = Field(default="school-payments", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_workers: int = Field(default=4, description="Number of API workers")
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="CORS allowed origins (comma-separated)",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("gateway_base_url")
    @classmethod
    def validate_gateway_base_url(cls, v: str) -> str:
        """Require an http(s) base URL and drop any trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("gateway_base_url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("gateway_timeout_seconds")
    @classmethod
    def validate_gateway_timeout(cls, v: float) -> float:
        """Gateway calls must always be bounded."""
        if v <= 0:
            raise ValueError("gateway_timeout_seconds must be positive")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    @property
    def is_sqlite(self) -> bool:
        """Check if the configured database is SQLite."""
        return self.database_url.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
