"""Application settings with Pydantic validation and environment loading."""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Analytics core settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_name: str = "Quantcore Analytics"
    app_version: str = "1.0.0"
    debug: bool = Field(
        default=False, description="Enable debug mode (adds source locations to logs)"
    )
    environment: str = Field(
        default="production",
        description="Environment: development, staging, production",
    )

    # Analytics mode. "synthetic" serves labelled demo payloads only.
    analytics_mode: str = Field(
        default="live", description="Analytics mode: live or synthetic"
    )

    # Valkey (Redis-compatible)
    valkey_url: str = Field(
        default="redis://valkey:6379/0", description="Valkey connection URL"
    )
    valkey_max_connections: int = Field(default=10, ge=1, le=100)
    valkey_socket_timeout: float = Field(
        default=2.0, gt=0, le=30, description="Valkey socket and connect timeout in seconds"
    )
    valkey_client_name: str = Field(
        default="quantcore-analytics", description="CLIENT SETNAME used by analytics connections"
    )
    cache_default_ttl: int = Field(
        default=300, ge=1, description="Default cache TTL in seconds"
    )

    # Per-artifact TTLs
    price_cache_ttl: int = Field(
        default=15 * 60, ge=1, description="Intraday price cache TTL in seconds"
    )
    options_cache_ttl: int = Field(
        default=3600, ge=1, description="Options analysis cache TTL in seconds"
    )
    optimization_cache_ttl: int = Field(
        default=6 * 3600, ge=1, description="Portfolio optimization cache TTL in seconds"
    )
    cycles_cache_ttl: int = Field(
        default=12 * 3600, ge=1, description="Cycle analysis cache TTL in seconds"
    )

    # History windows
    options_lookback_days: int = Field(default=365, ge=30)
    optimization_lookback_days: int = Field(default=730, ge=30)
    default_dividend_yield: float = Field(default=0.02, ge=0, lt=1)

    # Minimum sample sizes
    min_points_cycle_detection: int = Field(
        default=50, ge=4, description="Minimum points before cycles are detected"
    )
    min_points_asset: int = Field(
        default=11, ge=3, description="Minimum closes for an asset to enter optimization"
    )

    # Monte Carlo
    monte_carlo_simulations: int = Field(default=1000, ge=1, le=100_000)
    monte_carlo_days: int = Field(default=252 * 5, ge=1)
    monte_carlo_seed: Optional[int] = Field(
        default=None, description="Fixed seed for reproducible simulations"
    )

    # External collaborator calls
    provider_timeout: float = Field(
        default=30.0, gt=0, le=120, description="Provider call timeout in seconds"
    )
    provider_retries: int = Field(
        default=3, ge=1, le=5, description="Provider call attempts"
    )
    provider_calls_per_second: float = Field(default=5.0, gt=0)
    provider_burst_size: int = Field(default=10, ge=1)
    max_concurrent_symbols: int = Field(
        default=8, ge=1, le=64, description="Per-request symbol fan-out bound"
    )

    # Logging
    log_level: str = Field(
        default="INFO", description="Log level: DEBUG, INFO, WARNING, ERROR"
    )
    log_format: str = Field(default="json", description="Log format: json or text")

    @field_validator("analytics_mode")
    @classmethod
    def validate_analytics_mode(cls, v: str) -> str:
        mode = v.strip().lower()
        if mode not in {"live", "synthetic"}:
            raise ValueError("analytics_mode must be 'live' or 'synthetic'")
        return mode

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid:
            raise ValueError(f"log_level must be one of {valid}")
        return upper

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        fmt = v.strip().lower()
        if fmt not in {"json", "text"}:
            raise ValueError("log_format must be 'json' or 'text'")
        return fmt

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_synthetic(self) -> bool:
        return self.analytics_mode == "synthetic"


@lru_cache
def get_settings() -> Settings:
    """Cached settings factory."""
    return Settings()


settings = get_settings()
