"""Configuration management for the attestation platform."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseConfig(BaseModel):
    """Storage configuration. ``memory://`` selects the in-process store."""

    url: str = Field(default="sqlite+aiosqlite:///./attestations.db")
    echo: bool = Field(default=False)


class RegistryConfig(BaseModel):
    """Policy/insured registry client configuration."""

    base_url: str = Field(default="http://localhost:8081")
    api_key: str = Field(default="")
    timeout_s: float = Field(default=30.0)


class ProviderConfig(BaseModel):
    """Attestation provider client configuration."""

    base_url: str = Field(default="http://localhost:8082")
    token: str = Field(default="")
    requester_code: str = Field(default="SYSTEM")
    timeout_s: float = Field(default=30.0)


class CircuitBreakerConfig(BaseModel):
    """Per-gateway circuit breaker settings."""

    timeout_s: float = Field(default=10.0)
    error_threshold_percentage: float = Field(default=50.0)
    reset_timeout_s: float = Field(default=30.0)
    volume_threshold: int = Field(default=5)
    rolling_window_s: float = Field(default=60.0)


class IdempotencyConfig(BaseModel):
    """Idempotency ledger configuration."""

    ttl_hours: int = Field(default=24)
    header_name: str = Field(default="Idempotency-Key")


class DownloadConfig(BaseModel):
    """Download link cache configuration."""

    link_ttl_hours: int = Field(default=24)


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = Field(default="0.0.0.0")
    http_port: int = Field(default=8080)
    metrics_port: int = Field(default=8003)


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="json")
    otel_endpoint: str | None = Field(default=None)
    otel_service_name: str = Field(default="attestation_platform")


class Config(BaseSettings):
    """Main configuration."""

    model_config = SettingsConfigDict(
        env_prefix="ATTESTATION_",
        env_nested_delimiter="__",
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    idempotency: IdempotencyConfig = Field(default_factory=IdempotencyConfig)
    download: DownloadConfig = Field(default_factory=DownloadConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    @property
    def uses_memory_storage(self) -> bool:
        return self.database.url.startswith("memory://")


@lru_cache
def get_config() -> Config:
    """Get the global configuration."""
    return Config()
