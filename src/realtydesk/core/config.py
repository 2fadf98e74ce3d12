"""Application configuration for RealtyDesk services."""
from __future__ import annotations

from functools import lru_cache
import json
from typing import Annotated, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = Field(default="RealtyDesk", description="Human readable application name.")
    environment: str = Field(default="development", description="Environment name for telemetry tagging.")
    api_v1_prefix: str = Field(default="/api/v1", description="Prefix for versioned API routes.")
    allowed_origins: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["*"],
        description="List of CORS origins allowed to access the API.",
    )
    api_keys: Annotated[List[str], NoDecode] = Field(
        default_factory=list,
        description="Static API keys identifying authenticated integrations.",
    )
    api_key_header: str = Field(default="X-RealtyDesk-Key", description="Header carrying the caller API key.")
    telemetry_endpoint: str | None = Field(
        default=None,
        description="Optional external telemetry collector endpoint for forwarding events.",
    )
    telemetry_timeout_seconds: float = Field(default=5.0, description="HTTP timeout for telemetry forwarding.")
    user_agent: str = Field(default="RealtyDesk/1.0", description="User agent sent with outbound requests.")
    rate_limit_enabled: bool = Field(default=True, description="Apply quota checks to /api routes.")
    rate_limit_cleanup_interval_ms: int = Field(
        default=5 * 60 * 1000,
        ge=1,
        description="Minimum time between sweeps of expired rate limit entries.",
    )
    log_level: str = Field(default="INFO", description="Application log level.")

    @field_validator("api_keys", "allowed_origins", mode="before")
    def _split_csv(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            if value.lstrip().startswith("["):
                return json.loads(value)
            return [item.strip() for item in value.split(",") if item.strip()]
        return value


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()
