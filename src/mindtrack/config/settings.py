"""
Module: settings.py
Description: Agent configuration using pydantic-settings.

Key Components:
- TrackerSettings: Environment variables (prefix MINDTRACK_) and .env
- TrackerConfig: Typed, immutable engine configuration
- merge_config(): Explicit override merge for Tracker.configure()
"""

from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .endpoints import (
    LOCAL_BASE_URL,
    PRODUCTION_BASE_URL,
    build_endpoints,
    resolve_base_url,
)


class TrackerSettings(BaseSettings):
    """Agent settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MINDTRACK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    app_name: str = Field(default="mindtrack", description="Agent name")
    log_level: str = Field(default="INFO", description="Logging level")

    # Endpoint resolution
    host: str = Field(
        default="localhost",
        description="Host the agent runs under, used to pick the collector"
    )
    api_base_url: Optional[str] = Field(
        default=None,
        description="Explicit collector base URL, bypasses host resolution"
    )
    local_base_url: str = Field(default=LOCAL_BASE_URL)
    production_base_url: str = Field(default=PRODUCTION_BASE_URL)

    # Delivery settings
    flush_interval_ms: int = Field(
        default=8000,
        ge=100,
        le=600_000,
        description="Periodic flush interval in milliseconds"
    )
    max_batch_size: int = Field(
        default=20,
        ge=1,
        le=500,
        description="Records per flush; reaching it triggers an immediate flush"
    )
    max_retries: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Ticks of one backoff retry cycle"
    )
    backoff_base_ms: int = Field(
        default=1200,
        ge=1,
        le=600_000,
        description="First retry delay in milliseconds"
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="HTTP timeout in seconds for delivery attempts"
    )
    beacon_max_bytes: int = Field(
        default=65_536,
        ge=1024,
        description="Largest body the one-way transport accepts"
    )

    # Persistence
    storage_dir: Path = Field(
        default=Path(".mindtrack"),
        description="Directory of the long-lived state file"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid logging level."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {', '.join(valid_levels)}")
        return v.upper()

    def base_url(self) -> str:
        """Collector base URL for these settings."""
        if self.api_base_url:
            return self.api_base_url.rstrip("/")
        return resolve_base_url(
            self.host,
            local_base_url=self.local_base_url,
            production_base_url=self.production_base_url,
        )


def get_settings() -> TrackerSettings:
    """Load settings from the environment."""
    return TrackerSettings()


class TrackerConfig(BaseModel):
    """
    Engine configuration.

    Immutable; Tracker.configure() replaces it with merge_config().
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    events_endpoint: str
    result_endpoint: str
    fallback_endpoint: str
    flush_interval_ms: int = Field(default=8000, ge=1)
    max_batch_size: int = Field(default=20, ge=1)
    max_retries: int = Field(default=5, ge=1)
    backoff_base_ms: int = Field(default=1200, ge=1)

    @field_validator("events_endpoint", "result_endpoint", "fallback_endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        """Validate endpoints are absolute HTTP/HTTPS URLs."""
        if not v or not isinstance(v, str):
            raise ValueError("endpoint must be a non-empty string")
        if not v.startswith(("http://", "https://")):
            raise ValueError("endpoint must be a valid HTTP/HTTPS URL")
        return v

    @classmethod
    def from_base_url(cls, base_url: str, **overrides: Any) -> "TrackerConfig":
        """Build a configuration whose endpoints live under base_url."""
        endpoints = build_endpoints(base_url)
        values = {
            "events_endpoint": endpoints.events,
            "result_endpoint": endpoints.results,
            "fallback_endpoint": endpoints.fallback,
        }
        values.update(overrides)
        return cls(**values)

    @classmethod
    def from_settings(cls, settings: TrackerSettings) -> "TrackerConfig":
        """Build a configuration from environment settings."""
        return cls.from_base_url(
            settings.base_url(),
            flush_interval_ms=settings.flush_interval_ms,
            max_batch_size=settings.max_batch_size,
            max_retries=settings.max_retries,
            backoff_base_ms=settings.backoff_base_ms,
        )


def merge_config(current: TrackerConfig, overrides: Optional[Mapping[str, Any]]) -> TrackerConfig:
    """
    Merge overrides into a configuration.

    Every key present in overrides replaces the current value; keys set
    to None are ignored. The result is validated as a whole.

    Args:
        current: Configuration to start from
        overrides: Field names to new values

    Returns:
        A new TrackerConfig

    Raises:
        ValueError: If overrides names an unknown field
        pydantic.ValidationError: If a merged value is invalid
    """
    if not overrides:
        return current

    unknown = set(overrides) - set(TrackerConfig.model_fields)
    if unknown:
        raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

    values = current.model_dump()
    values.update({k: v for k, v in overrides.items() if v is not None})
    return TrackerConfig(**values)
