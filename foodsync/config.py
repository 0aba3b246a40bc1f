# foodsync/config.py
"""
Centralized application configuration using pydantic-settings.

All settings are read from environment variables or .env file.
Server and sync-client knobs live side by side so a single .env can
drive both the API process and a headless client.
"""

import os
from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Priority: environment variables > .env file > defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore unknown env vars
    )

    # --- Database ---
    DB_URL: str = Field(
        default="postgresql://localhost:5432/foodsync",
        description="Database connection URL (PostgreSQL in production)"
    )
    DB_AUTO_CREATE: bool = Field(
        default=True,
        description="Create the profile_snapshots table on startup if missing"
    )

    # --- Server ---
    HOST: str = Field(
        default="127.0.0.1",
        description="Server bind host"
    )
    PORT: int = Field(
        default=3001,
        description="Server bind port"
    )
    CORS_ORIGINS: str = Field(
        default="",
        description="Comma separated list of allowed browser origins"
    )

    # --- Debug / Logging ---
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    OTEL_ENABLED: bool = Field(
        default=False,
        description="Install OpenTelemetry tracing with the console exporter"
    )
    SERVICE_NAME: str = Field(
        default="foodsync",
        description="service.name resource attribute for traces"
    )
    OTEL_EXPORTER: str = Field(
        default="console",
        description="Span exporter: console, otlp or none"
    )

    # --- Rate limiting / abuse protection ---
    API_RATE_LIMIT: int = Field(default=600, description="Requests per window per client on /api")
    SYNC_RATE_LIMIT: int = Field(default=400, description="Requests per window per client on /api/sync")
    RATE_LIMIT_WINDOW_SECONDS: int = Field(default=900, description="Rate limit window length (15 minutes)")
    FAIL_BLOCK_ENABLED: bool = Field(default=True)
    FAIL_BLOCK_THRESHOLD: int = Field(default=8, description="Failed sync requests before blocking")
    FAIL_BLOCK_BASE_SECONDS: float = Field(default=60.0)
    FAIL_BLOCK_MAX_SECONDS: float = Field(default=1800.0)
    FAIL_BLOCK_RESET_SECONDS: float = Field(default=3600.0)
    SECURITY_ALERT_ENABLED: bool = Field(default=True, description="Log 403/429 answers and periodic summaries")
    SECURITY_ALERT_SUMMARY_SECONDS: float = Field(default=300.0)
    SECURITY_ALERT_SUMMARY_THRESHOLD: int = Field(default=5, description="Minimum count for a key to appear in the summary")

    # --- Sync protocol ---
    SYNC_MAX_SNAPSHOT_BYTES: int = Field(
        default=1_000_000,
        description="Hard ceiling on the serialized size of a pushed snapshot"
    )

    # --- Sync client ---
    SYNC_API_BASE: str = Field(
        default="http://127.0.0.1:3001",
        description="Base URL the sync client talks to"
    )
    SYNC_PUSH_DEBOUNCE_SECONDS: float = Field(default=1.2)
    SYNC_PULL_INTERVAL_SECONDS: float = Field(default=45.0)
    SYNC_REQUEST_TIMEOUT_SECONDS: float = Field(default=5.0)

    @field_validator("OTEL_EXPORTER")
    @classmethod
    def validate_otel_exporter(cls, v: str) -> str:
        v_lower = v.lower()
        if v_lower not in {"console", "otlp", "none"}:
            raise ValueError("OTEL_EXPORTER must be one of console, otlp, none")
        return v_lower

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of {allowed}")
        return v_upper

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Return cached Settings instance (singleton pattern)."""
    return Settings()


# --- Singleton instance for easy import ---
settings = get_settings()


# --- Module-level exports ---

# Database
DATABASE_URL: str = settings.DB_URL
DB_AUTO_CREATE: bool = settings.DB_AUTO_CREATE

# Server
HOST: str = settings.HOST
PORT: int = settings.PORT
DEBUG: bool = settings.DEBUG
LOG_LEVEL: str = settings.LOG_LEVEL
SERVICE_NAME: str = settings.SERVICE_NAME

# Sync
SYNC_MAX_SNAPSHOT_BYTES: int = settings.SYNC_MAX_SNAPSHOT_BYTES

# --- Paths (computed, not from env) ---
PROJECT_ROOT: str = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
LOGS_PATH: str = os.path.join(PROJECT_ROOT, "logs")
