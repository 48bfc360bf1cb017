"""
Application settings loaded from environment variables.
Uses pydantic-settings for type-safe configuration.
"""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with defaults for development."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: str = "development"
    debug: bool = True

    # Server
    ws_gateway_port: int = 8001
    # Comma-separated list of allowed origins (empty uses default localhost list)
    allowed_origins: str = ""

    # Sessions
    # Observers that connect without a session id join this one
    default_session_id: str = "live"

    # WebSocket
    ws_max_message_size: int = 64 * 1024  # 64 KB
    ws_receive_timeout: float = 90.0  # Close idle connections after this many seconds
    ws_broadcast_send_timeout: float = 5.0  # Per-recipient send timeout

    # Persistence
    # "none" keeps every session purely in memory
    persistence_backend: Literal["none", "sql", "redis"] = "none"
    # Empty means no database configured (loads return nothing, saves are no-ops)
    database_url: str = ""
    redis_url: str = "redis://localhost:6379"
    redis_pool_max_connections: int = 20
    redis_socket_timeout: int = 5
    persistence_timeout: float = 5.0  # Timeout for a single load/save call
    snapshot_writer_drain_timeout: float = 5.0  # Max wait for pending saves on shutdown

    def cors_list(self) -> list[str]:
        """Parse allowed_origins into a list (empty if unset)."""
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    def validate_production_settings(self) -> list[str]:
        """
        Validate that the configuration is sane for production.
        Returns a list of validation errors. Empty list means all checks pass.
        """
        errors = []

        if self.environment == "production":
            if self.debug:
                errors.append("DEBUG must be False in production")

            if not self.allowed_origins:
                errors.append(
                    "ALLOWED_ORIGINS must be set in production (comma-separated list of allowed domains)"
                )

            if self.persistence_backend == "sql" and not self.database_url:
                errors.append("DATABASE_URL must be set when PERSISTENCE_BACKEND=sql")

        return errors


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
