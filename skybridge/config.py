"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """SkyBridge application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    secret_key: str = "change-me-in-production"
    debug: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///data/db/skybridge.db"
    database_busy_timeout_seconds: float = Field(default=30.0, gt=0)

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)
    cors_origins: list[str] = Field(default_factory=list)

    # Source network (X)
    x_client_id: str = ""
    x_client_secret: str = ""
    x_redirect_uri: str = "http://localhost:8000/api/accounts/x/callback"
    x_scopes: str = "tweet.read users.read offline.access"
    x_api_base_url: str = "https://api.x.com"
    source_fetch_limit: int = Field(default=10, ge=5, le=100)

    # Destination network (Bluesky)
    bluesky_service_url: str = "https://bsky.social"

    # Outbound HTTP
    http_timeout_seconds: float = Field(default=15.0, gt=0)

    # Pending OAuth flows
    oauth_state_ttl_seconds: int = Field(default=600, ge=1)

    # Auto-repost scheduler
    scheduler_enabled: bool = True
    scheduler_interval_seconds: float = Field(default=60.0, gt=0)
    scheduler_max_concurrency: int = Field(default=1, ge=1, le=32)

    def validate_runtime_security(self) -> None:
        """Validate security-critical production settings."""
        if self.debug:
            return

        violations: list[str] = []
        if self.secret_key == "change-me-in-production" or len(self.secret_key) < 32:
            violations.append(
                "SECRET_KEY must be overridden with a high-entropy value (>=32 chars)"
            )
        if not self.x_client_id:
            violations.append("X_CLIENT_ID must be configured in production")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Insecure production configuration: {joined}")
