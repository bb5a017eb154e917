"""Centralized application settings using pydantic-settings.

All environment variable reads are consolidated here. Import `get_settings`
from this module rather than reading os.environ directly.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All env vars are prefixed with RADLIMS_ (case-insensitive).
    """

    model_config = SettingsConfigDict(
        env_prefix="RADLIMS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_version: str = "0.1.0"

    # Database
    database_url: str = "sqlite+aiosqlite:///./radlims.db"

    # Identity tokens (issued by the external identity provider).
    # Empty means unconfigured: every token is rejected.
    jwt_secret: str = ""

    # Logging
    log_format: str = "console"
    log_level: str = "INFO"

    # Workflow
    commit_timeout_seconds: float = 10.0
    code_retry_limit: int = 5

    # Live view
    live_view_queue_size: int = 32
    ws_heartbeat_interval: int = 30
    ws_heartbeat_timeout: int = 90

    # CORS
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    """Return the cached application settings singleton."""
    return Settings()
