"""Application settings and configuration.

This module defines all configuration options for the walk-in queue engine.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Walk-in Queue", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database configuration
    database_url: str = Field(default="sqlite:///./walkin_queue.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Redis holds the per-viewer reconciler state between restarts
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")
    reconciler_state_ttl_seconds: int = Field(
        default=86_400,
        alias="RECONCILER_STATE_TTL_SECONDS",
    )

    # Notification feed
    notification_history_size: int = Field(default=50, alias="NOTIFICATION_HISTORY_SIZE")
    notification_bootstrap_hours: float = Field(
        default=24.0,
        alias="NOTIFICATION_BOOTSTRAP_HOURS",
    )

    # Announcement playback
    announcement_repeat_count: int = Field(default=2, alias="ANNOUNCEMENT_REPEAT_COUNT")
    announcement_pause_seconds: float = Field(default=1.5, alias="ANNOUNCEMENT_PAUSE_SECONDS")
    announcement_settle_seconds: float = Field(
        default=1.0,
        alias="ANNOUNCEMENT_SETTLE_SECONDS",
    )
    paging_backend: str = Field(default="log", alias="PAGING_BACKEND")
    paging_http_url: str | None = Field(default=None, alias="PAGING_HTTP_URL")
    paging_http_timeout_seconds: float = Field(
        default=10.0,
        alias="PAGING_HTTP_TIMEOUT_SECONDS",
    )

    # Ticket code generation
    ticket_code_digits: int = Field(default=3, alias="TICKET_CODE_DIGITS")
    ticket_code_max_attempts: int = Field(default=20, alias="TICKET_CODE_MAX_ATTEMPTS")

    # CORS configuration for the display and staff frontends
    cors_origins: list[str] = Field(
        default=["*"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["*"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url

    @property
    def bootstrap_window_seconds(self) -> float:
        """Length of the recent-history window scanned on reconciler bootstrap."""
        return max(0.0, self.notification_bootstrap_hours) * 3600.0


settings = Settings()
