"""Application configuration using pydantic-settings.

Values come from environment variables (nested groups use a double underscore,
e.g. ``SPOTIFY__CLIENT_ID``) and an optional ``.env`` file.
"""

from functools import lru_cache

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Upstream hard limit for /me/player/recently-played
SPOTIFY_MAX_PAGE_SIZE = 50


class SpotifySettings(BaseModel):
    """Spotify OAuth client and Web API settings."""

    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = "http://localhost:8080/callback"
    scopes: list[str] = Field(
        default_factory=lambda: [
            "user-read-recently-played",
            "user-top-read",
            "user-read-email",
            "user-read-private",
        ]
    )
    request_timeout: float = 30.0
    token_refresh_buffer_seconds: int = 60
    proactive_refresh_window_minutes: int = 15
    recently_played_page_size: int = SPOTIFY_MAX_PAGE_SIZE
    profile_cache_ttl_seconds: int = 3600

    @field_validator("recently_played_page_size")
    @classmethod
    def _cap_page_size(cls, value: int) -> int:
        if value < 1:
            raise ValueError("recently_played_page_size must be positive")
        return min(value, SPOTIFY_MAX_PAGE_SIZE)


class DatabaseSettings(BaseModel):
    """Relational store settings."""

    url: str = "sqlite+aiosqlite:///./soundtrace.db"
    # Connection used by the SQL tool path. Point it at a read-only role in production.
    readonly_url: str | None = None
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    pool_pre_ping: bool = True


class OpenAISettings(BaseModel):
    """Embedding and completion service settings."""

    api_key: str = ""
    base_url: str | None = None
    embedding_model: str = "text-embedding-ada-002"
    embedding_dimensions: int = 1536
    completion_model: str = "gpt-3.5-turbo"
    temperature: float = 0.2
    request_timeout: float = 60.0


class SchedulerSettings(BaseModel):
    """Background worker timing."""

    enabled: bool = True
    sync_initial_delay_seconds: int = 60
    sync_interval_seconds: int = 1800
    token_refresh_interval_seconds: int = 1800


class RagSettings(BaseModel):
    """Document generation and retrieval settings."""

    retrieval_limit: int = 10
    retrieval_summary_types: list[str] = Field(
        default_factory=lambda: ["monthly", "hourly_patterns", "top_tracks_global"]
    )
    # IANA zone used for month/day bucketing of summaries
    timezone: str = "UTC"
    daily_retention_days: int = 7
    weekly_retention_weeks: int = 4
    document_source: str = "spotify"


class AnalyticsSettings(BaseModel):
    """Top-list cache settings."""

    top_artists_cache_hours: int = 24
    top_artists_fetch_limit: int = 50


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    app_name: str = "soundtrace"
    log_level: str = "INFO"
    log_json: bool = False

    spotify: SpotifySettings = Field(default_factory=SpotifySettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    rag: RagSettings = Field(default_factory=RagSettings)
    analytics: AnalyticsSettings = Field(default_factory=AnalyticsSettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
