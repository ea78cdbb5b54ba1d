"""Configuration module for Soundtrace."""

from .settings import (
    AnalyticsSettings,
    DatabaseSettings,
    OpenAISettings,
    RagSettings,
    SchedulerSettings,
    Settings,
    SpotifySettings,
    get_settings,
)

__all__ = [
    "AnalyticsSettings",
    "DatabaseSettings",
    "OpenAISettings",
    "RagSettings",
    "SchedulerSettings",
    "Settings",
    "SpotifySettings",
    "get_settings",
]
